"""
Agent invocation for fleet-agent.

Provides the chat agent contract and its OpenAI-compatible implementation.
"""

from .agent_client import (
    AgentContext,
    AgentResponse,
    ChatAgent,
    OpenAICompatibleAgent,
    build_agent,
)

__all__ = ["AgentContext", "AgentResponse", "ChatAgent", "OpenAICompatibleAgent", "build_agent"]
