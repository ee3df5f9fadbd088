"""
Agent invocation over OpenAI-compatible chat completion APIs.

Wraps chat completions with conversation memory and normalized usage
counters. Provider errors are propagated unchanged; callers decide whether
a failure is fatal for their unit of work.
"""

import asyncio
import os
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from openai import AsyncOpenAI

from ..config.loader import AgentConfig, ConfigError
from ..core.token_counter import TokenUsage
from ..logs import get_logger
from ..storage.threads import ThreadRepository

CORE_INSTRUCTIONS = "You are a helpful AI assistant. Always be helpful, concise, and accurate in your responses."

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
GOOGLE_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1/"

logger = get_logger("agent")

Message = Dict[str, str]


@dataclass(frozen=True)
class AgentContext:
    """Conversation memory the invocation reads from and writes to."""
    thread_id: str
    resource_id: str


@dataclass(frozen=True)
class AgentResponse:
    """Completed agent reply."""
    text: str
    usage: Optional[TokenUsage]


class AgentStream(Protocol):
    """Incremental agent reply; `usage` is set once iteration completes."""
    usage: Optional[TokenUsage]

    def __aiter__(self) -> AsyncIterator[str]: ...

    async def aclose(self) -> None: ...


class ChatAgent(Protocol):
    """Agent invocation consumed by the gateway and the heartbeat."""
    id: str
    name: str
    model: str

    async def generate(self, messages: List[Message], context: AgentContext) -> AgentResponse: ...

    def stream(self, messages: List[Message], context: AgentContext) -> AgentStream: ...


@dataclass(frozen=True)
class ProviderTarget:
    """Where and how a model id is served."""
    base_url: str
    api_key_env: str
    model: str


def resolve_provider(model_id: str) -> ProviderTarget:
    """Dispatch a configured model id to its provider endpoint.

    - openrouter:<id>     -> OpenRouter, with the ":online" web search suffix
    - google/* , gemini*  -> Google
    - anything else       -> Anthropic
    """
    if model_id.startswith("openrouter:"):
        model = model_id[len("openrouter:"):]
        return ProviderTarget(OPENROUTER_BASE_URL, "OPENROUTER_API_KEY", f"{model}:online")
    if model_id.startswith("google/") or model_id.startswith("gemini"):
        return ProviderTarget(GOOGLE_BASE_URL, "GOOGLE_API_KEY", model_id.removeprefix("google/"))
    return ProviderTarget(ANTHROPIC_BASE_URL, "ANTHROPIC_API_KEY", model_id.removeprefix("anthropic/"))


def usage_from_completion(usage: Any) -> Optional[TokenUsage]:
    """Normalize an OpenAI-style usage object into TokenUsage."""
    if usage is None:
        return None
    details = getattr(usage, "prompt_tokens_details", None)
    cache_read = getattr(details, "cached_tokens", None) or 0
    return TokenUsage(
        input_tokens=getattr(usage, "prompt_tokens", None) or 0,
        output_tokens=getattr(usage, "completion_tokens", None) or 0,
        cache_read_tokens=cache_read,
    )


class OpenAICompatibleAgent:
    """Chat agent backed by an OpenAI-compatible endpoint with thread memory.

    The last `last_messages` turns of the thread are replayed before the new
    messages, and the new turn is stored once the reply is complete.
    """

    def __init__(
        self,
        agent_id: str,
        name: str,
        model: str,
        instructions: str = CORE_INSTRUCTIONS,
        threads: Optional[ThreadRepository] = None,
        last_messages: int = 20,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initialize the agent.

        Args:
            agent_id: Identifier used in API routes and usage records
            name: Display name
            model: Configured model id (before provider dispatch)
            instructions: System prompt
            threads: Optional thread store for conversation memory
            last_messages: Number of remembered messages replayed per call
            client: Preconfigured client (defaults to one for the provider)

        Raises:
            ValueError: If agent_id or model is missing/empty
            ConfigError: If the provider API key is not set
        """
        if not agent_id or not agent_id.strip():
            raise ValueError("agent_id is required and cannot be empty")
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.id = agent_id
        self.name = name
        self.model = model
        self.instructions = instructions
        self.threads = threads
        self.last_messages = last_messages
        self.target = resolve_provider(model)

        if client is None:
            api_key = os.environ.get(self.target.api_key_env)
            if not api_key:
                raise ConfigError(f"{self.target.api_key_env} environment variable is required for model {model}")
            client = AsyncOpenAI(api_key=api_key, base_url=self.target.base_url)
        self.client = client

    async def generate(self, messages: List[Message], context: AgentContext) -> AgentResponse:
        """Create a chat completion for the thread.

        Raises:
            ValueError: If messages is empty
            OpenAI API errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        payload = await self._build_payload(messages, context)
        response = await self.client.chat.completions.create(
            model=self.target.model,
            messages=payload,
        )

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        await self._remember(messages, text, context)
        return AgentResponse(text=text, usage=usage_from_completion(response.usage))

    def stream(self, messages: List[Message], context: AgentContext) -> "OpenAIAgentStream":
        if not messages:
            raise ValueError("messages is required and cannot be empty")
        return OpenAIAgentStream(self, messages, context)

    async def _build_payload(self, messages: List[Message], context: AgentContext) -> List[Message]:
        payload = [{"role": "system", "content": self.instructions}]
        if self.threads is not None:
            history = await asyncio.to_thread(
                self.threads.recent_messages, context.thread_id, self.last_messages
            )
            payload.extend({"role": m.role, "content": m.content} for m in history)
        payload.extend({"role": m["role"], "content": m["content"]} for m in messages)
        return payload

    async def _remember(self, messages: List[Message], reply: str, context: AgentContext) -> None:
        """Store the completed turn. A failed write is logged, the reply still stands."""
        if self.threads is None:
            return
        try:
            await asyncio.to_thread(self._store_turn, messages, reply, context)
        except Exception:
            logger.exception("Failed to store conversation turn for thread %s", context.thread_id)

    def _store_turn(self, messages: List[Message], reply: str, context: AgentContext) -> None:
        self.threads.ensure_thread(context.thread_id, context.resource_id)
        for message in messages:
            self.threads.append_message(context.thread_id, message["role"], message["content"])
        self.threads.append_message(context.thread_id, "assistant", reply)


class OpenAIAgentStream:
    """Streamed chat completion; text deltas are yielded as they arrive."""

    def __init__(self, agent: OpenAICompatibleAgent, messages: List[Message], context: AgentContext):
        self.agent = agent
        self.messages = messages
        self.context = context
        self.usage: Optional[TokenUsage] = None
        self._iterator = self._run()

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterator

    async def aclose(self) -> None:
        await self._iterator.aclose()

    async def _run(self) -> AsyncIterator[str]:
        payload = await self.agent._build_payload(self.messages, self.context)
        stream = await self.agent.client.chat.completions.create(
            model=self.agent.target.model,
            messages=payload,
            stream=True,
            stream_options={"include_usage": True},
        )

        parts = []
        try:
            async for chunk in stream:
                if getattr(chunk, "usage", None) is not None:
                    self.usage = usage_from_completion(chunk.usage)
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    parts.append(delta)
                    yield delta
        finally:
            await stream.close()

        await self.agent._remember(self.messages, "".join(parts), self.context)


def build_agent(config: AgentConfig, threads: Optional[ThreadRepository] = None) -> OpenAICompatibleAgent:
    """Create the served agent from process configuration."""
    logger.info("Serving agent '%s' with model %s", config.agent_id, config.model)
    return OpenAICompatibleAgent(
        agent_id=config.agent_id,
        name=config.agent_name,
        model=config.model,
        threads=threads,
        last_messages=config.memory.last_messages,
    )
