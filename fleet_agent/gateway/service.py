"""
Request orchestration.

Resolves the conversation, invokes the agent and meters the result. Usage
metering is a best-effort side channel: a failed write is logged and the
caller still gets the agent's reply.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from ..core.pricing import PRICING_TABLE, PricingTable, calculate_usage_cost
from ..core.session import ResolvedSession, SessionResolver
from ..core.token_counter import TokenUsage
from ..logs import get_logger
from ..sdk.agent_client import AgentContext, ChatAgent, Message
from ..storage.models import Thread, UsageSummary
from ..storage.repository import UsageRepository
from ..storage.threads import ThreadRepository

logger = get_logger("gateway")


class AgentNotFoundError(LookupError):
    """Raised when a request names an agent this process does not serve."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent '{agent_id}' not found")
        self.agent_id = agent_id


@dataclass(frozen=True)
class GenerateResult:
    """Synchronous reply returned to the caller."""
    text: str
    thread_id: str
    usage: Optional[TokenUsage]
    cost: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "threadId": self.thread_id,
            "usage": self.usage.to_dict() if self.usage is not None else None,
            "cost": self.cost,
        }


class RequestGateway:
    """Entry point for generate/stream requests and their read-side queries.

    Args:
        agents: Served agents keyed by id
        resolver: Session resolver for thread/resource identifiers
        threads: Thread store used by the thread routes
        usage: Usage ledger
        pricing: Pricing table used for the cost returned to callers
    """

    def __init__(
        self,
        agents: Mapping[str, ChatAgent],
        resolver: SessionResolver,
        threads: ThreadRepository,
        usage: UsageRepository,
        pricing: PricingTable = PRICING_TABLE,
    ):
        self.agents = dict(agents)
        self.resolver = resolver
        self.threads = threads
        self.usage = usage
        self.pricing = pricing
        # Last model used per thread. Never evicted.
        self._thread_models: Dict[str, str] = {}

    def get_agent(self, agent_id: str) -> ChatAgent:
        agent = self.agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    def list_agents(self) -> List[Dict[str, str]]:
        return [{"id": agent_id, "name": agent.name} for agent_id, agent in self.agents.items()]

    async def generate(
        self,
        agent_id: str,
        messages: List[Message],
        thread_id: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> GenerateResult:
        """Run one synchronous agent turn.

        Raises:
            AgentNotFoundError: If agent_id is unknown
            Exception: Agent invocation failures propagate to the caller
        """
        agent = self.get_agent(agent_id)
        session = await self.resolver.resolve(thread_id, resource_id)
        self._check_model_pin(session.thread_id, agent.model)

        response = await agent.generate(messages, _context(session))

        cost = None
        if response.usage is not None:
            cost = calculate_usage_cost(agent.model, response.usage, self.pricing)
            await self._record_usage(agent, session.thread_id, response.usage)

        return GenerateResult(
            text=response.text,
            thread_id=session.thread_id,
            usage=response.usage,
            cost=cost
        )

    async def open_stream(
        self,
        agent_id: str,
        messages: List[Message],
        thread_id: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Resolve the request and return its event stream.

        Lookup failures are raised here, before any event is produced.
        The returned iterator yields {"text": chunk} events followed by a
        single terminal {"done": True, "threadId": ...} or {"error": ...}.

        Raises:
            AgentNotFoundError: If agent_id is unknown
        """
        agent = self.get_agent(agent_id)
        session = await self.resolver.resolve(thread_id, resource_id)
        self._check_model_pin(session.thread_id, agent.model)
        return self._stream_events(agent, session, messages)

    async def _stream_events(
        self,
        agent: ChatAgent,
        session: ResolvedSession,
        messages: List[Message],
    ) -> AsyncIterator[Dict[str, Any]]:
        agent_stream = None
        try:
            agent_stream = agent.stream(messages, _context(session))
            async for chunk in agent_stream:
                yield {"text": chunk}
            usage = agent_stream.usage
        except Exception as e:
            logger.exception("Stream failed for thread %s", session.thread_id)
            yield {"error": str(e)}
            return
        finally:
            if agent_stream is not None:
                await agent_stream.aclose()

        if usage is not None:
            await self._record_usage(agent, session.thread_id, usage)

        yield {"done": True, "threadId": session.thread_id}

    async def list_threads(self, agent_id: str, resource_id: Optional[str] = None) -> List[Thread]:
        self.get_agent(agent_id)
        return await asyncio.to_thread(self.threads.list_threads, resource_id)

    async def create_thread(self, agent_id: str, resource_id: Optional[str] = None) -> Thread:
        self.get_agent(agent_id)
        return await asyncio.to_thread(
            self.threads.create_thread, resource_id or self.resolver.default_resource_id
        )

    async def summarize_usage(self, agent_id: str, thread_id: Optional[str] = None) -> UsageSummary:
        self.get_agent(agent_id)
        return await asyncio.to_thread(self.usage.summarize, agent_id, thread_id)

    def _check_model_pin(self, thread_id: str, model: str) -> None:
        previous = self._thread_models.get(thread_id)
        if previous is not None and previous != model:
            logger.warning(
                "Model changed mid-session for %s: %s -> %s. Cache will miss.",
                thread_id, previous, model
            )
        self._thread_models[thread_id] = model

    async def _record_usage(self, agent: ChatAgent, thread_id: str, usage: TokenUsage) -> None:
        try:
            await asyncio.to_thread(
                self.usage.record_usage,
                agent.id,
                thread_id,
                agent.model,
                usage.input_tokens,
                usage.output_tokens,
                usage.cache_read_tokens,
                usage.cache_write_tokens,
            )
        except Exception:
            logger.exception("Failed to record usage for thread %s", thread_id)


def _context(session: ResolvedSession) -> AgentContext:
    return AgentContext(thread_id=session.thread_id, resource_id=session.resource_id)
