"""
HTTP surface.

FastAPI application exposing generate/stream, thread management, usage
summaries and the notification event stream.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from .. import __version__
from ..config.loader import AgentConfig, MemoryConfig
from ..core.heartbeat import HeartbeatScheduler
from ..core.notifications import NotificationBus
from ..core.session import SessionResolver
from ..logs import get_logger
from ..sdk.agent_client import ChatAgent, build_agent
from ..storage import initialize_storage
from ..storage.repository import UsageRepository
from ..storage.threads import ThreadRepository
from .service import AgentNotFoundError, RequestGateway

KEEP_ALIVE_SECONDS = 5.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

logger = get_logger("http")


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatMessage] = Field(min_length=1)
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    resource_id: Optional[str] = Field(default=None, alias="resourceId")

    def message_dicts(self) -> List[Dict[str, str]]:
        return [message.model_dump() for message in self.messages]


class CreateThreadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resource_id: Optional[str] = Field(default=None, alias="resourceId")


def sse_event(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


async def stream_gateway_events(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[str]:
    """Encode gateway events as server-sent events.

    Closing this generator (client disconnect) closes the gateway stream.
    """
    try:
        async for event in events:
            yield sse_event(event)
    finally:
        await events.aclose()


async def stream_notifications(
    bus: NotificationBus,
    keep_alive: float = KEEP_ALIVE_SECONDS
) -> AsyncIterator[str]:
    """Forward bus notifications as server-sent events.

    A keep-alive comment is sent every `keep_alive` seconds on a fixed
    schedule, whether or not notifications were sent in between. The
    subscription is released as soon as the client goes away.
    """
    loop = asyncio.get_running_loop()
    subscription = bus.subscribe()
    deadline = loop.time() + keep_alive
    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                deadline = loop.time() + keep_alive
                yield ": keep-alive\n\n"
                continue
            try:
                notification = await asyncio.wait_for(subscription.get(), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            if notification is None:
                return
            yield sse_event(notification.to_dict())
    finally:
        bus.unsubscribe(subscription)


def create_app(
    gateway: RequestGateway,
    bus: NotificationBus,
    memory: MemoryConfig,
    scheduler: Optional[HeartbeatScheduler] = None,
    keep_alive: float = KEEP_ALIVE_SECONDS,
) -> FastAPI:
    """Build the FastAPI application around already constructed components.

    The heartbeat scheduler, if given, runs for the lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()

    app = FastAPI(title="fleet-agent", version=__version__, lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(AgentNotFoundError)
    async def agent_not_found(request: Request, exc: AgentNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    @app.get("/api/agents")
    async def list_agents():
        return {"agents": gateway.list_agents()}

    @app.get("/memory/config")
    async def memory_config():
        return memory.to_dict()

    @app.post("/api/agents/{agent_id}/generate")
    async def generate(agent_id: str, body: ChatRequest):
        gateway.get_agent(agent_id)
        try:
            result = await gateway.generate(
                agent_id, body.message_dicts(), body.thread_id, body.resource_id
            )
        except AgentNotFoundError:
            raise
        except Exception as e:
            logger.exception("Failed to generate a reply for agent '%s'", agent_id)
            raise HTTPException(status_code=500, detail=f"Agent invocation failed: {e}")
        return result.to_dict()

    @app.post("/api/agents/{agent_id}/stream")
    async def stream(agent_id: str, body: ChatRequest):
        events = await gateway.open_stream(
            agent_id, body.message_dicts(), body.thread_id, body.resource_id
        )
        return StreamingResponse(
            stream_gateway_events(events), media_type="text/event-stream", headers=SSE_HEADERS
        )

    @app.get("/api/agents/{agent_id}/memory/threads")
    async def list_threads(agent_id: str, resourceId: Optional[str] = None):
        gateway.get_agent(agent_id)
        try:
            threads = await gateway.list_threads(agent_id, resourceId)
        except Exception as e:
            logger.exception("Failed to list threads")
            return JSONResponse(status_code=500, content={"error": "Failed to list threads", "details": str(e)})
        return {"threads": [thread.to_dict() for thread in threads]}

    @app.post("/api/agents/{agent_id}/memory/threads")
    async def create_thread(agent_id: str, body: Optional[CreateThreadRequest] = None):
        gateway.get_agent(agent_id)
        resource_id = body.resource_id if body is not None else None
        try:
            thread = await gateway.create_thread(agent_id, resource_id)
        except Exception as e:
            logger.exception("Failed to create thread")
            return JSONResponse(status_code=500, content={"error": "Failed to create thread", "details": str(e)})
        return {"thread": thread.to_dict()}

    @app.get("/api/agents/{agent_id}/usage")
    async def agent_usage(agent_id: str):
        gateway.get_agent(agent_id)
        try:
            summary = await gateway.summarize_usage(agent_id)
        except Exception as e:
            logger.exception("Failed to get usage")
            return JSONResponse(status_code=500, content={"error": "Failed to get usage", "details": str(e)})
        return summary.to_dict()

    @app.get("/api/agents/{agent_id}/usage/threads/{thread_id}")
    async def thread_usage(agent_id: str, thread_id: str):
        gateway.get_agent(agent_id)
        try:
            summary = await gateway.summarize_usage(agent_id, thread_id)
        except Exception as e:
            logger.exception("Failed to get thread usage")
            return JSONResponse(status_code=500, content={"error": "Failed to get thread usage", "details": str(e)})
        return summary.to_dict()

    @app.get("/api/agents/{agent_id}/notifications/stream")
    async def notifications(agent_id: str):
        gateway.get_agent(agent_id)
        return StreamingResponse(
            stream_notifications(bus, keep_alive), media_type="text/event-stream", headers=SSE_HEADERS
        )

    return app


def build_app(config: AgentConfig, agent: Optional[ChatAgent] = None) -> FastAPI:
    """Wire every component from configuration and return the application.

    Args:
        config: Process configuration
        agent: Agent to serve (defaults to the configured provider agent)
    """
    initialize_storage(config.db_path)
    threads = ThreadRepository(config.db_path)
    usage = UsageRepository(config.db_path, pricing=config.pricing)
    if agent is None:
        agent = build_agent(config, threads)

    bus = NotificationBus()
    gateway = RequestGateway(
        agents={agent.id: agent},
        resolver=SessionResolver(threads, config.default_resource_id),
        threads=threads,
        usage=usage,
        pricing=config.pricing,
    )
    scheduler = HeartbeatScheduler(
        agent=agent,
        bus=bus,
        heartbeat_path=config.heartbeat_path,
        interval=config.heartbeat_interval,
        usage=usage,
    )
    return create_app(gateway, bus, config.memory, scheduler=scheduler)
