"""
Conversation context resolution.

Maps the optional thread/resource identifiers of an inbound request onto a
concrete persisted thread.

Resolution order:
1. Both identifiers given - used verbatim, no lookup
2. Thread only - the owning resource is looked up, "default" if unknown
3. Resource only or neither - newest thread of the resource, created if none
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Protocol

from ..logs import get_logger
from ..storage.models import Thread

DEFAULT_RESOURCE_ID = "default"

logger = get_logger("session")


class ThreadStore(Protocol):
    """Thread persistence consumed by the resolver."""

    def get_thread_by_id(self, thread_id: str) -> Optional[Thread]: ...

    def list_threads(self, resource_id: Optional[str] = None) -> List[Thread]: ...

    def create_thread(self, resource_id: str, title: Optional[str] = None) -> Thread: ...


@dataclass(frozen=True)
class ResolvedSession:
    """Concrete thread and resource a request runs against."""
    thread_id: str
    resource_id: str


class SessionResolver:
    """Resolve (or create) the thread for a request.

    Store calls run in a worker thread so the event loop keeps serving other
    requests. Store failures propagate unchanged.
    """

    def __init__(self, store: ThreadStore, default_resource_id: str = DEFAULT_RESOURCE_ID):
        self.store = store
        self.default_resource_id = default_resource_id

    async def resolve(
        self,
        thread_id: Optional[str] = None,
        resource_id: Optional[str] = None
    ) -> ResolvedSession:
        if thread_id and resource_id:
            return ResolvedSession(thread_id, resource_id)

        if thread_id:
            thread = await asyncio.to_thread(self.store.get_thread_by_id, thread_id)
            owner = thread.resource_id if thread is not None and thread.resource_id else None
            if owner is None:
                logger.debug("Thread %s has no known resource, using '%s'", thread_id, self.default_resource_id)
            return ResolvedSession(thread_id, owner or self.default_resource_id)

        rid = resource_id or self.default_resource_id
        threads = await asyncio.to_thread(self.store.list_threads, rid)
        if threads:
            return ResolvedSession(threads[-1].id, rid)

        thread = await asyncio.to_thread(self.store.create_thread, rid)
        logger.info("Created thread %s for resource '%s'", thread.id, rid)
        return ResolvedSession(thread.id, rid)
