"""
Scheduled heartbeat checks.

On a fixed interval the scheduler re-reads the operator's HEARTBEAT.md and,
when it contains unchecked checklist items, asks the agent to process them.
Replies that start with the acknowledgement token are silent; anything else
is published to the notification bus.

Runs are not serialized: if a run is still in flight when the timer fires
again, the next run starts alongside it.
"""

import asyncio
import re
from enum import Enum
from pathlib import Path
from typing import Optional, Set

from ..logs import get_logger
from ..sdk.agent_client import AgentContext, ChatAgent
from ..storage.repository import UsageRepository
from .notifications import NotificationBus
from .token_counter import TokenUsage

HEARTBEAT_OK = "HEARTBEAT_OK"
HEARTBEAT_THREAD_ID = "heartbeat:main"
HEARTBEAT_RESOURCE_ID = "heartbeat"

UNCHECKED_ITEM = re.compile(r"- \[ \]")

logger = get_logger("heartbeat")


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class HeartbeatOutcome(Enum):
    """Result of a single heartbeat tick."""
    SKIPPED_MISSING = "skipped_missing"
    SKIPPED_NO_ITEMS = "skipped_no_items"
    OK = "ok"
    NOTIFIED = "notified"
    FAILED = "failed"


def has_actionable_items(content: str) -> bool:
    """True if the document contains an unchecked "- [ ]" item."""
    return UNCHECKED_ITEM.search(content) is not None


def build_heartbeat_prompt(content: str) -> str:
    return (
        "You are running a scheduled heartbeat check. Here is your HEARTBEAT.md:\n\n"
        f"{content}\n\n"
        f"Process any unchecked tasks (- [ ]) above. When done, respond with {HEARTBEAT_OK}."
    )


def read_heartbeat_document(path: Path) -> Optional[str]:
    """Read the heartbeat document; None when it does not exist."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


class HeartbeatScheduler:
    """Fixed-interval heartbeat owned by the server lifespan.

    Args:
        agent: Agent invoked for actionable ticks
        bus: Bus that receives non-acknowledgement replies
        heartbeat_path: Location of HEARTBEAT.md
        interval: Seconds between ticks
        usage: Optional usage ledger for heartbeat invocations
    """

    def __init__(
        self,
        agent: ChatAgent,
        bus: NotificationBus,
        heartbeat_path: Path,
        interval: float,
        usage: Optional[UsageRepository] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.agent = agent
        self.bus = bus
        self.heartbeat_path = Path(heartbeat_path)
        self.interval = interval
        self.usage = usage
        self._task: Optional[asyncio.Task] = None
        self._runs: Set[asyncio.Task] = set()

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self._runs else SchedulerState.IDLE

    @property
    def started(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.started:
            return
        logger.info("Starting with interval %ss", self.interval)
        self._task = asyncio.create_task(self._scheduler_loop())

    async def stop(self) -> None:
        """Cancel the timer and any run still in flight."""
        tasks = list(self._runs)
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._runs.clear()
        logger.info("Stopped")

    async def _scheduler_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            run = asyncio.create_task(self.run_once())
            self._runs.add(run)
            run.add_done_callback(self._runs.discard)

    async def run_once(self) -> HeartbeatOutcome:
        """Execute one heartbeat tick. Never raises."""
        logger.info("tick")
        try:
            content = await asyncio.to_thread(read_heartbeat_document, self.heartbeat_path)
            if content is None:
                logger.info("skipped - %s not found", self.heartbeat_path.name)
                return HeartbeatOutcome.SKIPPED_MISSING

            if not content.strip() or not has_actionable_items(content):
                logger.info("skipped - no actionable items")
                return HeartbeatOutcome.SKIPPED_NO_ITEMS

            logger.info("running...")
            response = await self.agent.generate(
                [{"role": "user", "content": build_heartbeat_prompt(content)}],
                AgentContext(HEARTBEAT_THREAD_ID, HEARTBEAT_RESOURCE_ID),
            )

            await self._record_usage(response.usage)

            text = response.text or ""
            if text.startswith(HEARTBEAT_OK):
                logger.info("OK")
                return HeartbeatOutcome.OK

            logger.info("processed - emitting notification")
            self.bus.publish(text)
            return HeartbeatOutcome.NOTIFIED
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error during heartbeat run")
            return HeartbeatOutcome.FAILED

    async def _record_usage(self, usage: Optional[TokenUsage]) -> None:
        if self.usage is None or usage is None:
            return
        try:
            await asyncio.to_thread(
                self.usage.record_usage,
                self.agent.id,
                HEARTBEAT_THREAD_ID,
                self.agent.model,
                usage.input_tokens,
                usage.output_tokens,
                usage.cache_read_tokens,
                usage.cache_write_tokens,
            )
        except Exception:
            logger.exception("Failed to record heartbeat usage")
