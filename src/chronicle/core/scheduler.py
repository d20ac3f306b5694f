"""Maintenance scheduler - periodic compression, memory expiry and cache cleanup."""

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from chronicle.core.logging import get_logger
from chronicle.core.typing import Clock

if TYPE_CHECKING:
    from chronicle.core.service import NarrativeMemoryService

logger = get_logger("core.scheduler")


@dataclass
class ScheduledTask:
    """A task scheduled for background execution."""

    id: str
    name: str
    callback: Callable
    interval: timedelta | None = None  # None = one-shot
    next_run: datetime = field(default_factory=datetime.now)
    last_run: datetime | None = None
    enabled: bool = True
    running: bool = False


class MaintenanceScheduler:
    """Runs interval tasks in the background; a failing task never stops the loop."""

    def __init__(self, clock: Clock = datetime.now, poll_seconds: float = 1.0):
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._clock = clock
        self._poll_seconds = poll_seconds

    def schedule_task(
        self,
        task_id: str,
        name: str,
        callback: Callable,
        interval: timedelta | None = None,
        delay: timedelta | None = None,
    ) -> None:
        """Schedule a background task."""
        next_run = self._clock()
        if delay:
            next_run += delay

        self._tasks[task_id] = ScheduledTask(
            id=task_id,
            name=name,
            callback=callback,
            interval=interval,
            next_run=next_run,
        )
        logger.info(f"Scheduled task: {name} (interval: {interval})")

    def cancel_task(self, task_id: str) -> bool:
        """Cancel a scheduled task."""
        if task_id in self._tasks:
            del self._tasks[task_id]
            return True
        return False

    def schedule_maintenance(
        self, service: "NarrativeMemoryService", interval: timedelta
    ) -> None:
        """Register the standard jobs: compression, memory expiry and cache cleanup."""
        self.schedule_task(
            task_id="compress",
            name="Episode compression",
            callback=service.compress_all_aged,
            interval=interval,
        )
        self.schedule_task(
            task_id="purge_memories",
            name="Expired memory cleanup",
            callback=service.purge_expired_memories,
            interval=interval,
        )
        self.schedule_task(
            task_id="purge_cache",
            name="Expired cache cleanup",
            callback=service.purge_expired_cache,
            interval=interval,
        )

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._scheduler_loop())
        logger.info("Maintenance scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler loop."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        logger.info("Maintenance scheduler stopped")

    async def run_pending(self) -> int:
        """Run every task that is due now. Returns how many ran."""
        now = self._clock()
        pending = [
            t for t in self._tasks.values()
            if t.enabled and not t.running and t.next_run <= now
        ]

        for task in pending:
            task.running = True
            try:
                result = task.callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Task {task.name} failed: {e}", exc_info=True)
            finally:
                task.running = False
                task.last_run = self._clock()

                if task.interval:
                    task.next_run = task.last_run + task.interval
                else:
                    # One-shot task, remove it
                    self._tasks.pop(task.id, None)

        return len(pending)

    async def _scheduler_loop(self) -> None:
        while self._running:
            await self.run_pending()
            await asyncio.sleep(self._poll_seconds)
