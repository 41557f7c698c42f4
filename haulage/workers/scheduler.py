"""
Background Scheduler
====================

Runs a fixed list of periodic tasks, each on its own timer loop.

* ``run_due()`` runs every task whose next run time has come according to
  the injected clock.  Tests drive it by moving a ``FrozenClock``.
* ``start()`` spawns one loop per task: run once immediately, then sleep
  for the task's interval or until ``stop()`` is signalled.

Ticks must be idempotent.  Several scheduler processes may run the same
task at the same time; the ticks rely on existence checks and unique keys
rather than on a lock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional

from haulage.clock import Clock

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    name: str
    interval: timedelta
    tick: Callable[[], Awaitable[int]]
    next_run_at: Optional[datetime] = None


class Scheduler:
    def __init__(self, tasks: Iterable[ScheduledTask], clock: Clock):
        self.tasks = list(tasks)
        self.clock = clock
        self._stop_event: asyncio.Event | None = None
        self._runners: list[asyncio.Task] = []

    # ── Public API ────────────────────────────────────────────────────

    async def run_due(self) -> dict[str, int]:
        """Run the tasks that are due now.  Returns effects applied per task."""
        now = self.clock.now()
        results: dict[str, int] = {}
        for task in self.tasks:
            if task.next_run_at is None or task.next_run_at <= now:
                results[task.name] = await self.run_task(task)
        return results

    async def run_task(self, task: ScheduledTask) -> int:
        try:
            applied = await task.tick()
        except Exception:
            logger.exception("Unhandled error in %s tick", task.name)
            applied = 0
        task.next_run_at = self.clock.now() + task.interval
        return applied

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        self._runners = [
            asyncio.create_task(self._loop(task), name=f"scheduler:{task.name}")
            for task in self.tasks
        ]
        logger.info(
            "Scheduler started (%s)",
            ", ".join(f"{t.name}={int(t.interval.total_seconds())}s" for t in self.tasks),
        )

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        for runner in self._runners:
            runner.cancel()
        for runner in self._runners:
            try:
                await runner
            except asyncio.CancelledError:
                pass
        self._runners = []
        logger.info("Scheduler stopped")

    # ── Internals ─────────────────────────────────────────────────────

    async def _loop(self, task: ScheduledTask) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            await self.run_task(task)
            # Wait for the interval or until stop is signalled
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=task.interval.total_seconds()
                )
                break
            except asyncio.TimeoutError:
                pass  # next run
