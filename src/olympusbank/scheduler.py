"""Decide when sync passes and interest checks run.

The scheduler owns timers and visibility tracking only. It calls back into
the family service for the actual work and guarantees that no two sync
passes overlap. Timer and visibility triggers that find a pass in flight are
dropped instead of queued so a hung remote call cannot pile work up.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

from .config import INITIAL_SYNC_DELAY_SECONDS, INTEREST_CHECK_INTERVAL_SECONDS, SYNC_INTERVAL_SECONDS
from .ops import StructuredLogger


class SyncTrigger(str, Enum):
    STARTUP = "startup"
    CATCH_UP = "catch_up"
    PERIODIC = "periodic"
    VISIBILITY = "visibility"
    MANUAL = "manual"
    FORCE = "force"


# Triggers a user is waiting on; these wait for a running pass instead of being dropped.
BLOCKING_TRIGGERS = frozenset({SyncTrigger.MANUAL, SyncTrigger.FORCE})

SyncPass = Callable[[SyncTrigger], Awaitable[bool]]
PeriodicJob = Callable[[], Awaitable[object]]


class SyncScheduler:
    """Drive sync passes on startup, on timers, on visibility and on demand."""

    def __init__(
        self,
        run_pass: SyncPass,
        *,
        interest_job: PeriodicJob | None = None,
        initial_delay: float = INITIAL_SYNC_DELAY_SECONDS,
        interval: float = SYNC_INTERVAL_SECONDS,
        interest_interval: float = INTEREST_CHECK_INTERVAL_SECONDS,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._run_pass = run_pass
        self._interest_job = interest_job
        self.initial_delay = initial_delay
        self.interval = interval
        self.interest_interval = interest_interval
        self._logger = logger or StructuredLogger()
        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []
        self._triggered: set[asyncio.Task] = set()
        self._visible = True
        self.completed_passes = 0
        self.skipped_passes = 0

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def pass_in_flight(self) -> bool:
        return self._lock.locked()

    @property
    def visible(self) -> bool:
        return self._visible

    async def start(self) -> bool:
        """Run the startup pass and arm the timers. Must be called inside a loop."""

        if self.running:
            return False
        result = await self.trigger(SyncTrigger.STARTUP)
        self._tasks = [asyncio.create_task(self._sync_loop(), name="olympusbank-sync")]
        if self._interest_job is not None:
            self._tasks.append(asyncio.create_task(self._interest_loop(), name="olympusbank-interest"))
        return result

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks + list(self._triggered), []
        self._triggered.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def trigger(self, reason: SyncTrigger) -> bool:
        """Run one sync pass for ``reason``; ``False`` when skipped or failed."""

        if self._lock.locked() and reason not in BLOCKING_TRIGGERS:
            self.skipped_passes += 1
            self._logger.log("sync_skipped", trigger=reason.value)
            return False
        async with self._lock:
            result = await self._run_pass(reason)
            self.completed_passes += 1
            return result

    def set_visibility(self, visible: bool) -> Optional[asyncio.Task]:
        """Record a visibility change; a hidden-to-visible flip schedules a pass."""

        became_visible = visible and not self._visible
        self._visible = visible
        if not became_visible:
            return None
        task = asyncio.create_task(self._guarded(SyncTrigger.VISIBILITY))
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)
        return task

    async def _sync_loop(self) -> None:
        await asyncio.sleep(self.initial_delay)
        await self._guarded(SyncTrigger.CATCH_UP)
        while True:
            await asyncio.sleep(self.interval)
            await self._guarded(SyncTrigger.PERIODIC)

    async def _interest_loop(self) -> None:
        assert self._interest_job is not None
        while True:
            await asyncio.sleep(self.interest_interval)
            try:
                await self._interest_job()
            except Exception as exc:  # noqa: BLE001
                self._logger.error("interest_job_failed", error=repr(exc))

    async def _guarded(self, reason: SyncTrigger) -> bool:
        try:
            return await self.trigger(reason)
        except Exception as exc:  # noqa: BLE001
            self._logger.error("sync_pass_failed", trigger=reason.value, error=repr(exc))
            return False


__all__ = ["SyncScheduler", "SyncTrigger", "BLOCKING_TRIGGERS"]
