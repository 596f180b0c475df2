"""
Step Scheduler Module
=====================

Time-ordered dispatch of execution steps.

Every pacing decision of the execution algorithms (next iceberg slice, next
TWAP interval) is a step with a "run at or after T" contract. Steps live in a
single heap ordered by (run_at, sequence) and are dispatched either
synchronously (run_due / run_until_idle, deterministic with VirtualClock) or
by a background loop (start / stop).

Steps sharing a key are serialized; steps of different keys run concurrently.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from config.settings import get_logger

logger = get_logger(__name__)


StepAction = Callable[[], Awaitable[None]]


# =============================================================================
# CLOCKS
# =============================================================================

class Clock(ABC):
    """Source of time for pacing."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time."""
        ...

    @abstractmethod
    async def sleep_until(self, when: datetime) -> None:
        """Suspend until the clock reads at least `when`."""
        ...


class SystemClock(Clock):
    """Wall clock backed by asyncio.sleep."""

    def now(self) -> datetime:
        return datetime.now()

    async def sleep_until(self, when: datetime) -> None:
        delay = (when - self.now()).total_seconds()
        await asyncio.sleep(max(0.0, delay))


class VirtualClock(Clock):
    """
    Manually advanced clock.

    sleep_until jumps straight to the requested time, so paced execution
    runs instantly and deterministically.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        """Move the clock forward."""
        self._now += timedelta(seconds=seconds)
        return self._now

    def set(self, when: datetime) -> None:
        if when > self._now:
            self._now = when

    async def sleep_until(self, when: datetime) -> None:
        self.set(when)
        await asyncio.sleep(0)


# =============================================================================
# STEP SCHEDULER
# =============================================================================

@dataclass(order=True)
class ScheduledStep:
    """Queued step; ordered by run time, then submission sequence."""
    run_at: datetime
    sequence: int
    action: StepAction = field(compare=False)
    key: str = field(default="", compare=False)


class StepScheduler:
    """
    Single-heap scheduler for execution steps.

    Example:
        scheduler = StepScheduler(VirtualClock())
        scheduler.schedule(scheduler.clock.now(), my_step, key="order-1")
        await scheduler.run_until_idle()
    """

    def __init__(self, clock: Clock | None = None, poll_interval: float = 0.5):
        """
        Initialize scheduler.

        Args:
            clock: Time source (SystemClock when omitted)
            poll_interval: Max idle wait of the background loop, seconds
        """
        self.clock = clock or SystemClock()
        self.poll_interval = poll_interval

        self._heap: list[ScheduledStep] = []
        self._sequence = itertools.count()
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._key_refs: dict[str, int] = {}

        self._inflight: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None
        self._wakeup: asyncio.Event | None = None
        self._running = False

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------

    def schedule(
        self,
        run_at: datetime,
        action: StepAction,
        key: str = "",
    ) -> ScheduledStep:
        """
        Enqueue a step to run at or after `run_at`.

        Args:
            run_at: Earliest run time
            action: Zero-argument coroutine function
            key: Serialization key (typically the order id)
        """
        step = ScheduledStep(run_at=run_at, sequence=next(self._sequence), action=action, key=key)
        heapq.heappush(self._heap, step)
        if self._wakeup is not None:
            self._wakeup.set()
        return step

    @property
    def pending(self) -> int:
        """Queued steps not yet dispatched."""
        return len(self._heap)

    @property
    def inflight(self) -> int:
        """Dispatched steps still running (background mode)."""
        return len(self._inflight)

    @property
    def is_idle(self) -> bool:
        return not self._heap and not self._inflight

    @property
    def is_running(self) -> bool:
        return self._running

    def next_run_at(self) -> datetime | None:
        return self._heap[0].run_at if self._heap else None

    def _pop_due(self) -> list[ScheduledStep]:
        now = self.clock.now()
        due = []
        while self._heap and self._heap[0].run_at <= now:
            due.append(heapq.heappop(self._heap))
        return due

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _run_step(self, step: ScheduledStep) -> None:
        lock = self._key_locks.setdefault(step.key, asyncio.Lock())
        self._key_refs[step.key] = self._key_refs.get(step.key, 0) + 1
        try:
            async with lock:
                await step.action()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Step for '{step.key}' failed: {e}")
        finally:
            self._key_refs[step.key] -= 1
            if self._key_refs[step.key] == 0:
                del self._key_refs[step.key]
                self._key_locks.pop(step.key, None)

    async def run_due(self) -> int:
        """
        Run every step that is due, including steps made due by those steps.

        Returns:
            Number of steps executed
        """
        executed = 0
        due = self._pop_due()
        while due:
            await asyncio.gather(*(self._run_step(step) for step in due))
            executed += len(due)
            due = self._pop_due()
        return executed

    async def advance(self) -> bool:
        """
        Sleep until the earliest queued step and run everything then due.

        Returns:
            False when nothing was queued
        """
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        if not self._heap:
            return False
        await self.clock.sleep_until(self._heap[0].run_at)
        await self.run_due()
        return True

    async def run_until_idle(self) -> int:
        """
        Drain the queue, sleeping on the clock between steps.

        Returns:
            Number of steps executed
        """
        executed = 0
        while self._heap or self._inflight:
            if self._inflight:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)
                continue
            await self.clock.sleep_until(self._heap[0].run_at)
            executed += await self.run_due()
        return executed

    # -------------------------------------------------------------------------
    # Background loop
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background dispatch loop."""
        if self._running:
            return
        self._running = True
        self._wakeup = asyncio.Event()
        self._loop_task = asyncio.create_task(self._dispatch_loop())
        logger.info("Step scheduler started")

    async def stop(self) -> None:
        """Stop the background loop and wait for in-flight steps."""
        if not self._running:
            return
        self._running = False
        if self._wakeup is not None:
            self._wakeup.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        self._wakeup = None
        logger.info(f"Step scheduler stopped ({len(self._heap)} steps pending)")

    async def _dispatch_loop(self) -> None:
        assert self._wakeup is not None

        while self._running:
            self._wakeup.clear()
            for step in self._pop_due():
                task = asyncio.create_task(self._run_step(step))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)

            timeout = self.poll_interval
            if self._heap:
                delay = (self._heap[0].run_at - self.clock.now()).total_seconds()
                timeout = min(timeout, max(0.0, delay))

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass


__all__ = [
    "StepAction",
    "Clock",
    "SystemClock",
    "VirtualClock",
    "ScheduledStep",
    "StepScheduler",
]
