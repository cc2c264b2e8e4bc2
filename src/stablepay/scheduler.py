# src/stablepay/scheduler.py
"""
Deferred, time-triggered jobs (payment expiry) without real timers.

Jobs sit in a heap ordered by due time. Nothing fires on its own:
`run_due()` executes whatever is due according to the injected clock,
and `run_forever()` polls it from a background task in production. Tests
swap in `ManualClock` and call `run_due()` after advancing time.
"""
import asyncio
import heapq
import inspect
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

JobCallback = Callable[[], Union[Awaitable[Any], Any]]


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)


class ManualClock:
    """Virtual time, only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now


@dataclass(eq=False)
class Job:
    due: datetime
    callback: JobCallback
    name: str = ""
    cancelled: bool = field(default=False)

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler:
    def __init__(self, clock=None):
        self._clock = clock or SystemClock()
        self._heap: list[tuple[datetime, int, Job]] = []
        self._seq = itertools.count()

    @property
    def clock(self):
        return self._clock

    def __len__(self) -> int:
        return sum(1 for _, _, job in self._heap if not job.cancelled)

    def schedule(self, due: datetime, callback: JobCallback, name: str = "") -> Job:
        job = Job(due=due, callback=callback, name=name)
        heapq.heappush(self._heap, (due, next(self._seq), job))
        return job

    def schedule_in(self, seconds: float, callback: JobCallback, name: str = "") -> Job:
        return self.schedule(self._clock.now() + timedelta(seconds=seconds), callback, name)

    def next_due(self) -> Optional[datetime]:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    async def run_due(self) -> int:
        """Runs every job due by now; returns how many ran."""
        now = self._clock.now()
        ran = 0
        while self._heap and self._heap[0][0] <= now:
            _, _, job = heapq.heappop(self._heap)
            if job.cancelled:
                continue
            try:
                result = job.callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # one failing job must not stall the rest of the queue
                logger.exception(f"Scheduled job '{job.name}' failed")
            ran += 1
        return ran

    async def run_forever(self, interval: float = 1.0, on_tick: Optional[Callable[[], Any]] = None):
        logger.info(f"Scheduler loop started (interval={interval}s)")
        try:
            while True:
                await self.run_due()
                if on_tick is not None:
                    on_tick()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Scheduler loop stopped")
            raise
