"""
Tick scheduler for the monitoring loop.

A single asyncio task that sleeps for the current interval, runs one tick to
completion, and only then re-arms. Ticks therefore never overlap, and a slow
tick simply delays the next one. ``stop()`` wakes a sleeping loop
immediately, lets a running tick finish, and guarantees no tick fires after
it returns.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickTiming:
    """Monotonic start/completion times of one tick."""

    started: float
    completed: float


class TickScheduler:
    """Cooperative re-arming scheduler owning one monitoring task."""

    def __init__(
        self,
        tick: Callable[[], Awaitable[None]],
        interval: Callable[[], float],
        name: str = "recovery-monitor",
        history_size: int = 100,
    ):
        """
        Args:
            tick: Coroutine function run once per tick
            interval: Returns the seconds to wait before the next tick; read
                before every sleep so interval changes apply on the next tick
            name: Task name
            history_size: Number of TickTiming entries retained
        """
        self._tick = tick
        self._interval = interval
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._in_tick = False
        self.ticks_run = 0
        self.history: Deque[TickTiming] = deque(maxlen=history_size)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_tick(self) -> bool:
        return self._in_tick

    def start(self) -> bool:
        """Arm the loop. Returns False if it was already running."""
        if self.running:
            logger.warning(f"Scheduler {self._name} already running")
            return False

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=self._name)
        logger.debug(f"Scheduler {self._name} started")
        return True

    async def stop(self) -> None:
        """Stop after the current tick (if any) completes. Idempotent."""
        if self._task is None:
            return

        task = self._task
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug(f"Scheduler {self._name} task was cancelled")
        finally:
            self._task = None
            logger.debug(f"Scheduler {self._name} stopped")

    def timings(self) -> List[TickTiming]:
        return list(self.history)

    async def _run(self) -> None:
        stop_event = self._stop_event
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, self._interval()))
                break
            except asyncio.TimeoutError:
                pass

            started = time.monotonic()
            self._in_tick = True
            try:
                await self._tick()
            except Exception as e:
                logger.exception(f"Error in monitoring tick: {e}")
            finally:
                self._in_tick = False
                self.ticks_run += 1
                self.history.append(TickTiming(started=started, completed=time.monotonic()))
