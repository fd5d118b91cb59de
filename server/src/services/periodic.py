from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable, Optional, Set

from server.src.core.logging import get_logger

logger = get_logger(__name__)

Callback = Callable[[], Awaitable[None]]


class PeriodicTask:
    """Runs an async callback every `interval` seconds.

    The timer can be created paused; while paused, elapsed intervals do not
    fire. `tick()` fires a cycle immediately and restarts the interval. Each
    cycle runs in its own task so a slow cycle never delays the timer, but a
    task never runs two cycles of its callback at once: a tick that arrives
    while the previous cycle is still running is skipped.

    `stop()` ends the timer loop so no further cycles start. Cycles already in
    flight are left to finish; `join()` waits for them.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callback,
        *,
        paused: bool = True,
    ) -> None:
        self._name = name
        self._interval = max(0.001, float(interval))
        self._callback = callback
        self._paused = paused
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()
        self._stopped = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def paused(self) -> bool:
        return self._paused

    @paused.setter
    def paused(self, value: bool) -> None:
        self._paused = bool(value)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        """True while a cycle of this task is executing."""
        return self._current is not None and not self._current.done()

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError(f"Periodic task '{self._name}' was stopped and cannot be restarted")
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self._name}")

    def tick(self) -> None:
        """Fire a cycle now and restart the interval."""
        if self._stopped:
            return
        if self.running:
            self._wake_event.set()
        else:
            self._fire()

    async def stop(self) -> None:
        self._stopped = True
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def join(self) -> None:
        """Wait until every cycle started so far has finished."""
        while self._cycles:
            await asyncio.gather(*tuple(self._cycles), return_exceptions=True)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                if self._paused:
                    continue
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            self._fire()

    def _fire(self) -> None:
        if self.busy:
            logger.warning("Skipping %s cycle: previous cycle is still running", self._name)
            return
        cycle = asyncio.create_task(self._execute(), name=f"periodic:{self._name}:cycle")
        self._current = cycle
        self._cycles.add(cycle)
        cycle.add_done_callback(self._cycles.discard)

    async def _execute(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Unhandled error in %s cycle", self._name)
