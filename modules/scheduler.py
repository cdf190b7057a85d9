"""
Scheduler - cancellable periodic tasks on the asyncio event loop.

All ticks run on the loop thread, so callbacks never overlap each other or
any other coroutine step. cancel() invalidates the pending timer handle
before returning: once it returns, no further tick can fire.

Usage:
    task = start_periodic(0.1, sampler.detect_pitch, name="sampling")
    ...
    task.cancel()
"""
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Calls `callback` every `interval` seconds, first call one interval after start().

    Deadlines are computed from the previous deadline so the cadence does
    not drift; if the loop falls behind, the next tick is scheduled one
    interval from now instead of firing a burst.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
        name: str = "",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval
        self._callback = callback
        self._loop = loop
        self._name = name or getattr(callback, "__name__", "task")
        self._handle: Optional[asyncio.TimerHandle] = None
        self._next_deadline = 0.0
        self._cancelled = False
        self._tick_count = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def name(self) -> str:
        return self._name

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._handle is not None and not self._cancelled

    def start(self) -> 'PeriodicTask':
        if self._cancelled:
            raise RuntimeError(f"Periodic task {self._name} was cancelled")
        if self._handle is not None:
            return self
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._next_deadline = self._loop.time() + self._interval
        self._handle = self._loop.call_at(self._next_deadline, self._run)
        logger.debug(f"Periodic task {self._name} started ({self._interval * 1000:.0f} ms)")
        return self

    def cancel(self) -> None:
        """Stop the task. Idempotent; takes effect before returning."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        logger.debug(f"Periodic task {self._name} cancelled after {self._tick_count} ticks")

    def _run(self) -> None:
        self._handle = None
        if self._cancelled:
            return

        self._tick_count += 1
        try:
            self._callback()
        except Exception:
            logger.exception(f"Periodic task {self._name} tick failed")

        # the callback itself may have cancelled us
        if self._cancelled:
            return

        now = self._loop.time()
        self._next_deadline += self._interval
        if self._next_deadline <= now:
            self._next_deadline = now + self._interval
        self._handle = self._loop.call_at(self._next_deadline, self._run)


def start_periodic(
    interval: float,
    callback: Callable[[], None],
    loop: Optional[asyncio.AbstractEventLoop] = None,
    name: str = "",
) -> PeriodicTask:
    """Create and start a PeriodicTask; must be called with a running loop unless `loop` is given."""
    return PeriodicTask(interval, callback, loop=loop, name=name).start()
