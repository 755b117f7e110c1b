"""
Timer scheduling for the recording controller and the playback engine.

Both components receive a Scheduler instead of touching the event loop or the
wall clock directly:

- AsyncioScheduler runs callbacks on the running asyncio loop.
- ManualScheduler keeps a virtual clock that tests move forward with
  `await scheduler.advance(ms)`.

Callbacks may be plain functions or coroutine functions. Every scheduling call
returns a TimerHandle; cancelling it guarantees the callback will not be
started afterwards.
"""

import asyncio
import heapq
import inspect
import itertools
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Set, Tuple, Union

from .logger import logger

Callback = Callable[[], Union[None, Awaitable[Any]]]


class TimerHandle:
    """Cancellable reference to a scheduled callback."""

    def __init__(self, name: str = ""):
        self.name = name
        self._cancelled = False
        self._on_cancel: Optional[Callable[[], None]] = None

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()
            self._on_cancel = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<TimerHandle {self.name or '?'} {state}>"


class Scheduler(Protocol):
    def now_ms(self) -> int:
        ...

    def call_later(self, delay_ms: int, callback: Callback, name: str = "") -> TimerHandle:
        ...

    def call_every(self, interval_ms: int, callback: Callback, name: str = "") -> TimerHandle:
        ...


# ---------------------------------------------------------------------------
# asyncio-backed scheduler
# ---------------------------------------------------------------------------

class AsyncioScheduler:
    """Schedules callbacks on the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        # Track running tasks to prevent GC (asyncio only keeps weak references)
        self._running_tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now_ms(self) -> int:
        return int(self.loop.time() * 1000)

    def call_later(self, delay_ms: int, callback: Callback, name: str = "") -> TimerHandle:
        handle = TimerHandle(name)
        self._arm(handle, delay_ms, callback, interval_ms=None)
        return handle

    def call_every(self, interval_ms: int, callback: Callback, name: str = "") -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        handle = TimerHandle(name)
        self._arm(handle, interval_ms, callback, interval_ms=interval_ms)
        return handle

    def _arm(
        self,
        handle: TimerHandle,
        delay_ms: int,
        callback: Callback,
        interval_ms: Optional[int],
    ) -> None:
        timer = self.loop.call_later(
            max(0, delay_ms) / 1000, self._fire, handle, callback, interval_ms
        )
        handle._on_cancel = timer.cancel

    def _fire(self, handle: TimerHandle, callback: Callback, interval_ms: Optional[int]) -> None:
        if handle.cancelled:
            return
        if interval_ms is not None:
            # Re-arm first so a slow coroutine callback never delays the next tick
            self._arm(handle, interval_ms, callback, interval_ms)
        try:
            result = callback()
        except Exception as e:
            logger.task_error(handle.name or "timer callback", str(e), exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._running_tasks.add(task)
            task.add_done_callback(lambda t: self._task_done(handle, t))

    def _task_done(self, handle: TimerHandle, task: asyncio.Future) -> None:
        self._running_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.task_error(handle.name or "timer callback", str(exc))

    async def drain(self) -> None:
        """Wait for callback tasks that are still running."""
        while self._running_tasks:
            await asyncio.gather(*list(self._running_tasks), return_exceptions=True)


# ---------------------------------------------------------------------------
# Virtual-time scheduler
# ---------------------------------------------------------------------------

class _Entry:
    __slots__ = ("handle", "callback", "interval_ms")

    def __init__(self, handle: TimerHandle, callback: Callback, interval_ms: Optional[int]):
        self.handle = handle
        self.callback = callback
        self.interval_ms = interval_ms


class ManualScheduler:
    """
    Deterministic scheduler with a virtual clock.

    Nothing fires until `advance()` is awaited. Due callbacks run in time
    order (ties in scheduling order) and coroutine callbacks are awaited to
    completion before the next one starts.
    """

    def __init__(self, start_ms: int = 0):
        self._now = start_ms
        self._queue: List[Tuple[int, int, _Entry]] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return self._now

    def call_later(self, delay_ms: int, callback: Callback, name: str = "") -> TimerHandle:
        handle = TimerHandle(name)
        self._push(self._now + max(0, delay_ms), _Entry(handle, callback, None))
        return handle

    def call_every(self, interval_ms: int, callback: Callback, name: str = "") -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        handle = TimerHandle(name)
        self._push(self._now + interval_ms, _Entry(handle, callback, interval_ms))
        return handle

    def _push(self, due: int, entry: _Entry) -> None:
        heapq.heappush(self._queue, (due, next(self._seq), entry))

    @property
    def pending_count(self) -> int:
        """Number of scheduled callbacks that have not been cancelled."""
        return sum(1 for _, _, entry in self._queue if not entry.handle.cancelled)

    def pending_names(self) -> List[str]:
        return [entry.handle.name for _, _, entry in sorted(self._queue) if not entry.handle.cancelled]

    async def advance(self, ms: int) -> None:
        """Move the clock forward by `ms`, firing everything that falls due."""
        if ms < 0:
            raise ValueError("cannot move the clock backwards")
        target = self._now + ms
        while self._queue and self._queue[0][0] <= target:
            due, _, entry = heapq.heappop(self._queue)
            if entry.handle.cancelled:
                continue
            self._now = due
            if entry.interval_ms is not None:
                self._push(due + entry.interval_ms, entry)
            result = entry.callback()
            if inspect.isawaitable(result):
                await result
        self._now = target

    async def run_pending(self) -> None:
        """Fire callbacks already due at the current time."""
        await self.advance(0)
