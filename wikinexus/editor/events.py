"""
Cooperative, single-threaded scheduling for the editor.

Nothing here starts a thread. Storage requests and timers are queued and run
when the host calls ``run_pending()`` (a UI tick), so the editing surface
never blocks on a request and a response can arrive after the state it was
issued for has changed.
"""

import heapq
import itertools
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from wikinexus.errors import WikiError

logger = logging.getLogger(__name__)


class TimerHandle:
    def __init__(self, due: float, callback: Callable[[], Any]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler:
    """
    Run queue plus timers against an injectable clock.

    ``submit`` stands in for an asynchronous storage request: the request runs
    on a later tick and its outcome is delivered to ``on_success`` or
    ``on_failure``. Only ``WikiError`` counts as a request failure; anything
    else is a bug and propagates.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._queue = deque()
        self._timers: List = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._clock()

    def call_soon(self, callback: Callable[[], Any]) -> None:
        self._queue.append(callback)

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        handle = TimerHandle(self._clock() + delay, callback)
        heapq.heappush(self._timers, (handle.due, next(self._seq), handle))
        return handle

    def submit(self, request: Callable[[], Any],
               on_success: Optional[Callable[[Any], Any]] = None,
               on_failure: Optional[Callable[[WikiError], Any]] = None) -> None:
        def task():
            try:
                result = request()
            except WikiError as e:
                if on_failure is not None:
                    on_failure(e)
                else:
                    logger.error(f"Request failed: {e}")
                return
            if on_success is not None:
                on_success(result)

        self.call_soon(task)

    @property
    def pending(self) -> bool:
        return bool(self._queue) or any(not h.cancelled for _, _, h in self._timers)

    def run_pending(self) -> int:
        """Run every queued callback and every timer that is due. Returns the number run."""
        count = 0
        now = self._clock()
        while self._timers and self._timers[0][0] <= now:
            _, _, handle = heapq.heappop(self._timers)
            if not handle.cancelled:
                self._queue.append(handle.callback)
        # Callbacks queued while running wait for the next tick
        for _ in range(len(self._queue)):
            callback = self._queue.popleft()
            callback()
            count += 1
        return count

    def run_until_idle(self, max_ticks: int = 100) -> None:
        """Tick until the run queue is empty (timers that are not yet due stay queued)."""
        for _ in range(max_ticks):
            if not self._queue and not (self._timers and self._timers[0][0] <= self._clock()):
                return
            self.run_pending()
        logger.warning(f"Scheduler still busy after {max_ticks} ticks")


@dataclass(frozen=True)
class PointerEvent:
    x: float
    y: float


class EventTarget:
    """Listener registry for global pointer events during a gesture."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)

    def add_listener(self, event_type: str, listener: Callable) -> None:
        self._listeners[event_type].append(listener)

    def remove_listener(self, event_type: str, listener: Callable) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def dispatch(self, event_type: str, event: Any) -> int:
        listeners = list(self._listeners.get(event_type, []))
        for listener in listeners:
            listener(event)
        return len(listeners)

    def listener_count(self, event_type: Optional[str] = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return sum(len(items) for items in self._listeners.values())
