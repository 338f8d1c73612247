"""Timer callbacks on the single session loop.

Nothing here sleeps or spawns threads. The owner calls ``run_due()`` once per
frame (``MultiplayerSession.poll`` does this) and every timer whose deadline
has passed fires in deadline order.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class Timer:
    """Handle returned by the scheduler. ``cancel()`` is idempotent."""

    __slots__ = ("deadline_ms", "interval_ms", "callback", "cancelled")

    def __init__(self, deadline_ms: int, interval_ms: int | None,
                 callback: Callable[[], None]) -> None:
        self.deadline_ms = deadline_ms
        self.interval_ms = interval_ms
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler:
    """One-shot and repeating timers keyed off an injectable millisecond clock."""

    def __init__(self, clock: Callable[[], int] = monotonic_ms) -> None:
        self._clock = clock
        self._heap: list[tuple[int, int, Timer]] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return self._clock()

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> Timer:
        timer = Timer(self._clock() + delay_ms, None, callback)
        self._push(timer)
        return timer

    def call_every(self, interval_ms: int, callback: Callable[[], None]) -> Timer:
        timer = Timer(self._clock() + interval_ms, interval_ms, callback)
        self._push(timer)
        return timer

    def run_due(self) -> int:
        """Fire every timer that is due. Returns how many fired."""
        now = self._clock()
        fired = 0
        while self._heap and self._heap[0][0] <= now:
            _, _, timer = heapq.heappop(self._heap)
            if timer.cancelled:
                continue
            if timer.interval_ms is not None:
                # Re-arm from the old deadline so cadence does not drift;
                # a stalled loop skips missed beats instead of bursting.
                timer.deadline_ms += timer.interval_ms
                if timer.deadline_ms <= now:
                    timer.deadline_ms = now + timer.interval_ms
                self._push(timer)
            else:
                timer.cancelled = True
            fired += 1
            try:
                timer.callback()
            except Exception:
                logger.exception("Timer callback failed")
        return fired

    def pending(self) -> int:
        return sum(1 for _, _, t in self._heap if not t.cancelled)

    def clear(self) -> None:
        for _, _, timer in self._heap:
            timer.cancel()
        self._heap.clear()

    def _push(self, timer: Timer) -> None:
        heapq.heappush(self._heap, (timer.deadline_ms, next(self._seq), timer))
