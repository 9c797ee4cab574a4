from __future__ import annotations

import heapq
import itertools
import time
from collections.abc import Callable, Iterable
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class TimerHandle:
    """Cancellable reference to one pending callback."""

    __slots__ = ("_due_ms", "_seq", "_callback", "_interval_ms", "_cancelled")

    def __init__(
        self,
        *,
        due_ms: float,
        seq: int,
        callback: Callable[[], None],
        interval_ms: float | None = None,
    ) -> None:
        self._due_ms = float(due_ms)
        self._seq = int(seq)
        self._callback = callback
        self._interval_ms = interval_ms
        self._cancelled = False

    @property
    def due_ms(self) -> float:
        return self._due_ms

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def repeating(self) -> bool:
        return self._interval_ms is not None

    def cancel(self) -> None:
        self._cancelled = True

    def __lt__(self, other: "TimerHandle") -> bool:
        return (self._due_ms, self._seq) < (other._due_ms, other._seq)


class TimerQueue:
    """Delayed-callback primitive pumped by the host loop.

    Callbacks run on the caller's thread from run_due(), ordered by due time and
    then by scheduling order. While a callback runs, now_ms() reports the time it
    was due, so a late pump replays the schedule exactly as if it had been on time.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._heap: list[TimerHandle] = []
        self._seq = itertools.count()
        self._dispatch_ms: float | None = None

    def now_ms(self) -> float:
        if self._dispatch_ms is not None:
            return self._dispatch_ms
        return self._clock.now() * 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        delay_ms = max(0.0, float(delay_ms))
        handle = TimerHandle(due_ms=self.now_ms() + delay_ms, seq=next(self._seq), callback=callback)
        heapq.heappush(self._heap, handle)
        return handle

    def call_every(self, interval_ms: float, callback: Callable[[], None]) -> TimerHandle:
        interval_ms = float(interval_ms)
        if interval_ms <= 0.0:
            raise ValueError("interval_ms must be > 0")
        handle = TimerHandle(
            due_ms=self.now_ms() + interval_ms,
            seq=next(self._seq),
            callback=callback,
            interval_ms=interval_ms,
        )
        heapq.heappush(self._heap, handle)
        return handle

    @staticmethod
    def cancel_all(handles: Iterable[TimerHandle]) -> int:
        n = 0
        for h in handles:
            if not h.cancelled:
                h.cancel()
                n += 1
        return n

    def pending(self) -> int:
        return sum(1 for h in self._heap if not h.cancelled)

    def run_due(self) -> int:
        """Fire every callback due by now. Returns the number fired."""

        if self._dispatch_ms is not None:
            # Re-entrant pump from inside a callback; the outer loop picks up the rest.
            return 0

        now = self._clock.now() * 1000.0
        fired = 0
        while self._heap and self._heap[0].due_ms <= now:
            handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            if handle._interval_ms is not None:
                handle._due_ms += handle._interval_ms
                handle._seq = next(self._seq)
                heapq.heappush(self._heap, handle)
                due = handle.due_ms - handle._interval_ms
            else:
                handle._cancelled = True
                due = handle.due_ms
            self._dispatch_ms = due
            try:
                handle._callback()
            finally:
                self._dispatch_ms = None
            fired += 1
        return fired
