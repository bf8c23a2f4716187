"""Periodic timer with random jitter."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from datetime import datetime, timezone

from xraystrategy.rand import DefaultRand

_NANOS_PER_SECOND = 1_000_000_000


class JitterTimer:
    """Produces intervals of ``period`` seconds shortened by a random jitter."""

    def __init__(self, period: float, jitter: float, rand=None) -> None:
        self._jitter_nanos = round(jitter * _NANOS_PER_SECOND)
        if self._jitter_nanos <= 0:
            raise ValueError("jitter must be positive")
        self.period = period
        self.jitter = jitter
        self._rand = rand if rand is not None else DefaultRand()

    def next_interval(self) -> float:
        """Return the next interval in seconds."""
        offset = self._rand.randrange(self._jitter_nanos)
        return self.period - offset / _NANOS_PER_SECOND

    def ticks(self, stop_event: threading.Event) -> Iterator[datetime]:
        """Yield the current time after each interval until ``stop_event`` is set."""
        while not stop_event.is_set():
            if stop_event.wait(max(0.0, self.next_interval())):
                return
            yield datetime.now(timezone.utc)