"""Sources of the current time."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_NANOS_PER_SECOND = 1_000_000_000


class Clock(ABC):
    """Provides the current time as an aware UTC datetime."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time."""

    @abstractmethod
    def increment(self, seconds: int, nanoseconds: int) -> datetime:
        """Advance the clock where supported and return the current time."""


@dataclass(frozen=True)
class DefaultClock(Clock):
    """Clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def increment(self, seconds: int, nanoseconds: int) -> datetime:
        """The system clock cannot be moved; return the current time."""
        return self.now()


class ManualClock(Clock):
    """Clock that only moves when told to, starting at a given Unix time."""

    def __init__(self, now_time: int = 0, now_nanos: int = 0) -> None:
        self._lock = threading.Lock()
        self._total_nanos = now_time * _NANOS_PER_SECOND + now_nanos

    def _advance(self, nanos: int) -> datetime:
        with self._lock:
            self._total_nanos += nanos
            total = self._total_nanos
        return _EPOCH + timedelta(microseconds=total // 1000)

    def now(self) -> datetime:
        return self._advance(0)

    def increment(self, seconds: int, nanoseconds: int) -> datetime:
        return self._advance(seconds * _NANOS_PER_SECOND + nanoseconds)

    def __repr__(self) -> str:
        return f"ManualClock(now={self.now().isoformat()})"