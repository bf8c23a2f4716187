"""Random number sources."""

from __future__ import annotations

import os
import random
import threading
import time
from dataclasses import dataclass


def _new_seed() -> int:
    try:
        return int.from_bytes(os.urandom(8), "big", signed=True)
    except NotImplementedError:
        return time.time_ns()


_global_rand = random.Random(_new_seed())
_global_lock = threading.Lock()


@dataclass(frozen=True)
class DefaultRand:
    """Shared, thread-safe pseudo-random source seeded from the OS."""

    def randrange(self, n: int) -> int:
        """Return a non-negative pseudo-random integer in [0, n)."""
        if n <= 0:
            raise ValueError("invalid argument to randrange: n must be positive")
        with _global_lock:
            return _global_rand.randrange(n)

    def random(self) -> float:
        """Return a pseudo-random float in [0.0, 1.0)."""
        with _global_lock:
            return _global_rand.random()


@dataclass(frozen=True)
class FixedRand:
    """Source that always yields the same values."""

    f64: float = 0.0
    int_value: int = 0

    def randrange(self, n: int) -> int:
        if n <= 0:
            raise ValueError("invalid argument to randrange: n must be positive")
        return self.int_value

    def random(self) -> float:
        return self.f64