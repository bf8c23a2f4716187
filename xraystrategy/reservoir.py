"""Reservoirs that allow a limited number of samples per second."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from xraystrategy.clock import Clock, DefaultClock


@dataclass
class _PerSecondWindow:
    """Usage counter that starts afresh every Unix second."""

    capacity: int = 0
    used: int = 0
    current_epoch: int = 0

    def _roll(self, now: int) -> None:
        if now != self.current_epoch:
            self._reset(now)

    def _reset(self, now: int) -> None:
        self.current_epoch, self.used = now, 0


@dataclass
class CentralizedReservoir(_PerSecondWindow):
    """A reservoir whose quota is shared among all running clients."""

    quota: int = 0
    refreshed_at: int = 0
    expires_at: int = 0
    interval: int = 0
    borrowed: bool = False

    def expired(self, now: int) -> bool:
        """Return True if ``now`` is past the quota expiry."""
        return now > self.expires_at

    def borrow(self, now: int) -> bool:
        """Return True if nothing was borrowed yet in this second."""
        self._roll(now)
        already = self.borrowed
        self.borrowed = True
        return not already and self.capacity != 0

    def take(self, now: int) -> bool:
        """Consume one unit of quota if any is left this second."""
        self._roll(now)
        if self.quota > self.used:
            self.used += 1
            return True
        return False

    def _reset(self, now: int) -> None:
        super()._reset(now)
        self.borrowed = False


@dataclass
class Reservoir(_PerSecondWindow):
    """A reservoir local to this client."""

    clock: Clock = field(default_factory=DefaultClock)

    def take(self) -> bool:
        """Consume one unit if capacity is left this second."""
        self._roll(math.floor(self.clock.now().timestamp()))
        if self.used >= self.capacity:
            return False
        self.used += 1
        return True