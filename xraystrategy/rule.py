"""Sampling rules, local and centralized."""

from __future__ import annotations

import functools
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from xraystrategy.clock import Clock, DefaultClock
from xraystrategy.decision import Decision, SamplingRequest
from xraystrategy.rand import DefaultRand
from xraystrategy.reservoir import CentralizedReservoir, Reservoir
from xraystrategy.service import SamplingStatisticsDocument

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _unix(moment: datetime) -> int:
    return (moment - _EPOCH) // timedelta(seconds=1)


@functools.lru_cache(maxsize=256)
def _compile_wildcard(pattern: str) -> re.Pattern[str]:
    pieces = []
    for ch in pattern:
        if ch == "*":
            pieces.append(".*")
        elif ch == "?":
            pieces.append(".")
        else:
            pieces.append(re.escape(ch))
    return re.compile("".join(pieces), re.IGNORECASE | re.DOTALL)


def _wildcard_match(pattern: str, text: str) -> bool:
    """Case-insensitive match where ``*`` is any run and ``?`` one character."""
    return _compile_wildcard(pattern).fullmatch(text) is not None


def _matches(pattern: str, value: str) -> bool:
    return value == "" or _wildcard_match(pattern, value)


@dataclass
class Properties:
    """The properties that define a sampling rule."""

    service_name: str = ""
    host: str = ""
    http_method: str = ""
    url_path: str = ""
    fixed_target: int = 0
    rate: float = 0.0

    def applies_to(self, host: str, path: str, method: str) -> bool:
        """Return True if the rule matches; empty arguments match anything."""
        return (
            _matches(self.host, host)
            and _matches(self.url_path, path)
            and _matches(self.http_method, method)
        )


@dataclass(eq=False)
class CentralizedRule:
    """A sampling rule whose quota is assigned by the sampling service."""

    rule_name: str = ""
    priority: int = 0
    reservoir: CentralizedReservoir = field(default_factory=CentralizedReservoir)
    properties: Properties = field(default_factory=Properties)
    requests: int = 0
    sampled: int = 0
    borrows: int = 0
    used_at: int = 0
    service_type: str = ""
    resource_arn: str = ""
    attributes: dict[str, Any] | None = None
    clock: Clock = field(default_factory=DefaultClock)
    rand: Any = field(default_factory=DefaultRand)
    lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def applies_to(self, request: SamplingRequest) -> bool:
        """Return True if the rule matches ``request``; empty fields match anything."""
        p = self.properties
        return (
            _matches(p.host, request.host)
            and _matches(p.url_path, request.url)
            and _matches(p.http_method, request.method)
            and _matches(p.service_name, request.service_name)
            and _matches(self.service_type, request.service_type)
        )

    def stale(self, now: int) -> bool:
        """Return True if the rule has traffic and its quota is due for a refresh."""
        with self.lock:
            return (
                self.requests != 0
                and now >= self.reservoir.refreshed_at + self.reservoir.interval
            )

    def sample(self) -> Decision:
        """Decide whether to sample one request and record the outcome."""
        now = _unix(self.clock.now())
        decision = Decision(rule=self.rule_name)

        with self.lock:
            self.requests += 1

            if self.reservoir.expired(now):
                if self.reservoir.borrow(now):
                    logger.debug(
                        "Sampling target has expired for rule %s. Borrowing a request.",
                        self.rule_name,
                    )
                    decision.sample = True
                    self.borrows += 1
                    return decision

                logger.debug(
                    "Sampling target has expired for rule %s. Using fixed rate.",
                    self.rule_name,
                )
                decision.sample = self._bernoulli_sample()
                return decision

            if self.reservoir.take(now):
                self.sampled += 1
                decision.sample = True
                return decision

            logger.debug(
                "Sampling target has been exhausted for rule %s. Using fixed rate.",
                self.rule_name,
            )
            decision.sample = self._bernoulli_sample()
            return decision

    def _bernoulli_sample(self) -> bool:
        if self.rand.random() < self.properties.rate:
            self.sampled += 1
            return True
        return False

    def snapshot(self) -> SamplingStatisticsDocument:
        """Return the statistics counters and reset them."""
        with self.lock:
            requests, sampled, borrows = self.requests, self.sampled, self.borrows
            self.requests, self.sampled, self.borrows = 0, 0, 0

        return SamplingStatisticsDocument(
            rule_name=self.rule_name,
            timestamp=self.clock.now(),
            request_count=requests,
            sampled_count=sampled,
            borrow_count=borrows,
        )


@dataclass(eq=False)
class Rule:
    """A sampling rule local to this client."""

    reservoir: Reservoir = field(default_factory=Reservoir)
    properties: Properties = field(default_factory=Properties)
    rand: Any = field(default_factory=DefaultRand)
    lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def sample(self) -> Decision:
        """Take from the reservoir if possible, otherwise sample at the fixed rate."""
        with self.lock:
            if self.reservoir.take():
                return Decision(sample=True)
            return Decision(sample=self.rand.random() < self.properties.rate)