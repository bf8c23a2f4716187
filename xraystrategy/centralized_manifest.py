"""The ruleset fetched from the sampling service."""

from __future__ import annotations

import threading
from collections.abc import Container
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from xraystrategy.clock import Clock, DefaultClock
from xraystrategy.rand import DefaultRand
from xraystrategy.reservoir import CentralizedReservoir
from xraystrategy.rule import CentralizedRule, Properties
from xraystrategy.service import SamplingRule

DEFAULT_RULE = "Default"
DEFAULT_INTERVAL = 10
MANIFEST_TTL = 3600  # seconds

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _unix(moment: datetime) -> int:
    return (moment - _EPOCH) // timedelta(seconds=1)


def _required(svc_rule: SamplingRule, name: str) -> Any:
    value = getattr(svc_rule, name)
    if value is None:
        raise ValueError(f"sampling rule {svc_rule.rule_name!r} is missing {name}")
    return value


def _user_properties(svc_rule: SamplingRule) -> Properties:
    return Properties(
        service_name=_required(svc_rule, "service_name"),
        http_method=_required(svc_rule, "http_method"),
        url_path=_required(svc_rule, "url_path"),
        fixed_target=_required(svc_rule, "reservoir_size"),
        rate=_required(svc_rule, "fixed_rate"),
        host=_required(svc_rule, "host"),
    )


def _default_properties(svc_rule: SamplingRule) -> Properties:
    return Properties(
        fixed_target=_required(svc_rule, "reservoir_size"),
        rate=_required(svc_rule, "fixed_rate"),
    )


@dataclass(eq=False)
class CentralizedManifest:
    """Custom rules sorted by priority, an index by name, and the default rule."""

    default: CentralizedRule | None = None
    rules: list[CentralizedRule] = field(default_factory=list)
    index: dict[str, CentralizedRule] = field(default_factory=dict)
    refreshed_at: int = 0
    clock: Clock = field(default_factory=DefaultClock)
    lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def put_rule(self, svc_rule: SamplingRule) -> CentralizedRule:
        """Update the named rule, or create it if it does not exist.

        A new user rule is appended, which may break the sort order.
        Raises ValueError, leaving the manifest unchanged, if a needed field is missing.
        """
        name = _required(svc_rule, "rule_name")
        with self.lock:
            if name == DEFAULT_RULE:
                if self.default is not None:
                    self._update_default_rule(self.default, svc_rule)
                    return self.default
                return self._create_default_rule(svc_rule)

            existing = self.index.get(name)
            if existing is None:
                return self._create_user_rule(svc_rule)
            self._update_user_rule(existing, svc_rule)
            return existing

    def _create_user_rule(self, svc_rule: SamplingRule) -> CentralizedRule:
        props = _user_properties(svc_rule)
        rule = CentralizedRule(
            rule_name=svc_rule.rule_name,
            priority=_required(svc_rule, "priority"),
            reservoir=CentralizedReservoir(capacity=props.fixed_target, interval=DEFAULT_INTERVAL),
            properties=props,
            service_type=_required(svc_rule, "service_type"),
            resource_arn=_required(svc_rule, "resource_arn"),
            attributes=svc_rule.attributes,
            clock=DefaultClock(),
            rand=DefaultRand(),
        )
        with self.lock:
            existing = self.index.get(rule.rule_name)
            if existing is not None:
                return existing
            self.rules.append(rule)
            self.index[rule.rule_name] = rule
        return rule

    @staticmethod
    def _update_user_rule(rule: CentralizedRule, svc_rule: SamplingRule) -> None:
        # Read every field first so a missing one leaves the rule untouched.
        props = _user_properties(svc_rule)
        priority = _required(svc_rule, "priority")
        service_type = _required(svc_rule, "service_type")
        resource_arn = _required(svc_rule, "resource_arn")
        with rule.lock:
            rule.properties = props
            rule.priority = priority
            rule.reservoir.capacity = props.fixed_target
            rule.service_type = service_type
            rule.resource_arn = resource_arn
            rule.attributes = svc_rule.attributes

    def _create_default_rule(self, svc_rule: SamplingRule) -> CentralizedRule:
        props = _default_properties(svc_rule)
        rule = CentralizedRule(
            rule_name=svc_rule.rule_name,
            reservoir=CentralizedReservoir(capacity=props.fixed_target, interval=DEFAULT_INTERVAL),
            properties=props,
            clock=DefaultClock(),
            rand=DefaultRand(),
        )
        with self.lock:
            if self.default is not None:
                return self.default
            self.default = rule
            self.index[rule.rule_name] = rule
        return rule

    @staticmethod
    def _update_default_rule(rule: CentralizedRule, svc_rule: SamplingRule) -> None:
        props = _default_properties(svc_rule)
        with rule.lock:
            rule.properties = props
            rule.reservoir.capacity = props.fixed_target

    def prune(self, actives: Container[CentralizedRule]) -> None:
        """Remove every custom rule not in ``actives``, keeping the order of the rest."""
        with self.lock:
            kept = []
            for rule in self.rules:
                if rule in actives:
                    kept.append(rule)
                else:
                    self.index.pop(rule.rule_name, None)
            self.rules[:] = kept

    def sort(self) -> None:
        """Sort custom rules by priority, then by name."""
        with self.lock:
            self.rules.sort(key=lambda rule: (rule.priority, rule.rule_name))

    def expired(self) -> bool:
        """Return True if not refreshed within the manifest TTL."""
        with self.lock:
            return self.refreshed_at < _unix(self.clock.now()) - MANIFEST_TTL