"""Sampling with quotas assigned by the sampling service, falling back to local rules."""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from xraystrategy.centralized_manifest import CentralizedManifest
from xraystrategy.clock import Clock, DefaultClock
from xraystrategy.decision import Decision, SamplingRequest, SamplingStrategy
from xraystrategy.localized import LocalizedStrategy
from xraystrategy.rand import DefaultRand
from xraystrategy.rule import CentralizedRule
from xraystrategy.service import (
    SamplingProxy,
    SamplingStatisticsDocument,
    SamplingTargetDocument,
)
from xraystrategy.timer import JitterTimer

logger = logging.getLogger(__name__)

_RULE_PERIOD = 300.0
_RULE_JITTER = 5.0
_TARGET_PERIOD = 10.1
_TARGET_JITTER = 0.1

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _unix(moment: datetime) -> int:
    return (moment - _EPOCH) // timedelta(seconds=1)


class CentralizedStrategy(SamplingStrategy):
    """Quota-based sampling with the sampling service arbitrating between clients.

    Falls back to a local strategy when no fresh rules are available.
    """

    def __init__(
        self,
        fallback: LocalizedStrategy | None = None,
        proxy: Any = None,
        clock: Clock | None = None,
        rand: Any = None,
        client_id: str | None = None,
    ) -> None:
        self.fallback = fallback if fallback is not None else LocalizedStrategy.default()
        self.proxy = proxy
        self.clock = clock if clock is not None else DefaultClock()
        self.rand = rand if rand is not None else DefaultRand()
        self.client_id = client_id if client_id is not None else os.urandom(12).hex()
        self.manifest = CentralizedManifest(clock=self.clock)
        self._lock = threading.Lock()
        self._started = False
        self._stop_event = threading.Event()

    def __repr__(self) -> str:
        return f"CentralizedStrategy(client_id={self.client_id!r}, started={self._started})"

    @classmethod
    def default(cls, proxy: Any = None) -> CentralizedStrategy:
        """Strategy falling back on the default local rules."""
        return cls(fallback=LocalizedStrategy.default(), proxy=proxy)

    @classmethod
    def from_json(cls, data: str | bytes | bytearray, proxy: Any = None) -> CentralizedStrategy:
        """Strategy falling back on the local rules in the JSON text ``data``."""
        return cls(fallback=LocalizedStrategy.from_json(data), proxy=proxy)

    @classmethod
    def from_file(cls, path: str | Path, proxy: Any = None) -> CentralizedStrategy:
        """Strategy falling back on the local rules in the JSON file at ``path``."""
        return cls(fallback=LocalizedStrategy.from_file(path), proxy=proxy)

    def should_trace(self, request: SamplingRequest) -> Decision:
        """Match ``request`` against the known rules and sample with the first that applies."""
        self.start()
        logger.debug(
            "Determining ShouldTrace decision for:\n\thost: %s\n\tpath: %s\n\tmethod: %s"
            "\n\tservicename: %s\n\tservicetype: %s",
            request.host,
            request.url,
            request.method,
            request.service_name,
            request.service_type,
        )

        if self.manifest.expired():
            logger.debug("Centralized sampling data expired. Using fallback sampling strategy")
            return self.fallback.should_trace(request)

        with self.manifest.lock:
            for rule in self.manifest.rules:
                with rule.lock:
                    applicable = rule.applies_to(request)
                if not applicable:
                    continue
                logger.debug("Applicable rule: %s", rule.rule_name)
                return rule.sample()

            default = self.manifest.default
            if default is not None:
                logger.debug("Applicable rule: %s", default.rule_name)
                return default.sample()

        logger.debug(
            "Centralized default sampling rule unavailable. Using fallback sampling strategy"
        )
        return self.fallback.should_trace(request)

    def start(self) -> None:
        """Start the rule and target pollers, once.

        A proxy to the daemon at the default address is created if none was given.
        """
        with self._lock:
            if self._started:
                return
            if self.proxy is None:
                self.proxy = SamplingProxy()
            self._stop_event = threading.Event()
            self._started = True
            stop = self._stop_event

        self._spawn(self._initial_refresh)
        self._spawn(self._poll_rules, stop)
        self._spawn(self._poll_targets, stop)

    def stop(self) -> None:
        """Stop the pollers."""
        with self._lock:
            if not self._started:
                return
            self._stop_event.set()
            self._started = False

    @staticmethod
    def _spawn(target: Callable[..., None], *args: Any) -> None:
        threading.Thread(target=target, args=args, daemon=True).start()

    def _initial_refresh(self) -> None:
        try:
            self.refresh_manifest()
        except Exception as exc:
            logger.debug("Error occurred during initial refresh of sampling rules. %s", exc)
        else:
            logger.info("Successfully fetched sampling rules")

    def _poll_rules(self, stop: threading.Event) -> None:
        timer = JitterTimer(_RULE_PERIOD, _RULE_JITTER, self.rand)
        for _ in timer.ticks(stop):
            try:
                self.refresh_manifest()
            except Exception as exc:
                logger.debug("Error occurred while refreshing sampling rules. %s", exc)
            else:
                logger.debug("Successfully fetched sampling rules")

    def _poll_targets(self, stop: threading.Event) -> None:
        timer = JitterTimer(_TARGET_PERIOD, _TARGET_JITTER, self.rand)
        for _ in timer.ticks(stop):
            try:
                self.refresh_targets()
            except Exception as exc:
                logger.debug(
                    "Error occurred while refreshing targets for sampling rules. %s", exc
                )

    def _out_of_band_refresh(self) -> None:
        try:
            self.refresh_manifest()
        except Exception as exc:
            logger.debug("Error occurred refreshing sampling rules out-of-band. %s", exc)

    def _require_proxy(self) -> Any:
        if self.proxy is None:
            raise RuntimeError("sampling proxy is not configured")
        return self.proxy

    def refresh_manifest(self) -> None:
        """Fetch the sampling rules and bring the manifest up to date.

        Errors from the proxy propagate with the manifest unchanged. If some rules
        could not be created or updated, the manifest is still refreshed and a
        RuntimeError is raised afterwards.
        """
        proxy = self._require_proxy()
        # Take the time before the call so the manifest is not marked fresher than it is.
        now = _unix(self.clock.now())
        records = proxy.get_sampling_rules()

        actives: set[CentralizedRule] = set()
        failed = False
        try:
            for record in records:
                svc_rule = record.sampling_rule
                if svc_rule is None:
                    logger.debug("Sampling rule missing from sampling rule record.")
                    failed = True
                    continue
                name = svc_rule.rule_name
                if name is None:
                    logger.debug("Sampling rule without rule name is not supported")
                    failed = True
                    continue
                if svc_rule.version is None:
                    logger.debug("Sampling rule without version number is not supported: %s", name)
                    failed = True
                    continue
                if svc_rule.version != 1:
                    logger.debug("Sampling rule without version 1 is not supported: %s", name)
                    failed = True
                    continue
                if svc_rule.attributes:
                    logger.debug(
                        "Sampling rule with non nil Attributes is not applicable: %s", name
                    )
                    continue
                if svc_rule.resource_arn is None:
                    logger.debug("Sampling rule without ResourceARN is not applicable: %s", name)
                    continue
                if svc_rule.resource_arn != "*":
                    logger.debug(
                        "Sampling rule with ResourceARN not equal to * is not applicable: %s",
                        name,
                    )
                    continue
                try:
                    rule = self.manifest.put_rule(svc_rule)
                except ValueError as exc:
                    failed = True
                    logger.debug("Error occurred creating/updating rule. %s", exc)
                else:
                    actives.add(rule)
        except BaseException:
            self.manifest.sort()
            raise

        self.manifest.prune(actives)
        self.manifest.sort()
        with self.manifest.lock:
            self.manifest.refreshed_at = now

        if failed:
            raise RuntimeError("error occurred creating/updating rules")

    def refresh_targets(self) -> None:
        """Report statistics for stale rules and apply the targets received.

        Starts an out-of-band manifest refresh when the service reports newer rules
        or a client error. Raises RuntimeError if any target could not be applied.
        """
        statistics = self.snapshots()
        if not statistics:
            logger.debug("No statistics to report. Not refreshing sampling targets.")
            return

        output = self._require_proxy().get_sampling_targets(statistics)

        failed = False
        refresh = False

        for target in output.sampling_target_documents:
            try:
                self.update_target(target)
            except ValueError as exc:
                failed = True
                logger.debug("Error occurred updating target for rule. %s", exc)

        for stats in output.unprocessed_statistics:
            logger.debug(
                "Error occurred updating sampling target for rule: %s, code: %s, message: %s",
                stats.rule_name,
                stats.error_code,
                stats.message,
            )
            if stats.error_code is None or stats.rule_name is None:
                continue
            if stats.error_code.startswith("5"):
                failed = True
            if stats.error_code.startswith("4"):
                refresh = True

        if not failed:
            logger.debug("Successfully refreshed sampling targets")

        remote = output.last_rule_modification
        if remote is not None:
            with self.manifest.lock:
                local = self.manifest.refreshed_at
            if _unix(remote) >= local:
                refresh = True

        if refresh:
            logger.info("Refreshing sampling rules out-of-band.")
            self._spawn(self._out_of_band_refresh)

        if failed:
            raise RuntimeError("error occurred updating sampling targets")

    def snapshots(self) -> list[SamplingStatisticsDocument]:
        """Take statistics from every stale rule, resetting its counters."""
        now = _unix(self.clock.now())
        statistics: list[SamplingStatisticsDocument] = []
        with self.manifest.lock:
            candidates = list(self.manifest.rules)
            if self.manifest.default is not None:
                candidates.append(self.manifest.default)
            for rule in candidates:
                if not rule.stale(now):
                    continue
                doc = rule.snapshot()
                doc.client_id = self.client_id
                statistics.append(doc)
        return statistics

    def update_target(self, target: SamplingTargetDocument) -> None:
        """Apply a sampling target to the rule it names.

        Raises ValueError, leaving the rule unchanged, if the target is incomplete
        or names an unknown rule.
        """
        if target.rule_name is None:
            raise ValueError("invalid sampling target. Missing rule name")
        if target.fixed_rate is None:
            raise ValueError(
                f"invalid sampling target for rule {target.rule_name}. Missing fixed rate"
            )

        with self.manifest.lock:
            rule = self.manifest.index.get(target.rule_name)
        if rule is None:
            raise ValueError(f"rule {target.rule_name} not found")

        with rule.lock:
            reservoir = rule.reservoir
            reservoir.refreshed_at = _unix(self.clock.now())
            rule.properties.rate = target.fixed_rate
            if target.reservoir_quota is not None:
                reservoir.quota = target.reservoir_quota
            if target.reservoir_quota_ttl is not None:
                reservoir.expires_at = _unix(target.reservoir_quota_ttl)
            if target.interval is not None:
                reservoir.interval = target.interval