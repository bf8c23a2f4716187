"""Shapes of the sampling API and a client that reaches it through the daemon."""

from __future__ import annotations

import json
import logging
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DAEMON_ADDRESS = "127.0.0.1:2000"


@dataclass
class SamplingRule:
    """A sampling rule as returned by the sampling API."""

    rule_name: str | None = None
    rule_arn: str | None = None
    resource_arn: str | None = None
    priority: int | None = None
    fixed_rate: float | None = None
    reservoir_size: int | None = None
    service_name: str | None = None
    service_type: str | None = None
    host: str | None = None
    http_method: str | None = None
    url_path: str | None = None
    version: int | None = None
    attributes: dict[str, str] | None = None


@dataclass
class SamplingRuleRecord:
    """A sampling rule together with its creation and modification times."""

    sampling_rule: SamplingRule | None = None
    created_at: datetime | None = None
    modified_at: datetime | None = None


@dataclass
class SamplingStatisticsDocument:
    """Request counts for one rule over one reporting interval."""

    rule_name: str | None = None
    client_id: str | None = None
    timestamp: datetime | None = None
    request_count: int | None = None
    sampled_count: int | None = None
    borrow_count: int | None = None


@dataclass
class SamplingTargetDocument:
    """The quota and rate assigned to this client for one rule."""

    rule_name: str | None = None
    fixed_rate: float | None = None
    reservoir_quota: int | None = None
    reservoir_quota_ttl: datetime | None = None
    interval: int | None = None


@dataclass
class UnprocessedStatistics:
    """Statistics the service could not process, with the reason."""

    rule_name: str | None = None
    error_code: str | None = None
    message: str | None = None


@dataclass
class SamplingTargetsOutput:
    """Response to a request for sampling targets."""

    sampling_target_documents: list[SamplingTargetDocument] = field(default_factory=list)
    last_rule_modification: datetime | None = None
    unprocessed_statistics: list[UnprocessedStatistics] = field(default_factory=list)


def _parse_time(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            return datetime.fromtimestamp(float(value), timezone.utc)
        except ValueError:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(float(value), timezone.utc)


def _parse_rule(data: dict[str, Any] | None) -> SamplingRule | None:
    if data is None:
        return None
    return SamplingRule(
        rule_name=data.get("RuleName"),
        rule_arn=data.get("RuleARN"),
        resource_arn=data.get("ResourceARN"),
        priority=data.get("Priority"),
        fixed_rate=data.get("FixedRate"),
        reservoir_size=data.get("ReservoirSize"),
        service_name=data.get("ServiceName"),
        service_type=data.get("ServiceType"),
        host=data.get("Host"),
        http_method=data.get("HTTPMethod"),
        url_path=data.get("URLPath"),
        version=data.get("Version"),
        attributes=data.get("Attributes"),
    )


def _parse_record(data: dict[str, Any]) -> SamplingRuleRecord:
    return SamplingRuleRecord(
        sampling_rule=_parse_rule(data.get("SamplingRule")),
        created_at=_parse_time(data.get("CreatedAt")),
        modified_at=_parse_time(data.get("ModifiedAt")),
    )


def _parse_target(data: dict[str, Any]) -> SamplingTargetDocument:
    return SamplingTargetDocument(
        rule_name=data.get("RuleName"),
        fixed_rate=data.get("FixedRate"),
        reservoir_quota=data.get("ReservoirQuota"),
        reservoir_quota_ttl=_parse_time(data.get("ReservoirQuotaTTL")),
        interval=data.get("Interval"),
    )


def _parse_unprocessed(data: dict[str, Any]) -> UnprocessedStatistics:
    return UnprocessedStatistics(
        rule_name=data.get("RuleName"),
        error_code=data.get("ErrorCode"),
        message=data.get("Message"),
    )


def _statistics_payload(doc: SamplingStatisticsDocument) -> dict[str, Any]:
    items = {
        "RuleName": doc.rule_name,
        "ClientID": doc.client_id,
        "Timestamp": doc.timestamp.timestamp() if doc.timestamp is not None else None,
        "RequestCount": doc.request_count,
        "SampledCount": doc.sampled_count,
        "BorrowCount": doc.borrow_count,
    }
    return {key: value for key, value in items.items() if value is not None}


class SamplingProxy:
    """Sends unsigned sampling API requests to the daemon at ``address``."""

    def __init__(self, address: str = DEFAULT_DAEMON_ADDRESS, timeout: float = 10.0) -> None:
        self.address = address
        self.timeout = timeout
        self._base_url = f"http://{address}"
        self._opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))
        logger.info("X-Ray proxy using address : %s", address)

    def __repr__(self) -> str:
        return f"SamplingProxy(address={self.address!r})"

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        request = urllib.request.Request(
            self._base_url + path,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with self._opener.open(request, timeout=self.timeout) as response:
            body = response.read()
        return json.loads(body) if body else {}

    def get_sampling_rules(self) -> list[SamplingRuleRecord]:
        """Fetch the sampling rule records."""
        data = self._post("/GetSamplingRules", {})
        return [_parse_record(item) for item in data.get("SamplingRuleRecords") or []]

    def get_sampling_targets(
        self, statistics: list[SamplingStatisticsDocument]
    ) -> SamplingTargetsOutput:
        """Report ``statistics`` and fetch the targets for the next interval."""
        payload = {"SamplingStatisticsDocuments": [_statistics_payload(s) for s in statistics]}
        data = self._post("/SamplingTargets", payload)
        return SamplingTargetsOutput(
            sampling_target_documents=[
                _parse_target(item) for item in data.get("SamplingTargetDocuments") or []
            ],
            last_rule_modification=_parse_time(data.get("LastRuleModification")),
            unprocessed_statistics=[
                _parse_unprocessed(item) for item in data.get("UnprocessedStatistics") or []
            ],
        )