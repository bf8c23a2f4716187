"""Sampling decisions from a local ruleset."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from xraystrategy.decision import Decision, SamplingRequest, SamplingStrategy
from xraystrategy.manifest import RuleManifest, manifest_from_file, manifest_from_json

logger = logging.getLogger(__name__)

# Sample the first request each second and 5% of requests thereafter.
_DEFAULT_RULES = {
    "version": 2,
    "default": {"fixed_target": 1, "rate": 0.05},
    "rules": [],
}


class LocalizedStrategy(SamplingStrategy):
    """Decides on sampling using rules held locally.

    The decision is made by the root service of a trace and passed on to
    downstream services in the trace header.
    """

    def __init__(self, manifest: RuleManifest) -> None:
        self.manifest = manifest

    def __repr__(self) -> str:
        return f"LocalizedStrategy(version={self.manifest.version}, rules={len(self.manifest.rules)})"

    @classmethod
    def default(cls) -> LocalizedStrategy:
        """Strategy with the default rules."""
        return cls(manifest_from_json(json.dumps(_DEFAULT_RULES)))

    @classmethod
    def from_file(cls, path: str | Path) -> LocalizedStrategy:
        """Strategy with the rules in the JSON file at ``path``."""
        return cls(manifest_from_file(path))

    @classmethod
    def from_json(cls, data: str | bytes | bytearray) -> LocalizedStrategy:
        """Strategy with the rules in the JSON text ``data``."""
        return cls(manifest_from_json(data))

    def should_trace(self, request: SamplingRequest) -> Decision:
        logger.debug(
            "Determining ShouldTrace decision for:\n\thost: %s\n\tpath: %s\n\tmethod: %s",
            request.host,
            request.url,
            request.method,
        )
        for rule in self.manifest.rules:
            p = rule.properties
            if p.applies_to(request.host, request.url, request.method):
                logger.debug(
                    "Applicable rule:\n\tfixed_target: %d\n\trate: %f\n\thost: %s"
                    "\n\turl_path: %s\n\thttp_method: %s",
                    p.fixed_target,
                    p.rate,
                    p.host,
                    p.url_path,
                    p.http_method,
                )
                return rule.sample()

        default = self.manifest.default
        logger.debug(
            "Default rule applies:\n\tfixed_target: %d\n\trate: %f",
            default.properties.fixed_target,
            default.properties.rate,
        )
        return default.sample()