"""Local sampling rule manifests loaded from JSON."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from xraystrategy.clock import DefaultClock
from xraystrategy.rand import DefaultRand
from xraystrategy.reservoir import Reservoir
from xraystrategy.rule import Properties, Rule

SUPPORTED_VERSIONS = (1, 2)


class ManifestError(ValueError):
    """Raised when a sampling rule manifest is malformed or invalid."""


@dataclass(eq=False)
class RuleManifest:
    """A full local ruleset: custom rules and a default for everything else."""

    version: int
    default: Rule
    rules: list[Rule] = field(default_factory=list)


def _string(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ManifestError(f"{key} must be a string")
    return value


def _integer(obj: dict[str, Any], key: str) -> int:
    value = obj.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ManifestError(f"{key} must be an integer")
    return value


def _number(obj: dict[str, Any], key: str) -> float:
    value = obj.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ManifestError(f"{key} must be a number")
    return float(value)


def _parse_properties(obj: Any, where: str) -> Properties:
    if not isinstance(obj, dict):
        raise ManifestError(f"{where} must be a JSON object")
    return Properties(
        service_name=_string(obj, "service_name"),
        host=_string(obj, "host"),
        http_method=_string(obj, "http_method"),
        url_path=_string(obj, "url_path"),
        fixed_target=_integer(obj, "fixed_target"),
        rate=_number(obj, "rate"),
    )


def _validate_version1(p: Properties) -> None:
    if p.fixed_target < 0 or p.rate < 0:
        raise ManifestError("all rules must have non-negative values for fixed_target and rate")
    if p.host != "" or p.service_name == "" or p.http_method == "" or p.url_path == "":
        raise ManifestError(
            "all non-default rules must have values for url_path, service_name, and http_method"
        )


def _validate_version2(p: Properties) -> None:
    if p.fixed_target < 0 or p.rate < 0:
        raise ManifestError("all rules must have non-negative values for fixed_target and rate")
    if p.service_name != "" or p.host == "" or p.http_method == "" or p.url_path == "":
        raise ManifestError(
            "all non-default rules must have values for url_path, host, and http_method"
        )


def _make_rule(properties: Properties, now: int) -> Rule:
    reservoir = Reservoir(
        capacity=properties.fixed_target,
        used=0,
        current_epoch=now,
        clock=DefaultClock(),
    )
    return Rule(reservoir=reservoir, properties=properties, rand=DefaultRand())


def manifest_from_json(data: str | bytes | bytearray) -> RuleManifest:
    """Parse and validate a sampling ruleset from JSON text."""
    try:
        doc = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ManifestError(f"invalid sampling rule manifest: {exc}") from exc

    if doc is None:
        doc = {}
    if not isinstance(doc, dict):
        raise ManifestError("sampling rule manifest must be a JSON object")

    version = _integer(doc, "version")
    default_doc = doc.get("default")
    default_props = None if default_doc is None else _parse_properties(default_doc, "default")

    rules_doc = doc.get("rules")
    if rules_doc is None:
        rules_doc = []
    if not isinstance(rules_doc, list):
        raise ManifestError("rules must be a JSON array")
    rule_props = [_parse_properties(item, "rule") for item in rules_doc]

    if version not in SUPPORTED_VERSIONS:
        raise ManifestError(f"sampling rule manifest version {version} not supported")
    if default_props is None:
        raise ManifestError("sampling rule manifest must include a default rule")
    if default_props.url_path or default_props.service_name or default_props.http_method:
        raise ManifestError(
            "the default rule must not specify values for url_path, service_name, or http_method"
        )
    if default_props.fixed_target < 0 or default_props.rate < 0:
        raise ManifestError(
            "the default rule must specify non-negative values for fixed_target and rate"
        )

    for props in rule_props:
        if version == 1:
            _validate_version1(props)
            # Version 1 rules name the host in service_name.
            props.host = props.service_name
            props.service_name = ""
        else:
            _validate_version2(props)

    now = int(time.time())
    return RuleManifest(
        version=version,
        default=_make_rule(default_props, now),
        rules=[_make_rule(props, now) for props in rule_props],
    )


def manifest_from_file(path: str | Path) -> RuleManifest:
    """Read and validate a sampling ruleset from the JSON file at ``path``."""
    return manifest_from_json(Path(path).read_bytes())