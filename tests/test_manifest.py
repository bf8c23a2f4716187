import json

import pytest

from xraystrategy.manifest import (
    ManifestError,
    RuleManifest,
    manifest_from_file,
    manifest_from_json,
)


def _doc(version=2, default=None, rules=None):
    doc = {"version": version, "default": default or {"fixed_target": 1, "rate": 0.05}}
    if rules is not None:
        doc["rules"] = rules
    return json.dumps(doc)


V2_RULE = {"host": "*", "http_method": "GET", "url_path": "/api/*", "fixed_target": 3, "rate": 0.2}
V1_RULE = {"service_name": "svc.example.com", "http_method": "POST", "url_path": "/x", "fixed_target": 4, "rate": 0.3}


def test_version2_manifest_keeps_rule_properties():
    manifest = manifest_from_json(_doc(rules=[V2_RULE]))
    assert isinstance(manifest, RuleManifest)
    assert manifest.version == 2
    assert len(manifest.rules) == 1
    props = manifest.rules[0].properties
    assert props.host == V2_RULE["host"]
    assert props.http_method == V2_RULE["http_method"]
    assert props.url_path == V2_RULE["url_path"]
    assert props.fixed_target == V2_RULE["fixed_target"]
    assert props.rate == V2_RULE["rate"]
    assert props.service_name == ""


def test_version1_moves_service_name_to_host():
    manifest = manifest_from_json(_doc(version=1, rules=[V1_RULE]))
    props = manifest.rules[0].properties
    assert props.host == V1_RULE["service_name"]
    assert props.service_name == ""


def test_reservoir_capacity_follows_fixed_target():
    manifest = manifest_from_json(_doc(rules=[V2_RULE]))
    assert manifest.rules[0].reservoir.capacity == V2_RULE["fixed_target"]
    assert manifest.rules[0].reservoir.used == 0
    assert manifest.default.reservoir.capacity == 1


def test_missing_rules_gives_empty_list():
    manifest = manifest_from_json(_doc())
    assert manifest.rules == []


def test_accepts_bytes():
    manifest = manifest_from_json(_doc(rules=[V2_RULE]).encode("utf-8"))
    assert len(manifest.rules) == 1


def test_fresh_default_rule_samples_first_request():
    manifest = manifest_from_json(_doc(default={"fixed_target": 1, "rate": 0.0}))
    assert manifest.default.sample().sample is True


@pytest.mark.parametrize("version", [0, 3])
def test_unsupported_version(version):
    with pytest.raises(ManifestError, match=f"version {version} not supported"):
        manifest_from_json(_doc(version=version))


def test_missing_default():
    with pytest.raises(ManifestError, match="must include a default rule"):
        manifest_from_json(json.dumps({"version": 2, "rules": []}))


def test_default_with_url_path():
    with pytest.raises(ManifestError, match="must not specify values"):
        manifest_from_json(_doc(default={"url_path": "/a", "fixed_target": 1, "rate": 0.1}))


def test_default_negative_rate():
    with pytest.raises(ManifestError, match="non-negative"):
        manifest_from_json(_doc(default={"fixed_target": 1, "rate": -0.1}))


def test_v1_rule_missing_method():
    rule = dict(V1_RULE)
    del rule["http_method"]
    with pytest.raises(ManifestError, match="service_name, and http_method"):
        manifest_from_json(_doc(version=1, rules=[rule]))


def test_v2_rule_with_service_name():
    rule = dict(V2_RULE, service_name="svc")
    with pytest.raises(ManifestError, match="host, and http_method"):
        manifest_from_json(_doc(rules=[rule]))


def test_negative_fixed_target_in_rule():
    rule = dict(V2_RULE, fixed_target=-1)
    with pytest.raises(ManifestError, match="non-negative values for fixed_target and rate"):
        manifest_from_json(_doc(rules=[rule]))


@pytest.mark.parametrize("text", ["{", "[]", "null", '{"version": "2"}'])
def test_malformed_documents(text):
    with pytest.raises(ManifestError):
        manifest_from_json(text)


def test_wrong_field_type():
    with pytest.raises(ManifestError, match="fixed_target"):
        manifest_from_json(_doc(default={"fixed_target": 1.5, "rate": 0.1}))


def test_from_file_round_trip(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(_doc(rules=[V2_RULE]))
    manifest = manifest_from_file(path)
    assert manifest.rules[0].properties.url_path == V2_RULE["url_path"]


def test_from_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        manifest_from_file(tmp_path / "absent.json")