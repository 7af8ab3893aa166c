"""Scan profiles, rules, exclusion lists and configuration export/import."""

from __future__ import annotations

import pytest

from scanflow.configuration.store import ConfigurationStore
from scanflow.errors import NotFoundError, ValidationError
from scanflow.store import InMemoryRepository


def _profile(**overrides):
    data = {
        "name": "Custom",
        "config": {
            "enumeration": {"passive_sources": ["crt.sh"]},
            "dns_analysis": {"enabled": True},
            "http_analysis": {"enabled": False},
        },
    }
    data.update(overrides)
    return data


def test_defaults_are_loaded_once(config_store):
    assert {p.id for p in config_store.list_profiles()} == {"quick", "comprehensive", "stealth", "deep"}
    assert {"critical_vulns", "suspicious_subdomains", "ssl_issues"} <= {r.id for r in config_store.list_detection_rules()}
    assert {e.id for e in config_store.list_exclusion_lists()} == {"global", "cdn_cloud", "dev_test"}

    before = config_store.get_stats()
    config_store.load_defaults()
    assert config_store.get_stats() == before


def test_profile_crud(config_store):
    profile = config_store.create_profile(_profile())
    assert profile.custom is True
    assert profile.id.startswith("profile_")

    updated = config_store.update_profile(profile.id, {"description": "tuned"})
    assert updated.description == "tuned"
    assert updated.created_at == profile.created_at

    config_store.delete_profile(profile.id)
    with pytest.raises(NotFoundError):
        config_store.get_profile(profile.id)


def test_update_accepts_snake_case_keys(config_store):
    profile = config_store.create_profile(_profile())

    updated = config_store.update_profile(profile.id, {"estimated_duration": "5 minutes", "resource_usage": "Low"})

    assert updated.estimated_duration == "5 minutes"
    assert updated.resource_usage == "Low"
    assert config_store.get_profile(profile.id).estimated_duration == "5 minutes"


def test_profile_validation(config_store):
    with pytest.raises(ValidationError):
        config_store.create_profile(_profile(name=""))
    config = _profile()["config"]
    del config["http_analysis"]
    with pytest.raises(ValidationError):
        config_store.create_profile(_profile(config=config))
    with pytest.raises(ValidationError):
        config_store.create_profile(_profile(id="quick"))


def test_builtin_entities_cannot_be_deleted(config_store):
    with pytest.raises(ValidationError):
        config_store.delete_profile("quick")
    with pytest.raises(ValidationError):
        config_store.delete_exclusion_list("global")


def test_record_profile_usage(config_store):
    config_store.record_profile_usage("quick")
    config_store.record_profile_usage("quick")
    assert config_store.get_profile("quick").usage_count == 2


def test_automation_rule_update_keeps_counters(config_store):
    rule = config_store.create_automation_rule({
        "name": "Low score",
        "condition": {"field": "security_score", "operator": "less_than", "threshold": 70},
        "action": {"type": "send_alert"},
    })
    assert rule.condition.field == "summary.securityScore"

    rule.triggered_count = 4
    updated = config_store.update_automation_rule(rule.id, {"triggeredCount": 0, "enabled": False})
    assert updated.triggered_count == 4
    assert updated.enabled is False

    with pytest.raises(ValidationError):
        config_store.create_automation_rule({
            "name": "bad",
            "condition": {"field": "summary.openPorts", "operator": "greater_than", "threshold": 1},
            "action": {"type": "send_alert"},
        })


def test_detection_rule_validation(config_store):
    rule = config_store.create_detection_rule({
        "name": "Expired certs",
        "type": "configuration",
        "severity": "high",
        "conditions": [{"field": "ssl.expired", "operator": "equals", "threshold": True}],
        "actions": [{"type": "alert"}],
    })
    assert rule.custom is True

    with pytest.raises(ValidationError):
        config_store.create_detection_rule({"name": "x", "type": "t", "severity": "urgent",
                                            "conditions": [{"field": "a", "operator": "equals", "threshold": 1}],
                                            "actions": [{"type": "alert"}]})
    with pytest.raises(ValidationError):
        config_store.create_detection_rule({"name": "x", "type": "t", "severity": "low",
                                            "conditions": [], "actions": [{"type": "alert"}]})


@pytest.mark.parametrize(
    "target, excluded",
    [
        ("localhost", True),
        ("api.internal", True),
        ("https://portal.corp.local/login", True),
        ("10.20.30.40", True),
        ("192.168.1.1", True),
        ("8.8.8.8", False),
        ("example.com", False),
        ("assets.cloudfront.net", False),
    ],
)
def test_should_exclude_target_with_defaults(config_store, target, excluded):
    verdict = config_store.should_exclude_target(target)
    assert verdict["excluded"] is excluded
    if excluded:
        assert verdict["listId"] == "global"


def test_enabling_a_list_changes_exclusions(config_store):
    config_store.update_exclusion_list("cdn_cloud", {"enabled": True})
    verdict = config_store.should_exclude_target("assets.cloudfront.net")
    assert verdict == {
        "excluded": True,
        "reason": "Matched exclusion list: CDN and Cloud Provider Exclusions",
        "listId": "cdn_cloud",
    }


def test_port_exclusions(config_store):
    config_store.create_exclusion_list({
        "name": "No telnet",
        "type": "custom",
        "exclusions": {"ports": ["23", 3389]},
    })
    assert config_store.should_exclude_target("23")["excluded"] is True
    assert config_store.should_exclude_target("443")["excluded"] is False


def test_exclusion_list_validation(config_store):
    with pytest.raises(ValidationError):
        config_store.create_exclusion_list({"name": "x", "type": "custom", "exclusions": {"ips": ["300.1.1.1"]}})
    with pytest.raises(ValidationError):
        config_store.create_exclusion_list({"name": "x", "type": "bogus", "exclusions": {}})
    with pytest.raises(ValidationError):
        config_store.create_exclusion_list({"name": "x", "type": "custom", "exclusions": {"ports": [70000]}})


def test_global_settings(config_store):
    assert config_store.get_global_settings()["scan_limits"]["max_concurrent_scans"] == 5
    section = config_store.update_global_settings("scan_limits", {"max_concurrent_scans": 2})
    assert section["max_concurrent_scans"] == 2
    assert section["max_scan_duration"] == 7200
    with pytest.raises(ValidationError):
        config_store.update_global_settings("scan_limits", ["not", "a", "dict"])


def test_export_then_import_into_empty_store(config_store):
    exported = config_store.export_configuration("all")
    target = ConfigurationStore(InMemoryRepository())

    first = target.import_configuration(exported)
    assert first["imported"]["scanProfiles"] == 4
    assert first["imported"]["exclusionLists"] == 3
    assert first["imported"]["detectionRules"] == len(exported["detectionRules"])
    assert first["errors"] == []

    again = target.import_configuration(exported)
    assert again["imported"]["scanProfiles"] == 0
    assert again["skipped"] == 4 + 3 + len(exported["detectionRules"])

    overwritten = target.import_configuration(exported, overwrite=True)
    assert overwritten["imported"]["scanProfiles"] == 4


def test_import_reports_invalid_entries(config_store):
    result = config_store.import_configuration({
        "scanProfiles": [{"name": "no id", "config": {}}],
        "exclusionLists": [{"id": "bad", "name": "Bad", "type": "custom", "exclusions": {"ips": ["x"]}}],
    })
    assert result["imported"]["scanProfiles"] == 0
    assert len(result["errors"]) == 2


def test_partial_export_and_invalid_type(config_store):
    exported = config_store.export_configuration("profiles")
    assert "scanProfiles" in exported
    assert "exclusionLists" not in exported
    with pytest.raises(ValidationError):
        config_store.export_configuration("everything")


def test_stats(config_store):
    config_store.create_profile(_profile())
    stats = config_store.get_stats()
    assert stats["scanProfiles"] == {"total": 5, "custom": 1, "default": 4}
