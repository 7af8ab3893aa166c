"""HTTP surface: app factory, blueprints and JSON errors."""

from __future__ import annotations

import time

import pytest

from scanflow import create_app
from scanflow.config import Settings
from scanflow.providers import UnconfiguredScanProvider
from scanflow.extensions import EXTENSION_KEY
from scanflow.store.sql import SqlRepository


def _schedule_body(**overrides):
    body = {"name": "Nightly", "targets": ["a.com"], "cronExpression": "0 2 * * *"}
    body.update(overrides)
    return body


def _poll(fetch, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        value = fetch()
        if value:
            return value
        time.sleep(0.02)
    return fetch()


# ── app ─────────────────────────────────────────────────────────

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "up and running"}


def test_unknown_route_is_json_404(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Not found"


def test_method_not_allowed_is_json(client):
    resp = client.put("/health")
    assert resp.status_code == 405
    assert resp.get_json()["error"] == "Method not allowed"


def test_default_services_without_provider_url():
    app = create_app(Settings(scheduler_enabled=False))
    services = app.extensions[EXTENSION_KEY]
    try:
        assert isinstance(services.provider, UnconfiguredScanProvider)
        assert services.dispatcher.dry_run is True
    finally:
        services.shutdown()


def test_sql_storage_is_created_and_seeded():
    app = create_app(Settings(storage_backend="sql", database_uri="sqlite://", scheduler_enabled=False))
    services = app.extensions[EXTENSION_KEY]
    try:
        assert isinstance(services.repository, SqlRepository)
        resp = app.test_client().get("/config/profiles")
        assert resp.status_code == 200
        assert {p["id"] for p in resp.get_json()} == {"quick", "comprehensive", "stealth", "deep"}
    finally:
        services.shutdown()


def test_production_requires_a_secret_key():
    with pytest.raises(RuntimeError):
        create_app(Settings(production=True, scheduler_enabled=False))


# ── schedules ───────────────────────────────────────────────────

def test_schedule_lifecycle(client):
    resp = client.post("/schedules", json=_schedule_body())
    assert resp.status_code == 201
    job = resp.get_json()
    assert job["nextRun"] is not None
    assert job["runCount"] == 0

    rows = client.get("/schedules").get_json()
    assert [r["id"] for r in rows] == [job["id"]]
    assert rows[0]["armed"] is True

    resp = client.patch(f"/schedules/{job['id']}", json={"cronExpression": "30 4 * * *"})
    assert resp.status_code == 200
    assert resp.get_json()["cronExpression"] == "30 4 * * *"

    resp = client.delete(f"/schedules/{job['id']}")
    assert resp.status_code == 200
    assert resp.get_json() == {"message": "deleted", "id": job["id"]}
    assert client.get(f"/schedules/{job['id']}").status_code == 404
    assert client.delete(f"/schedules/{job['id']}").status_code == 404


def test_schedule_validation_errors(client):
    resp = client.post("/schedules", json=_schedule_body(cronExpression="61 * * * *"))
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["error"] == "Validation failed"
    assert "61 * * * *" in body["message"]


def test_schedule_patch_accepts_snake_case(client):
    job = client.post("/schedules", json=_schedule_body()).get_json()

    resp = client.patch(f"/schedules/{job['id']}", json={"cron_expression": "not a cron"})
    assert resp.status_code == 400

    resp = client.patch(f"/schedules/{job['id']}", json={"cron_expression": "15 3 * * *"})
    assert resp.status_code == 200
    assert resp.get_json()["cronExpression"] == "15 3 * * *"


def test_run_now_records_history(client, provider):
    provider.scores = {"a.com": 55}
    job = client.post("/schedules", json=_schedule_body()).get_json()

    resp = client.post(f"/schedules/{job['id']}/run-now")
    assert resp.status_code == 202
    assert resp.get_json() == {"message": "queued", "id": job["id"]}

    assert _poll(lambda: client.get(f"/schedules/{job['id']}").get_json()["runCount"] == 1)
    history = client.get(f"/schedules/{job['id']}/history").get_json()
    assert len(history) == 1
    assert history[0]["results"][0]["result"]["summary"]["securityScore"] == 55


def test_run_now_unknown_job(client):
    assert client.post("/schedules/missing/run-now").status_code == 404


# ── workflows ───────────────────────────────────────────────────

def test_workflow_execute_and_inspect(client, provider):
    provider.scores = {"a.com": 64}
    resp = client.post("/workflows", json={
        "name": "Scan then check",
        "steps": [
            {"type": "scan", "config": {"target": "a.com"}},
            {"type": "condition", "config": {"condition": {"field": "security_score", "operator": "less_than",
                                                          "threshold": 70}}},
        ],
    })
    assert resp.status_code == 201
    wf = resp.get_json()

    resp = client.post(f"/workflows/{wf['id']}/execute", json={"context": {"ticket": "OPS-1"}})
    assert resp.status_code == 200
    execution = resp.get_json()
    assert execution["status"] == "completed"
    assert execution["context"]["condition_result"] is True
    assert execution["context"]["ticket"] == "OPS-1"
    assert len(execution["stepsCompleted"]) == 2

    detail = client.get(f"/workflows/{wf['id']}").get_json()
    assert detail["executionCount"] == 1
    assert detail["runningExecutions"] == []

    rows = client.get(f"/workflows/{wf['id']}/executions").get_json()
    assert [r["executionId"] for r in rows] == [execution["executionId"]]
    one = client.get(f"/workflows/executions/{execution['executionId']}").get_json()
    assert one["workflowId"] == wf["id"]


def test_workflow_async_execute(client):
    wf = client.post("/workflows", json={"name": "Tiny", "steps": [{"type": "wait", "config": {"seconds": 0}}]})
    wf_id = wf.get_json()["id"]

    resp = client.post(f"/workflows/{wf_id}/execute?async=1")
    assert resp.status_code == 202

    rows = _poll(lambda: [r for r in client.get(f"/workflows/{wf_id}/executions").get_json()
                          if r["status"] == "completed"])
    assert len(rows) == 1


def test_workflow_errors(client):
    resp = client.post("/workflows", json={"name": "Bad", "steps": [{"type": "teleport"}]})
    assert resp.status_code == 400
    assert client.get("/workflows/workflow_missing").status_code == 404
    assert client.delete("/workflows/workflow_missing").status_code == 404
    assert client.get("/workflows/executions/exec_missing").status_code == 404

    wf = client.post("/workflows", json={"name": "Off", "enabled": False,
                                         "steps": [{"type": "wait", "config": {"seconds": 0}}]}).get_json()
    assert client.post(f"/workflows/{wf['id']}/execute").status_code == 400
    assert client.delete(f"/workflows/{wf['id']}").status_code == 200


# ── notifications ───────────────────────────────────────────────

def test_test_notification(client, senders):
    resp = client.post("/notifications/test", json={"channel": "slack"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["ok"] is True
    assert body["notification"]["status"] == "sent"
    assert senders["slack"].deliveries[0]["message"] == {"text": "This is a test notification from Scanflow."}


def test_failed_test_notification(client, senders):
    senders["webhook"].fail_with = "HTTP 500"
    resp = client.post("/notifications/test", json={"channel": "webhook"})
    assert resp.status_code == 502
    body = resp.get_json()
    assert body["ok"] is False
    assert body["notification"]["error"] == "HTTP 500"


def test_test_notification_requires_channel(client):
    assert client.post("/notifications/test", json={}).status_code == 400


def test_notification_history_and_stats(client, senders):
    senders["sms"].fail_with = "rejected"
    client.post("/notifications/test", json={"channel": "slack"})
    client.post("/notifications/test", json={"channel": "sms"})

    rows = client.get("/notifications/history?channel=slack").get_json()
    assert [r["channel"] for r in rows] == ["slack"]
    failed = client.get("/notifications/history?status=failed").get_json()
    assert [r["channel"] for r in failed] == ["sms"]

    stats = client.get("/notifications/stats").get_json()
    assert stats["totalSent"] == 1
    assert stats["totalFailed"] == 1
    assert stats["byChannel"]["sms"] == {"sent": 0, "failed": 1}


def test_notification_rules(client):
    resp = client.post("/notifications/rules", json={
        "name": "Critical scans",
        "trigger": "scan_complete",
        "channels": [{"type": "slack"}],
        "conditions": [{"field": "critical_findings", "operator": "greater_than", "threshold": 0}],
    })
    assert resp.status_code == 201
    rule = resp.get_json()

    assert [r["id"] for r in client.get("/notifications/rules").get_json()] == [rule["id"]]
    assert client.delete(f"/notifications/rules/{rule['id']}").status_code == 200
    assert client.delete(f"/notifications/rules/{rule['id']}").status_code == 404

    bad = client.post("/notifications/rules", json={"name": "x", "trigger": "workflow_complete",
                                                    "channels": [{"type": "sms"}]})
    assert bad.status_code == 400


def test_channel_configuration(client):
    resp = client.put("/notifications/channels/sms", json={
        "twilio_account_sid": "AC123",
        "twilio_auth_token": "secret-token-9876",
        "twilio_from_number": "+15550001111",
    })
    assert resp.status_code == 200
    assert resp.get_json()["config"]["twilio_auth_token"] == "••••9876"

    channels = client.get("/notifications/channels").get_json()
    assert channels["sms"]["twilio_account_sid"] == "AC123"
    assert channels["sms"]["twilio_auth_token"] == "••••9876"

    assert client.put("/notifications/channels/slack", json={"webhook_url": "http://insecure"}).status_code == 400
    assert client.put("/notifications/channels/pager", json={}).status_code == 400


# ── configuration ───────────────────────────────────────────────

def test_profiles(client):
    assert len(client.get("/config/profiles").get_json()) == 4
    assert client.get("/config/profiles/quick").get_json()["name"] == "Quick Scan"

    resp = client.post("/config/profiles", json={
        "name": "Light",
        "config": {"enumeration": {}, "dns_analysis": {}, "http_analysis": {}},
    })
    assert resp.status_code == 201
    profile_id = resp.get_json()["id"]

    resp = client.patch(f"/config/profiles/{profile_id}", json={"description": "tuned"})
    assert resp.get_json()["description"] == "tuned"
    assert client.delete(f"/config/profiles/{profile_id}").status_code == 200
    assert client.delete("/config/profiles/quick").status_code == 400
    assert client.get("/config/profiles/missing").status_code == 404


def test_rules(client):
    resp = client.post("/config/rules", json={
        "name": "Low score",
        "condition": {"field": "security_score", "operator": "less_than", "threshold": 50},
        "action": {"type": "send_alert"},
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["kind"] == "automation"
    assert body["rule"]["condition"]["field"] == "summary.securityScore"
    automation_id = body["rule"]["id"]

    resp = client.post("/config/rules", json={
        "kind": "detection",
        "name": "Open RDP",
        "type": "port_scan",
        "severity": "high",
        "conditions": [{"field": "port.number", "operator": "equals", "threshold": 3389}],
        "actions": [{"type": "alert"}],
    })
    assert resp.status_code == 201
    detection_id = resp.get_json()["rule"]["id"]

    assert client.post("/config/rules", json={"kind": "other"}).status_code == 400

    listing = client.get("/config/rules").get_json()
    assert [r["id"] for r in listing["automationRules"]] == [automation_id]
    assert detection_id in {r["id"] for r in listing["detectionRules"]}

    resp = client.patch(f"/config/rules/{detection_id}", json={"enabled": False})
    assert resp.get_json()["kind"] == "detection"
    assert resp.get_json()["rule"]["enabled"] is False

    assert client.delete(f"/config/rules/{automation_id}").status_code == 200
    assert client.delete(f"/config/rules/{detection_id}").status_code == 200
    assert client.delete("/config/rules/missing").status_code == 404


def test_exclusions(client):
    resp = client.post("/config/exclusions/check", json={"target": "localhost"})
    assert resp.get_json() == {
        "target": "localhost",
        "excluded": True,
        "reason": "Matched exclusion list: Global Exclusions",
        "listId": "global",
    }
    assert client.post("/config/exclusions/check", json={"target": "example.com"}).get_json()["excluded"] is False
    assert client.post("/config/exclusions/check", json={}).status_code == 400

    resp = client.post("/config/exclusions", json={
        "name": "Partners",
        "type": "custom",
        "exclusions": {"domains": ["partner.example.com"]},
    })
    assert resp.status_code == 201
    list_id = resp.get_json()["id"]
    assert client.post("/config/exclusions/check",
                       json={"target": "partner.example.com"}).get_json()["listId"] == list_id

    client.patch(f"/config/exclusions/{list_id}", json={"enabled": False})
    assert client.post("/config/exclusions/check",
                       json={"target": "partner.example.com"}).get_json()["excluded"] is False
    assert client.delete(f"/config/exclusions/{list_id}").status_code == 200
    assert client.delete("/config/exclusions/global").status_code == 400


def test_settings_export_import_and_stats(client):
    resp = client.patch("/config/settings/scan_limits", json={"max_scan_duration": 600})
    assert resp.status_code == 200
    assert resp.get_json()["settings"]["max_scan_duration"] == 600
    assert client.get("/config/settings").get_json()["scan_limits"]["max_scan_duration"] == 600

    exported = client.get("/config/export?type=profiles").get_json()
    assert len(exported["scanProfiles"]) == 4
    assert client.get("/config/export?type=bogus").status_code == 400

    resp = client.post("/config/import", json=exported)
    assert resp.status_code == 200
    assert resp.get_json()["skipped"] == 4

    resp = client.post("/config/import?overwrite=1", json=exported)
    assert resp.get_json()["imported"]["scanProfiles"] == 4

    stats = client.get("/config/stats").get_json()
    assert stats["scanProfiles"]["total"] == 4
    assert stats["exclusionLists"]["enabled"] == 1
