# =============================================================================
# File: scanflow/configuration/routes.py
# Description: Scan profiles, automation/detection rules, exclusion lists,
#   global settings and configuration export/import.
#
# Endpoints:
#   - GET/POST          /config/profiles
#   - GET/PATCH/DELETE  /config/profiles/<id>
#   - GET/POST          /config/rules             (kind=detection for detection rules)
#   - PATCH/DELETE      /config/rules/<id>
#   - GET/POST          /config/exclusions
#   - PATCH/DELETE      /config/exclusions/<id>
#   - POST              /config/exclusions/check
#   - GET               /config/settings
#   - PATCH             /config/settings/<section>
#   - GET               /config/export?type=all|profiles|rules|exclusions|global
#   - POST              /config/import?overwrite=1
#   - GET               /config/stats
# =============================================================================

from __future__ import annotations

from flask import Blueprint, jsonify, request

from scanflow.errors import NotFoundError, ValidationError
from scanflow.extensions import get_services

config_bp = Blueprint("config", __name__, url_prefix="/config")


def _store():
    return get_services().config_store


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


# ── profiles ────────────────────────────────────────────────────

@config_bp.get("/profiles")
def list_profiles():
    return jsonify([p.to_dict() for p in _store().list_profiles()]), 200


@config_bp.post("/profiles")
def create_profile():
    body = request.get_json(silent=True) or {}
    return jsonify(_store().create_profile(body).to_dict()), 201


@config_bp.get("/profiles/<profile_id>")
def get_profile(profile_id: str):
    return jsonify(_store().get_profile(profile_id).to_dict()), 200


@config_bp.patch("/profiles/<profile_id>")
def update_profile(profile_id: str):
    body = request.get_json(silent=True) or {}
    return jsonify(_store().update_profile(profile_id, body).to_dict()), 200


@config_bp.delete("/profiles/<profile_id>")
def delete_profile(profile_id: str):
    _store().delete_profile(profile_id)
    return jsonify(message="deleted", id=profile_id), 200


# ── rules ───────────────────────────────────────────────────────

@config_bp.get("/rules")
def list_rules():
    store = _store()
    return jsonify(
        automationRules=[r.to_dict() for r in store.list_automation_rules()],
        detectionRules=[r.to_dict() for r in store.list_detection_rules()],
    ), 200


@config_bp.post("/rules")
def create_rule():
    body = request.get_json(silent=True) or {}
    kind = body.pop("kind", "automation")
    if kind == "detection":
        rule = _store().create_detection_rule(body)
    elif kind == "automation":
        rule = _store().create_automation_rule(body)
    else:
        raise ValidationError("kind must be 'automation' or 'detection'")
    return jsonify(kind=kind, rule=rule.to_dict()), 201


@config_bp.patch("/rules/<rule_id>")
def update_rule(rule_id: str):
    body = request.get_json(silent=True) or {}
    store = _store()
    try:
        rule = store.update_automation_rule(rule_id, body)
        kind = "automation"
    except NotFoundError:
        rule = store.update_detection_rule(rule_id, body)
        kind = "detection"
    return jsonify(kind=kind, rule=rule.to_dict()), 200


@config_bp.delete("/rules/<rule_id>")
def delete_rule(rule_id: str):
    store = _store()
    try:
        store.delete_automation_rule(rule_id)
    except NotFoundError:
        store.delete_detection_rule(rule_id)
    return jsonify(message="deleted", id=rule_id), 200


# ── exclusions ──────────────────────────────────────────────────

@config_bp.get("/exclusions")
def list_exclusions():
    return jsonify([e.to_dict() for e in _store().list_exclusion_lists()]), 200


@config_bp.post("/exclusions")
def create_exclusion_list():
    body = request.get_json(silent=True) or {}
    return jsonify(_store().create_exclusion_list(body).to_dict()), 201


@config_bp.patch("/exclusions/<list_id>")
def update_exclusion_list(list_id: str):
    body = request.get_json(silent=True) or {}
    return jsonify(_store().update_exclusion_list(list_id, body).to_dict()), 200


@config_bp.delete("/exclusions/<list_id>")
def delete_exclusion_list(list_id: str):
    _store().delete_exclusion_list(list_id)
    return jsonify(message="deleted", id=list_id), 200


@config_bp.post("/exclusions/check")
def check_exclusion():
    body = request.get_json(silent=True) or {}
    target = (body.get("target") or "").strip()
    if not target:
        raise ValidationError("target is required")
    target_type = body.get("targetType") or body.get("target_type")
    result = _store().should_exclude_target(target, target_type)
    return jsonify(target=target, **result), 200


# ── global settings ─────────────────────────────────────────────

@config_bp.get("/settings")
def get_settings():
    return jsonify(_store().get_global_settings()), 200


@config_bp.patch("/settings/<section>")
def update_settings(section: str):
    body = request.get_json(silent=True)
    return jsonify(section=section, settings=_store().update_global_settings(section, body)), 200


# ── export / import / stats ─────────────────────────────────────

@config_bp.get("/export")
def export_configuration():
    export_type = request.args.get("type", "all")
    return jsonify(_store().export_configuration(export_type)), 200


@config_bp.post("/import")
def import_configuration():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    overwrite = _truthy(request.args.get("overwrite")) or body.get("overwrite") is True
    return jsonify(_store().import_configuration(body, overwrite=overwrite)), 200


@config_bp.get("/stats")
def configuration_stats():
    return jsonify(_store().get_stats()), 200
