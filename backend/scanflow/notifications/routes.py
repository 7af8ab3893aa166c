# =============================================================================
# File: scanflow/notifications/routes.py
# Description: Notification test sends, history, stats, rules and channel
#   configuration.
#
# Endpoints:
#   - POST   /notifications/test              send one templated notification
#   - GET    /notifications/history           ?type=&channel=&status=&limit=
#   - GET    /notifications/stats             counts by channel/type/status
#   - GET    /notifications/rules             list rules
#   - POST   /notifications/rules             create rule
#   - DELETE /notifications/rules/<id>        delete rule
#   - GET    /notifications/channels          masked channel configuration
#   - PUT    /notifications/channels/<name>   validate + store channel config
# =============================================================================

from __future__ import annotations

from flask import Blueprint, jsonify, request

from scanflow.core.base import NotificationStatus
from scanflow.errors import ValidationError
from scanflow.extensions import get_services

notifications_bp = Blueprint("notifications", __name__, url_prefix="/notifications")


@notifications_bp.post("/test")
def send_test_notification():
    body = request.get_json(silent=True) or {}
    channel = (body.get("channel") or "").strip()
    if not channel:
        raise ValidationError("channel is required")
    notification_type = body.get("type") or "test"

    data = {"message": "This is a test notification from Scanflow."}
    data.update(body.get("data") or {})

    notification = get_services().dispatcher.send(notification_type, channel, data, body.get("options") or {})
    ok = notification.status == NotificationStatus.SENT
    return jsonify(ok=ok, notification=notification.to_dict()), (200 if ok else 502)


@notifications_bp.get("/history")
def notification_history():
    limit = max(1, min(request.args.get("limit", 100, type=int) or 100, 1000))
    rows = get_services().dispatcher.get_history(
        notification_type=request.args.get("type") or None,
        channel=request.args.get("channel") or None,
        status=request.args.get("status") or None,
        limit=limit,
    )
    return jsonify(rows), 200


@notifications_bp.get("/stats")
def notification_stats():
    return jsonify(get_services().dispatcher.get_stats()), 200


@notifications_bp.get("/rules")
def list_notification_rules():
    return jsonify([r.to_dict() for r in get_services().dispatcher.list_rules()]), 200


@notifications_bp.post("/rules")
def create_notification_rule():
    body = request.get_json(silent=True) or {}
    rule = get_services().dispatcher.create_rule(body)
    return jsonify(rule.to_dict()), 201


@notifications_bp.delete("/rules/<rule_id>")
def delete_notification_rule(rule_id: str):
    get_services().dispatcher.delete_rule(rule_id)
    return jsonify(message="deleted", id=rule_id), 200


@notifications_bp.get("/channels")
def list_channels():
    return jsonify(get_services().dispatcher.channel_status()), 200


@notifications_bp.put("/channels/<channel>")
def configure_channel(channel: str):
    body = request.get_json(silent=True) or {}
    dispatcher = get_services().dispatcher
    if channel not in dispatcher.senders:
        raise ValidationError(f"Unknown channel '{channel}'. Must be one of: {', '.join(dispatcher.senders)}")
    return jsonify(channel=channel, config=dispatcher.configure_channel(channel, body)), 200
