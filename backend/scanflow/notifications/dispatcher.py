# =============================================================================
# File: scanflow/notifications/dispatcher.py
# Description: Templated multi-channel notification delivery.
#
#   send(type, channel, data, options)
#     1. look up template "<channel>_<type>"     (missing → TemplateError)
#     2. render it against data                   (missing field → "")
#     3. hand the message to the channel sender   (failure → TransportError)
#     4. append the attempt to history, sent or failed
#
#   process_trigger(trigger, data)
#     enabled notification rules with a matching trigger whose conditions
#     hold → one send per channel, triggered_count +1 per rule.
#
# A failed send never raises to the caller. The returned Notification
# carries status/error/error_type and the caller decides what to do.
# =============================================================================

from __future__ import annotations

import copy
import logging
import threading
from collections import Counter, defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from scanflow.core.base import (
    Notification,
    NotificationRule,
    NotificationStatus,
    now_utc,
)
from scanflow.core.conditions import evaluate_all, validate_condition
from scanflow.errors import NotFoundError, ScanflowError, TemplateError, TransportError, ValidationError
from scanflow.store.base import Collections, HistoryStore, HistoryStreams, Repository

from .templates import TemplateRegistry
from .transports import SENDERS, Sender, safe_config, validate_channel_config

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(
        self,
        repository: Repository,
        history: HistoryStore,
        templates: Optional[TemplateRegistry] = None,
        senders: Optional[Dict[str, Sender]] = None,
        channel_config: Optional[Dict[str, Dict[str, Any]]] = None,
        dashboard_url: str = "",
        dry_run: bool = False,
        max_workers: int = 4,
    ):
        self.repository = repository
        self.history = history
        self.templates = templates or TemplateRegistry()
        self.senders: Dict[str, Sender] = dict(senders if senders is not None else SENDERS)
        self.channel_config: Dict[str, Dict[str, Any]] = {
            k: dict(v) for k, v in (channel_config or {}).items()
        }
        self.dashboard_url = dashboard_url
        self.dry_run = dry_run
        self._pool = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="notify")
        self._rule_lock = threading.Lock()
        self._config_lock = threading.Lock()

    # ────────────────────────────────────────────────────────────
    # Sending
    # ────────────────────────────────────────────────────────────

    def send(
        self,
        notification_type: str,
        channel: str,
        data: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        data = copy.deepcopy(data or {})
        notification = Notification(type=notification_type, channel=channel, data=data)

        render_data = {"dashboard_url": self.dashboard_url, "timestamp": notification.created_at.isoformat()}
        render_data.update(data)

        try:
            sender = self.senders.get(channel)
            if sender is None:
                raise TransportError(f"Unknown notification channel: {channel}", channel=channel)

            template = self.templates.get(channel, notification_type)
            notification.payload = template.render(render_data)

            with self._config_lock:
                config = dict(self.channel_config.get(channel, {}))
            config.update(options or {})
            notification.options = safe_config(config)

            if self.dry_run:
                logger.info(f"[dry-run] {channel}/{notification_type} notification {notification.id}")
            else:
                meta = {
                    "id": notification.id,
                    "type": notification_type,
                    "timestamp": notification.created_at.isoformat(),
                }
                ok, error = sender(config, notification.payload, meta)
                if not ok:
                    raise TransportError(error or "delivery failed", channel=channel)

            notification.status = NotificationStatus.SENT
            notification.sent_at = now_utc()

        except (TemplateError, TransportError) as e:
            self._mark_failed(notification, e)
            logger.warning(f"Notification {notification.id} ({channel}/{notification_type}) failed: {e.message}")
        except Exception as e:
            # Sender bugs are recorded like delivery failures
            self._mark_failed(notification, e)
            logger.exception(f"Unexpected error sending notification {notification.id}: {e}")

        self.history.append(HistoryStreams.NOTIFICATIONS, notification.to_dict())
        return notification

    def send_async(
        self,
        notification_type: str,
        channel: str,
        data: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> "Future[Notification]":
        return self._pool.submit(self.send, notification_type, channel, data, options)

    @staticmethod
    def _mark_failed(notification: Notification, error: Exception) -> None:
        notification.status = NotificationStatus.FAILED
        notification.failed_at = now_utc()
        notification.error = error.message if isinstance(error, ScanflowError) else str(error)[:300]
        notification.error_type = type(error).__name__

    # ────────────────────────────────────────────────────────────
    # Rules
    # ────────────────────────────────────────────────────────────

    def process_trigger(self, trigger_type: str, data: Dict[str, Any]) -> List[Notification]:
        rules = [
            r for r in self.repository.list(Collections.NOTIFICATION_RULES)
            if r.enabled and r.trigger == trigger_type
        ]

        sent: List[Notification] = []
        for rule in rules:
            if not evaluate_all(rule.conditions, data):
                continue

            self._mark_rule_triggered(rule.id)
            logger.info(f"Notification rule '{rule.name}' triggered by {trigger_type}")

            for channel in rule.channels:
                sent.append(self.send(trigger_type, channel.type, data, channel.options))
        return sent

    def _mark_rule_triggered(self, rule_id: str) -> None:
        with self._rule_lock:
            rule = self.repository.get(Collections.NOTIFICATION_RULES, rule_id)
            if rule is None:
                return
            rule.triggered_count += 1
            rule.last_triggered = now_utc()
            self.repository.save(Collections.NOTIFICATION_RULES, rule)

    def create_rule(self, spec: Dict[str, Any]) -> NotificationRule:
        rule = NotificationRule.from_dict(spec or {})
        rule.triggered_count = 0
        rule.last_triggered = None
        self._validate_rule(rule)
        self.repository.save(Collections.NOTIFICATION_RULES, rule)
        logger.info(f"Created notification rule {rule.id} ({rule.trigger})")
        return rule

    def _validate_rule(self, rule: NotificationRule) -> None:
        if not rule.name.strip():
            raise ValidationError("name is required")
        if not rule.trigger:
            raise ValidationError("trigger is required")
        if not rule.channels:
            raise ValidationError("At least one channel is required")
        for channel in rule.channels:
            if channel.type not in self.senders:
                raise ValidationError(
                    f"Unknown channel '{channel.type}'. Must be one of: {', '.join(sorted(self.senders))}"
                )
            if not self.templates.has(channel.type, rule.trigger):
                raise ValidationError(f"No {channel.type} template for trigger '{rule.trigger}'")
        for cond in rule.conditions:
            validate_condition(cond, closed_schema=False)

    def list_rules(self) -> List[NotificationRule]:
        return sorted(self.repository.list(Collections.NOTIFICATION_RULES), key=lambda r: r.created_at)

    def delete_rule(self, rule_id: str) -> None:
        if not self.repository.delete(Collections.NOTIFICATION_RULES, rule_id):
            raise NotFoundError(f"Notification rule {rule_id} not found")

    # ────────────────────────────────────────────────────────────
    # Channel configuration
    # ────────────────────────────────────────────────────────────

    def configure_channel(self, channel: str, config: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and store defaults for a channel. Returns the masked config."""
        with self._config_lock:
            merged = dict(self.channel_config.get(channel, {}))
        merged.update(config or {})
        validate_channel_config(channel, merged)
        with self._config_lock:
            self.channel_config[channel] = merged
        logger.info(f"Configured notification channel '{channel}'")
        return safe_config(merged)

    def channel_status(self) -> Dict[str, Dict[str, Any]]:
        with self._config_lock:
            return {ch: safe_config(self.channel_config.get(ch, {})) for ch in self.senders}

    # ────────────────────────────────────────────────────────────
    # History + stats
    # ────────────────────────────────────────────────────────────

    def get_history(
        self,
        notification_type: Optional[str] = None,
        channel: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        filters = {"type": notification_type, "channel": channel, "status": status}
        rows = self.history.entries(HistoryStreams.NOTIFICATIONS, filters, limit=limit)
        return list(reversed(rows))

    def get_stats(self) -> Dict[str, Any]:
        rows = self.history.entries(HistoryStreams.NOTIFICATIONS)
        by_channel: Dict[str, Dict[str, int]] = defaultdict(lambda: {"sent": 0, "failed": 0})
        by_type: Counter = Counter()
        by_status: Counter = Counter()

        for row in rows:
            status = row.get("status")
            by_status[status] += 1
            by_type[row.get("type")] += 1
            if status in (NotificationStatus.SENT, NotificationStatus.FAILED):
                by_channel[row.get("channel")][status] += 1

        return {
            "totalSent": by_status.get(NotificationStatus.SENT, 0),
            "totalFailed": by_status.get(NotificationStatus.FAILED, 0),
            "byChannel": dict(by_channel),
            "byType": dict(by_type),
            "byStatus": dict(by_status),
            "recentActivity": list(reversed(rows[-10:])),
        }

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
