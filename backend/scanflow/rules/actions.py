# =============================================================================
# File: scanflow/rules/actions.py
# Description: The fixed action registry used by automation rules and by
#   workflow `action` steps.
#
#   send_alert           vulnerability_alert notification on the configured
#                        channels, plus any notification rules subscribed
#                        to vulnerability_alert
#   block_ips            push IPs to the firewall API (or record them)
#   trigger_incident     open an incident, optionally POST it to a webhook
#   run_additional_scan  invoke the scan provider again for the target
#   update_blocklist     push indicators to the blocklist API (or record them)
#
# Handlers return a plain output dict. Anything that goes wrong inside a
# handler surfaces as ActionError; unknown types as ActionNotSupportedError.
# There is no retry and no rollback.
# =============================================================================

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import requests

from scanflow.core.base import ActionSpec, iso, new_id, now_utc
from scanflow.errors import ActionError, ActionNotSupportedError, ProviderError

logger = logging.getLogger(__name__)

SUPPORTED_ACTIONS = (
    "send_alert",
    "block_ips",
    "trigger_incident",
    "run_additional_scan",
    "update_blocklist",
)


@dataclass
class ActionContext:
    """What a handler gets to know about why it is running."""
    target: str
    rule_name: str = ""
    rule_id: Optional[str] = None
    job_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None     # ScanResult document, if any
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def summary(self) -> Dict[str, Any]:
        return (self.result or {}).get("summary") or {}

    @property
    def scan_id(self) -> Optional[str]:
        return (self.result or {}).get("scanId")


@dataclass
class ActionOutcome:
    action: str
    success: bool
    target: str
    output: Dict[str, Any] = field(default_factory=dict)
    rule_id: Optional[str] = None
    rule_name: str = ""
    job_id: Optional[str] = None
    error: Optional[str] = None
    executed_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "success": self.success,
            "target": self.target,
            "output": self.output,
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "jobId": self.job_id,
            "error": self.error,
            "executedAt": iso(self.executed_at),
        }


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


class ActionRegistry:
    def __init__(
        self,
        dispatcher=None,
        provider=None,
        firewall_api_url: str = "",
        blocklist_api_url: str = "",
        incident_webhook_url: str = "",
    ):
        self.dispatcher = dispatcher
        self.provider = provider
        self.firewall_api_url = firewall_api_url
        self.blocklist_api_url = blocklist_api_url
        self.incident_webhook_url = incident_webhook_url
        self._handlers: Dict[str, Callable[[Dict[str, Any], ActionContext], Dict[str, Any]]] = {
            "send_alert": self._send_alert,
            "block_ips": self._block_ips,
            "trigger_incident": self._trigger_incident,
            "run_additional_scan": self._run_additional_scan,
            "update_blocklist": self._update_blocklist,
        }

    def supports(self, action_type: str) -> bool:
        return action_type in self._handlers

    def execute(self, action: ActionSpec, ctx: ActionContext) -> Dict[str, Any]:
        handler = self._handlers.get(action.type)
        if handler is None:
            raise ActionNotSupportedError(
                f"Unknown action '{action.type}'. Must be one of: {', '.join(SUPPORTED_ACTIONS)}",
                action=action.type,
            )
        try:
            return handler(action.config or {}, ctx)
        except ActionError:
            raise
        except Exception as e:
            raise ActionError(f"{action.type} failed: {type(e).__name__}: {str(e)[:200]}", action=action.type) from e

    # ────────────────────────────────────────────────────────────
    # Handlers
    # ────────────────────────────────────────────────────────────

    def _send_alert(self, config: dict, ctx: ActionContext) -> dict:
        score = ctx.summary.get("securityScore")
        alert = {
            "alert_id": new_id("alert"),
            "rule_name": ctx.rule_name,
            "target": ctx.target,
            "scan_id": ctx.scan_id,
            "severity": config.get("severity", "medium"),
            "message": config.get("message")
            or f"Automation rule '{ctx.rule_name}' triggered for {ctx.target}. Security score: {score}%",
            "recommendation": config.get("recommendation", ""),
            "detected_at": now_utc().isoformat(),
            "security_score": score,
            "summary": ctx.summary,
        }
        logger.info(f"Alert for {ctx.target}: {alert['message']}")

        notifications: List[dict] = []
        if self.dispatcher is not None:
            for channel in config.get("channels") or []:
                if isinstance(channel, str):
                    channel = {"type": channel}
                n = self.dispatcher.send("vulnerability_alert", channel.get("type", ""), alert, channel.get("options"))
                notifications.append({"id": n.id, "channel": n.channel, "status": n.status})
            for n in self.dispatcher.process_trigger("vulnerability_alert", alert):
                notifications.append({"id": n.id, "channel": n.channel, "status": n.status})

        return {"alert": alert, "notifications": notifications}

    def _block_ips(self, config: dict, ctx: ActionContext) -> dict:
        ips = [str(ip) for ip in (config.get("ips") or ctx.data.get("ips") or [])]
        if not ips and _is_ip(ctx.target):
            ips = [ctx.target]
        invalid = [ip for ip in ips if not _is_ip(ip)]
        if invalid:
            raise ActionError(f"Invalid IP address(es): {', '.join(invalid)}", action="block_ips")

        url = config.get("firewall_api_url") or self.firewall_api_url
        applied = False
        if ips and url:
            self._post(url, {
                "action": "block",
                "ips": ips,
                "reason": f"scanflow rule '{ctx.rule_name}' on {ctx.target}",
                "duration": config.get("duration"),
            }, "block_ips")
            applied = True
        for ip in ips:
            logger.info(f"Blocking IP {ip} (applied={applied})")
        return {"blocked_ips": ips, "applied": applied}

    def _trigger_incident(self, config: dict, ctx: ActionContext) -> dict:
        summary = ctx.summary
        incident = {
            "incident_id": new_id("incident"),
            "title": config.get("title") or f"Automated Detection: {ctx.rule_name}",
            "description": (
                f"Automated incident created by rule '{ctx.rule_name}' for target {ctx.target}. "
                f"Scan detected {summary.get('criticalFindings', 0)} critical issues and "
                f"{summary.get('highFindings', 0)} high-severity issues."
            ),
            "severity": config.get("severity", "medium"),
            "target": ctx.target,
            "scan_id": ctx.scan_id,
            "job_id": ctx.job_id,
            "status": "open",
            "created_at": now_utc().isoformat(),
        }
        logger.info(f"Incident created: {incident['title']}")

        url = config.get("webhook_url") or self.incident_webhook_url
        if url:
            self._post(url, incident, "trigger_incident")

        if self.dispatcher is not None:
            self.dispatcher.process_trigger("incident_created", incident)
        return {"incident": incident, "posted": bool(url)}

    def _run_additional_scan(self, config: dict, ctx: ActionContext) -> dict:
        if self.provider is None:
            raise ActionError("No scan provider configured", action="run_additional_scan")

        options = dict(config.get("options") or {})
        options.setdefault("scan_type", config.get("scan_type", "focused"))
        options.setdefault("parent_scan", ctx.scan_id)
        options.setdefault("triggered_by", ctx.rule_name)

        logger.info(f"Triggering additional {options['scan_type']} scan for {ctx.target}")
        try:
            result = self.provider.run_scan(config.get("target") or ctx.target, options)
        except ProviderError as e:
            raise ActionError(f"Additional scan failed: {e.message}", action="run_additional_scan") from e
        return {"scan_type": options["scan_type"], "result": result.to_dict()}

    def _update_blocklist(self, config: dict, ctx: ActionContext) -> dict:
        indicators = [str(i) for i in (config.get("indicators") or ctx.data.get("indicators") or [ctx.target])]
        url = config.get("blocklist_api_url") or self.blocklist_api_url
        applied = False
        if url:
            self._post(url, {
                "action": "add",
                "indicators": indicators,
                "list": config.get("list", "default"),
                "source": f"scanflow:{ctx.rule_name}",
            }, "update_blocklist")
            applied = True
        for indicator in indicators:
            logger.info(f"Adding to blocklist: {indicator} (applied={applied})")
        return {"added_indicators": indicators, "applied": applied}

    @staticmethod
    def _post(url: str, body: dict, action: str) -> None:
        try:
            resp = requests.post(url, json=body, timeout=10)
        except requests.RequestException as e:
            raise ActionError(f"{action} request failed: {str(e)[:200]}", action=action) from e
        if not 200 <= resp.status_code < 300:
            raise ActionError(f"{action} endpoint returned {resp.status_code}: {resp.text[:200]}", action=action)
