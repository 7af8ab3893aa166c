# scanflow/notifications/templates.py
"""
Notification templates.

A template source like "Score for {{target}}: {{security_score}}" is
compiled once into a tuple of segments:

    (Literal("Score for "), Placeholder("target"),
     Literal(": "), Placeholder("security_score"))

Rendering walks the segments and looks each placeholder up in the data.
Values never get re-scanned for placeholders, so substitution order can't
matter and a value containing "{{x}}" is emitted verbatim.

    - missing field       → ""   (never raises)
    - None                → ""
    - list / tuple / set  → items joined with ", "
    - anything else       → str(value)

Placeholders may use dotted paths ({{summary.securityScore}}).

Templates are keyed "<channel>_<type>" (e.g. "slack_scan_complete").
A template body is any JSON-like structure (dict/list/str); every string
leaf is compiled. Email bodies are {"subject", "html"}, Slack bodies are
Block Kit payloads, webhook bodies are the JSON document to POST, SMS
bodies are {"text"}.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from scanflow.core.conditions import resolve_path
from scanflow.errors import TemplateError

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Placeholder:
    path: str


Segment = Union[Literal, Placeholder]


def compile_text(source: str) -> Tuple[Segment, ...]:
    segments: List[Segment] = []
    pos = 0
    for match in _PLACEHOLDER_RE.finditer(source):
        if match.start() > pos:
            segments.append(Literal(source[pos:match.start()]))
        segments.append(Placeholder(match.group(1)))
        pos = match.end()
    if pos < len(source):
        segments.append(Literal(source[pos:]))
    return tuple(segments)


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set)):
        return ", ".join(format_value(v) for v in value)
    return str(value)


class TextTemplate:
    __slots__ = ("source", "segments")

    def __init__(self, source: str):
        self.source = source
        self.segments = compile_text(source)

    @property
    def placeholders(self) -> List[str]:
        return [s.path for s in self.segments if isinstance(s, Placeholder)]

    def render(self, data: Dict[str, Any]) -> str:
        out = []
        for seg in self.segments:
            if isinstance(seg, Literal):
                out.append(seg.text)
            else:
                out.append(format_value(resolve_path(data, seg.path)))
        return "".join(out)

    def __repr__(self) -> str:
        return f"TextTemplate({self.source!r})"


def render_text(source: str, data: Dict[str, Any]) -> str:
    return TextTemplate(source).render(data)


def _compile_tree(node: Any) -> Any:
    if isinstance(node, str):
        return TextTemplate(node)
    if isinstance(node, dict):
        return {k: _compile_tree(v) for k, v in node.items()}
    if isinstance(node, list):
        return [_compile_tree(v) for v in node]
    return node


def _render_tree(node: Any, data: Dict[str, Any]) -> Any:
    if isinstance(node, TextTemplate):
        return node.render(data)
    if isinstance(node, dict):
        return {k: _render_tree(v, data) for k, v in node.items()}
    if isinstance(node, list):
        return [_render_tree(v, data) for v in node]
    return node


class MessageTemplate:
    """A compiled template body for one channel/type pair."""

    def __init__(self, key: str, body: Dict[str, Any]):
        self.key = key
        self.body = body
        self._compiled = _compile_tree(body)

    def render(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return _render_tree(self._compiled, data or {})


class TemplateRegistry:
    def __init__(self, templates: Optional[Dict[str, Dict[str, Any]]] = None):
        self._templates: Dict[str, MessageTemplate] = {}
        self._lock = threading.Lock()
        for key, body in (templates if templates is not None else DEFAULT_TEMPLATES).items():
            self.register(key, body)

    @staticmethod
    def key_for(channel: str, notification_type: str) -> str:
        return f"{channel}_{notification_type}"

    def register(self, key: str, body: Dict[str, Any]) -> MessageTemplate:
        if not isinstance(body, dict):
            raise TemplateError(f"Template body for '{key}' must be an object")
        tpl = MessageTemplate(key, body)
        with self._lock:
            self._templates[key] = tpl
        return tpl

    def get(self, channel: str, notification_type: str) -> MessageTemplate:
        key = self.key_for(channel, notification_type)
        with self._lock:
            tpl = self._templates.get(key)
        if tpl is None:
            raise TemplateError(f"Template not found: {key}", key=key)
        return tpl

    def has(self, channel: str, notification_type: str) -> bool:
        with self._lock:
            return self.key_for(channel, notification_type) in self._templates

    def keys(self) -> Iterable[str]:
        with self._lock:
            return sorted(self._templates)


# ---------------------------------------------------------------------------
# Default templates
# ---------------------------------------------------------------------------

def _slack(header: str, fields: List[Tuple[str, str]], text: str = "", button: str = "View Report",
           style: str = "primary") -> Dict[str, Any]:
    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": header}},
        {
            "type": "section",
            "fields": [{"type": "mrkdwn", "text": f"*{label}:*\n{value}"} for label, value in fields],
        },
    ]
    if text:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": text}})
    blocks.append({
        "type": "actions",
        "elements": [{
            "type": "button",
            "text": {"type": "plain_text", "text": button},
            "url": "{{dashboard_url}}",
            "style": style,
        }],
    })
    return {"text": header, "blocks": blocks}


def _webhook(event: str, fields: List[str]) -> Dict[str, Any]:
    return {
        "event": event,
        "data": {name: "{{" + name + "}}" for name in fields},
        "dashboard_url": "{{dashboard_url}}",
    }


DEFAULT_TEMPLATES: Dict[str, Dict[str, Any]] = {
    # ── Email ───────────────────────────────────────────────────────
    "email_scan_complete": {
        "subject": "Scan Complete - {{target}}",
        "html": """
        <h2>Scan Complete</h2>
        <p><strong>Target:</strong> {{target}}</p>
        <p><strong>Scan ID:</strong> {{scan_id}}</p>
        <p><strong>Completed:</strong> {{completed_at}}</p>
        <h3>Summary</h3>
        <ul>
          <li><strong>Security Score:</strong> {{security_score}}%</li>
          <li><strong>Risk Level:</strong> {{risk_level}}</li>
          <li><strong>Total Findings:</strong> {{total_findings}}</li>
        </ul>
        <h3>Findings</h3>
        <ul>
          <li><strong>Critical:</strong> {{critical_findings}}</li>
          <li><strong>High:</strong> {{high_findings}}</li>
          <li><strong>Medium:</strong> {{medium_findings}}</li>
          <li><strong>Low:</strong> {{low_findings}}</li>
        </ul>
        <p><a href="{{dashboard_url}}">View Full Report</a></p>
        """,
    },
    "email_vulnerability_alert": {
        "subject": "[{{severity}}] Vulnerability Alert - {{target}}",
        "html": """
        <h2>Vulnerability Alert</h2>
        <p><strong>Target:</strong> {{target}}</p>
        <p><strong>Severity:</strong> <span style="color: red;">{{severity}}</span></p>
        <p><strong>Rule:</strong> {{rule_name}}</p>
        <p><strong>Detected:</strong> {{detected_at}}</p>
        <h3>Details</h3>
        <p>{{message}}</p>
        <h3>Recommendation</h3>
        <p>{{recommendation}}</p>
        <p><a href="{{dashboard_url}}">View Details</a></p>
        """,
    },
    "email_threat_detected": {
        "subject": "Threat Intelligence Alert - {{target}}",
        "html": """
        <h2>Threat Intelligence Alert</h2>
        <p><strong>Target:</strong> {{target}}</p>
        <p><strong>Threat Type:</strong> {{threat_type}}</p>
        <p><strong>Confidence:</strong> {{confidence}}</p>
        <p><strong>Detected:</strong> {{detected_at}}</p>
        <h3>Threat Details</h3>
        <p>{{threat_description}}</p>
        <h3>Recommended Actions</h3>
        <p>{{recommendations}}</p>
        <p><a href="{{dashboard_url}}">View Full Analysis</a></p>
        """,
    },
    "email_incident_created": {
        "subject": "[{{severity}}] Incident Opened - {{title}}",
        "html": """
        <h2>{{title}}</h2>
        <p><strong>Target:</strong> {{target}}</p>
        <p><strong>Severity:</strong> {{severity}}</p>
        <p>{{description}}</p>
        <p><a href="{{dashboard_url}}">Open Incident</a></p>
        """,
    },
    "email_workflow_complete": {
        "subject": "Workflow {{workflow_name}} {{status}}",
        "html": """
        <h2>Workflow {{workflow_name}}</h2>
        <p><strong>Status:</strong> {{status}}</p>
        <p><strong>Execution:</strong> {{execution_id}}</p>
        <p>{{message}}</p>
        """,
    },
    "email_test": {
        "subject": "Scanflow test notification",
        "html": "<p>{{message}}</p>",
    },

    # ── Slack ───────────────────────────────────────────────────────
    "slack_scan_complete": _slack(
        "Scan Complete",
        [("Target", "{{target}}"), ("Security Score", "{{security_score}}%"),
         ("Risk Level", "{{risk_level}}"), ("Findings", "{{total_findings}}")],
        "*Findings:* {{critical_findings}} Critical, {{high_findings}} High, {{medium_findings}} Medium",
    ),
    "slack_vulnerability_alert": _slack(
        "Vulnerability Alert",
        [("Target", "{{target}}"), ("Severity", "{{severity}}"), ("Rule", "{{rule_name}}")],
        "*Details:*\n{{message}}",
        button="View Details",
        style="danger",
    ),
    "slack_threat_detected": _slack(
        "Threat Intelligence Alert",
        [("Target", "{{target}}"), ("Threat Type", "{{threat_type}}"), ("Confidence", "{{confidence}}")],
        "{{threat_description}}",
        button="View Analysis",
        style="danger",
    ),
    "slack_incident_created": _slack(
        "Incident Opened",
        [("Title", "{{title}}"), ("Target", "{{target}}"), ("Severity", "{{severity}}")],
        "{{description}}",
        button="Open Incident",
        style="danger",
    ),
    "slack_workflow_complete": _slack(
        "Workflow Finished",
        [("Workflow", "{{workflow_name}}"), ("Status", "{{status}}")],
        "{{message}}",
        button="View Execution",
    ),
    "slack_test": {"text": "{{message}}"},

    # ── Webhook ─────────────────────────────────────────────────────
    "webhook_scan_complete": _webhook("scan_complete", [
        "target", "scan_id", "security_score", "risk_level", "total_findings",
        "critical_findings", "high_findings", "medium_findings", "low_findings", "completed_at",
    ]),
    "webhook_vulnerability_alert": _webhook("vulnerability_alert", [
        "target", "severity", "rule_name", "message", "detected_at",
    ]),
    "webhook_threat_detected": _webhook("threat_detected", [
        "target", "threat_type", "confidence", "threat_description", "detected_at",
    ]),
    "webhook_incident_created": _webhook("incident_created", [
        "incident_id", "title", "target", "severity", "description",
    ]),
    "webhook_workflow_complete": _webhook("workflow_complete", [
        "workflow_id", "workflow_name", "execution_id", "status",
    ]),
    "webhook_test": _webhook("test", ["message"]),

    # ── SMS ─────────────────────────────────────────────────────────
    "sms_scan_complete": {
        "text": "Scan complete for {{target}}. Security score: {{security_score}}%. "
                "{{critical_findings}} critical issues found.",
    },
    "sms_vulnerability_alert": {
        "text": "ALERT: {{rule_name}} on {{target}}. Severity: {{severity}}. Immediate action required.",
    },
    "sms_threat_detected": {
        "text": "THREAT ALERT: {{threat_type}} detected for {{target}}. Confidence: {{confidence}}.",
    },
    "sms_incident_created": {
        "text": "INCIDENT: {{title}} ({{severity}}) on {{target}}.",
    },
    "sms_test": {"text": "{{message}}"},
}
