# scanflow/core/base.py
"""
Data structures shared by the scheduler, rule engine, workflow engine and
notification dispatcher.

Everything here is a plain dataclass. Persistence goes through
`to_dict()` / `from_dict()`, which is also what the API serializes, so
the stored shape and the wire shape never drift apart:

    ScheduledJob       recurring scan definition bound to a cron trigger
    AutomationRule     condition + action evaluated against a ScanResult
    ScanResult         normalized document returned by a scan provider
    TargetOutcome      one entry of a tick batch (success or failure)
    Workflow           ordered steps executed with a shared context
    WorkflowExecution  one run of a workflow
    NotificationRule   trigger → conditions → channels fan-out
    Notification       one send attempt (append-only audit record)
    ScanProfile, DetectionRule, ExclusionList configuration entities

Keys are camelCase on the wire. `from_dict` also accepts snake_case so
callers can hand over either form.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _pick(data: dict, camel: str, snake: str, default=None):
    if camel in data:
        return data[camel]
    return data.get(snake, default)


def camel_keys(patch: Optional[dict]) -> dict:
    """Top-level snake_case keys to camelCase, for merging onto a to_dict()."""
    out = {}
    for key, value in (patch or {}).items():
        head, *rest = str(key).split("_")
        out[head + "".join(part[:1].upper() + part[1:] for part in rest)] = value
    return out


def _target_list(value: Any):
    # a bare string is one target; other non-list values are left for validation to reject
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return list(value)
    return value or []


# ---------------------------------------------------------------------------
# Status values
# ---------------------------------------------------------------------------

class ExecutionStatus:
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    TERMINAL = {COMPLETED, FAILED, CANCELLED}


class NotificationStatus:
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Scan results
# ---------------------------------------------------------------------------

@dataclass
class ScanSummary:
    security_score: int = 100            # 0..100, higher is better
    risk_level: str = "Low"              # Low, Medium, High, Critical
    total_findings: int = 0
    critical_findings: int = 0
    high_findings: int = 0
    medium_findings: int = 0
    low_findings: int = 0

    def to_dict(self) -> dict:
        return {
            "securityScore": self.security_score,
            "riskLevel": self.risk_level,
            "totalFindings": self.total_findings,
            "criticalFindings": self.critical_findings,
            "highFindings": self.high_findings,
            "mediumFindings": self.medium_findings,
            "lowFindings": self.low_findings,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScanSummary":
        data = data or {}
        return cls(
            security_score=_pick(data, "securityScore", "security_score", 100),
            risk_level=_pick(data, "riskLevel", "risk_level", "Low"),
            total_findings=_pick(data, "totalFindings", "total_findings", 0),
            critical_findings=_pick(data, "criticalFindings", "critical_findings", 0),
            high_findings=_pick(data, "highFindings", "high_findings", 0),
            medium_findings=_pick(data, "mediumFindings", "medium_findings", 0),
            low_findings=_pick(data, "lowFindings", "low_findings", 0),
        )


@dataclass
class ScanResult:
    target: str
    summary: ScanSummary
    started_at: datetime
    completed_at: datetime
    scan_id: str = ""

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "scanId": self.scan_id,
            "summary": self.summary.to_dict(),
            "startedAt": iso(self.started_at),
            "completedAt": iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScanResult":
        return cls(
            target=data["target"],
            summary=ScanSummary.from_dict(data.get("summary") or {}),
            started_at=parse_dt(_pick(data, "startedAt", "started_at")),
            completed_at=parse_dt(_pick(data, "completedAt", "completed_at")),
            scan_id=_pick(data, "scanId", "scan_id", "") or "",
        )


@dataclass
class TargetOutcome:
    """One entry in a tick's batch. Exactly one per target."""
    target: str
    success: bool
    result: Optional[ScanResult] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        out = {"target": self.target, "success": self.success}
        if self.result is not None:
            out["result"] = self.result.to_dict()
        if self.error is not None:
            out["error"] = self.error
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "TargetOutcome":
        result = data.get("result")
        return cls(
            target=data["target"],
            success=bool(data.get("success")),
            result=ScanResult.from_dict(result) if result else None,
            error=data.get("error"),
        )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@dataclass
class Condition:
    field: str
    operator: str
    threshold: Any = None

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator, "threshold": self.threshold}

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        threshold = data["threshold"] if "threshold" in data else data.get("value")
        return cls(
            field=str(data.get("field") or ""),
            operator=str(data.get("operator") or ""),
            threshold=threshold,
        )


@dataclass
class ActionSpec:
    type: str
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type, "config": dict(self.config)}

    @classmethod
    def from_dict(cls, data: dict) -> "ActionSpec":
        if isinstance(data, str):
            return cls(type=data)
        return cls(type=str(data.get("type") or ""), config=dict(data.get("config") or {}))


@dataclass
class AutomationRule:
    name: str
    condition: Condition
    action: ActionSpec
    id: str = field(default_factory=lambda: new_id("rule"))
    enabled: bool = True
    triggered_count: int = 0
    last_triggered: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "condition": self.condition.to_dict(),
            "action": self.action.to_dict(),
            "enabled": self.enabled,
            "triggeredCount": self.triggered_count,
            "lastTriggered": iso(self.last_triggered),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AutomationRule":
        # Accept both {condition: {...}} and the flat {field, operator, threshold}
        cond = data.get("condition")
        if not isinstance(cond, dict):
            cond = {k: data.get(k) for k in ("field", "operator", "threshold") if k in data}
        action = data.get("action") or {}
        if "action_config" in data and isinstance(action, str):
            action = {"type": action, "config": data["action_config"]}
        rule = cls(
            name=data.get("name") or "Unnamed rule",
            condition=Condition.from_dict(cond),
            action=ActionSpec.from_dict(action),
            enabled=data.get("enabled", True) is not False,
            triggered_count=int(_pick(data, "triggeredCount", "triggered_count", 0) or 0),
            last_triggered=parse_dt(_pick(data, "lastTriggered", "last_triggered")),
        )
        if data.get("id"):
            rule.id = data["id"]
        return rule


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------

@dataclass
class ScheduledJob:
    name: str
    targets: List[str]
    cron_expression: str
    id: str = field(default_factory=lambda: new_id("schedule"))
    scan_options: Dict[str, Any] = field(default_factory=dict)
    automation_rules: List[AutomationRule] = field(default_factory=list)
    # {"enabled": bool, "channels": [{"type": "slack", "options": {...}}]}
    notification_settings: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    run_count: int = 0
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "targets": list(self.targets),
            "cronExpression": self.cron_expression,
            "scanOptions": copy.deepcopy(self.scan_options),
            "automationRules": [r.to_dict() for r in self.automation_rules],
            "notificationSettings": copy.deepcopy(self.notification_settings),
            "enabled": self.enabled,
            "lastRun": iso(self.last_run),
            "nextRun": iso(self.next_run),
            "runCount": self.run_count,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScheduledJob":
        job = cls(
            name=data.get("name") or "Unnamed Schedule",
            targets=_target_list(data.get("targets")),
            cron_expression=_pick(data, "cronExpression", "cron_expression", "") or "",
            scan_options=dict(_pick(data, "scanOptions", "scan_options", {}) or {}),
            automation_rules=[
                AutomationRule.from_dict(r)
                for r in (_pick(data, "automationRules", "automation_rules", []) or [])
            ],
            notification_settings=dict(
                _pick(data, "notificationSettings", "notification_settings", {}) or {}
            ),
            enabled=data.get("enabled", True) is not False,
            last_run=parse_dt(_pick(data, "lastRun", "last_run")),
            next_run=parse_dt(_pick(data, "nextRun", "next_run")),
            run_count=int(_pick(data, "runCount", "run_count", 0) or 0),
            created_at=parse_dt(_pick(data, "createdAt", "created_at")) or now_utc(),
            updated_at=parse_dt(_pick(data, "updatedAt", "updated_at")) or now_utc(),
        )
        if data.get("id"):
            job.id = data["id"]
        return job


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------

@dataclass
class WorkflowStep:
    type: str                           # scan, notify, wait, condition, action
    config: Dict[str, Any] = field(default_factory=dict)
    name: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "type": self.type, "config": copy.deepcopy(self.config)}

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowStep":
        return cls(
            type=str(data.get("type") or ""),
            config=dict(data.get("config") or {}),
            name=data.get("name") or "",
        )


@dataclass
class Workflow:
    name: str
    steps: List[WorkflowStep]
    id: str = field(default_factory=lambda: new_id("workflow"))
    description: str = ""
    trigger: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    execution_count: int = 0
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "trigger": copy.deepcopy(self.trigger),
            "steps": [s.to_dict() for s in self.steps],
            "enabled": self.enabled,
            "executionCount": self.execution_count,
            "createdAt": iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Workflow":
        trigger = data.get("trigger") or {}
        if isinstance(trigger, str):
            trigger = {"type": trigger}
        wf = cls(
            name=data.get("name") or "Unnamed workflow",
            steps=[WorkflowStep.from_dict(s) for s in (data.get("steps") or [])],
            description=data.get("description") or "",
            trigger=dict(trigger),
            enabled=data.get("enabled", True) is not False,
            execution_count=int(_pick(data, "executionCount", "execution_count", 0) or 0),
            created_at=parse_dt(_pick(data, "createdAt", "created_at")) or now_utc(),
        )
        if data.get("id"):
            wf.id = data["id"]
        return wf


@dataclass(frozen=True)
class StepRecord:
    """A recorded step. Frozen: once appended it is never edited."""
    step_index: int
    step_name: str
    type: str
    success: bool
    output: Dict[str, Any]
    completed_at: datetime
    error: Optional[str] = None

    def to_dict(self) -> dict:
        out = {
            "stepIndex": self.step_index,
            "stepName": self.step_name,
            "type": self.type,
            "success": self.success,
            "output": copy.deepcopy(self.output),
            "completedAt": iso(self.completed_at),
        }
        if self.error is not None:
            out["error"] = self.error
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "StepRecord":
        return cls(
            step_index=int(_pick(data, "stepIndex", "step_index", 0)),
            step_name=_pick(data, "stepName", "step_name", "") or "",
            type=data.get("type") or "",
            success=bool(data.get("success")),
            output=dict(data.get("output") or {}),
            completed_at=parse_dt(_pick(data, "completedAt", "completed_at")) or now_utc(),
            error=data.get("error"),
        )


@dataclass
class WorkflowExecution:
    workflow_id: str
    execution_id: str = field(default_factory=lambda: new_id("exec"))
    context: Dict[str, Any] = field(default_factory=dict)
    steps_completed: List[StepRecord] = field(default_factory=list)
    status: str = ExecutionStatus.RUNNING
    started_at: datetime = field(default_factory=now_utc)
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ExecutionStatus.TERMINAL

    def to_dict(self) -> dict:
        return {
            "workflowId": self.workflow_id,
            "executionId": self.execution_id,
            "context": copy.deepcopy(self.context),
            "stepsCompleted": [s.to_dict() for s in self.steps_completed],
            "status": self.status,
            "startedAt": iso(self.started_at),
            "completedAt": iso(self.completed_at),
            "failedAt": iso(self.failed_at),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowExecution":
        return cls(
            workflow_id=_pick(data, "workflowId", "workflow_id"),
            execution_id=_pick(data, "executionId", "execution_id"),
            context=dict(data.get("context") or {}),
            steps_completed=[
                StepRecord.from_dict(s)
                for s in (_pick(data, "stepsCompleted", "steps_completed", []) or [])
            ],
            status=data.get("status") or ExecutionStatus.RUNNING,
            started_at=parse_dt(_pick(data, "startedAt", "started_at")) or now_utc(),
            completed_at=parse_dt(_pick(data, "completedAt", "completed_at")),
            failed_at=parse_dt(_pick(data, "failedAt", "failed_at")),
            error=data.get("error"),
        )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

@dataclass
class NotificationChannel:
    type: str                           # email, slack, webhook, sms
    options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type, "options": dict(self.options)}

    @classmethod
    def from_dict(cls, data) -> "NotificationChannel":
        if isinstance(data, str):
            return cls(type=data)
        return cls(type=str(data.get("type") or ""), options=dict(data.get("options") or {}))


@dataclass
class NotificationRule:
    name: str
    trigger: str
    channels: List[NotificationChannel]
    id: str = field(default_factory=lambda: new_id("notif_rule"))
    description: str = ""
    conditions: List[Condition] = field(default_factory=list)
    enabled: bool = True
    triggered_count: int = 0
    last_triggered: Optional[datetime] = None
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "trigger": self.trigger,
            "conditions": [c.to_dict() for c in self.conditions],
            "channels": [c.to_dict() for c in self.channels],
            "enabled": self.enabled,
            "triggeredCount": self.triggered_count,
            "lastTriggered": iso(self.last_triggered),
            "createdAt": iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NotificationRule":
        rule = cls(
            name=data.get("name") or "",
            trigger=data.get("trigger") or "",
            channels=[NotificationChannel.from_dict(c) for c in (data.get("channels") or [])],
            description=data.get("description") or "",
            conditions=[Condition.from_dict(c) for c in (data.get("conditions") or [])],
            enabled=data.get("enabled", True) is not False,
            triggered_count=int(_pick(data, "triggeredCount", "triggered_count", 0) or 0),
            last_triggered=parse_dt(_pick(data, "lastTriggered", "last_triggered")),
            created_at=parse_dt(_pick(data, "createdAt", "created_at")) or now_utc(),
        )
        if data.get("id"):
            rule.id = data["id"]
        return rule


@dataclass
class Notification:
    type: str
    channel: str
    id: str = field(default_factory=lambda: new_id("notif"))
    payload: Dict[str, Any] = field(default_factory=dict)   # rendered message
    data: Dict[str, Any] = field(default_factory=dict)      # template input
    options: Dict[str, Any] = field(default_factory=dict)
    status: str = NotificationStatus.PENDING
    created_at: datetime = field(default_factory=now_utc)
    sent_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    error: Optional[str] = None
    error_type: Optional[str] = None     # TemplateError, TransportError, ...

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "channel": self.channel,
            "payload": copy.deepcopy(self.payload),
            "data": copy.deepcopy(self.data),
            "status": self.status,
            "createdAt": iso(self.created_at),
            "sentAt": iso(self.sent_at),
            "failedAt": iso(self.failed_at),
            "error": self.error,
            "errorType": self.error_type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Notification":
        n = cls(
            type=data.get("type") or "",
            channel=data.get("channel") or "",
            payload=dict(data.get("payload") or {}),
            data=dict(data.get("data") or {}),
            status=data.get("status") or NotificationStatus.PENDING,
            created_at=parse_dt(_pick(data, "createdAt", "created_at")) or now_utc(),
            sent_at=parse_dt(_pick(data, "sentAt", "sent_at")),
            failed_at=parse_dt(_pick(data, "failedAt", "failed_at")),
            error=data.get("error"),
            error_type=_pick(data, "errorType", "error_type"),
        )
        if data.get("id"):
            n.id = data["id"]
        return n


# ---------------------------------------------------------------------------
# Configuration entities
# ---------------------------------------------------------------------------

@dataclass
class ScanProfile:
    id: str
    name: str
    config: Dict[str, Any]
    description: str = ""
    estimated_duration: str = ""
    resource_usage: str = ""
    custom: bool = False
    usage_count: int = 0
    created_by: str = "system"
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "config": copy.deepcopy(self.config),
            "estimatedDuration": self.estimated_duration,
            "resourceUsage": self.resource_usage,
            "custom": self.custom,
            "usageCount": self.usage_count,
            "createdBy": self.created_by,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScanProfile":
        return cls(
            id=data.get("id") or new_id("profile"),
            name=data.get("name") or "",
            config=dict(data.get("config") or {}),
            description=data.get("description") or "",
            estimated_duration=_pick(data, "estimatedDuration", "estimated_duration", "") or "",
            resource_usage=_pick(data, "resourceUsage", "resource_usage", "") or "",
            custom=bool(data.get("custom", False)),
            usage_count=int(_pick(data, "usageCount", "usage_count", 0) or 0),
            created_by=_pick(data, "createdBy", "created_by", "system") or "system",
            created_at=parse_dt(_pick(data, "createdAt", "created_at")) or now_utc(),
            updated_at=parse_dt(_pick(data, "updatedAt", "updated_at")) or now_utc(),
        )


@dataclass
class DetectionRule:
    """A categorized rule used for severity-classified security alerts."""
    id: str
    name: str
    type: str                           # vulnerability, reconnaissance, ssl, ...
    severity: str
    conditions: List[Condition]
    actions: List[Dict[str, Any]]
    description: str = ""
    enabled: bool = True
    custom: bool = False
    triggered_count: int = 0
    created_by: str = "system"
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "severity": self.severity,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": copy.deepcopy(self.actions),
            "enabled": self.enabled,
            "custom": self.custom,
            "triggeredCount": self.triggered_count,
            "createdBy": self.created_by,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionRule":
        return cls(
            id=data.get("id") or new_id("detection"),
            name=data.get("name") or "",
            type=data.get("type") or "",
            severity=data.get("severity") or "medium",
            conditions=[Condition.from_dict(c) for c in (data.get("conditions") or [])],
            actions=[dict(a) for a in (data.get("actions") or [])],
            description=data.get("description") or "",
            enabled=data.get("enabled", True) is not False,
            custom=bool(data.get("custom", False)),
            triggered_count=int(_pick(data, "triggeredCount", "triggered_count", 0) or 0),
            created_by=_pick(data, "createdBy", "created_by", "system") or "system",
            created_at=parse_dt(_pick(data, "createdAt", "created_at")) or now_utc(),
            updated_at=parse_dt(_pick(data, "updatedAt", "updated_at")) or now_utc(),
        )


@dataclass
class ExclusionList:
    id: str
    name: str
    type: str                           # global, service, environment, custom
    # {"domains": [...], "ips": [...], "ports": [...], "patterns": [...]}
    exclusions: Dict[str, List[Any]]
    description: str = ""
    enabled: bool = True
    custom: bool = False
    created_by: str = "system"
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "exclusions": copy.deepcopy(self.exclusions),
            "enabled": self.enabled,
            "custom": self.custom,
            "createdBy": self.created_by,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExclusionList":
        return cls(
            id=data.get("id") or new_id("exclusion"),
            name=data.get("name") or "",
            type=data.get("type") or "",
            exclusions=dict(data.get("exclusions") or {}),
            description=data.get("description") or "",
            enabled=data.get("enabled", True) is not False,
            custom=bool(data.get("custom", False)),
            created_by=_pick(data, "createdBy", "created_by", "system") or "system",
            created_at=parse_dt(_pick(data, "createdAt", "created_at")) or now_utc(),
            updated_at=parse_dt(_pick(data, "updatedAt", "updated_at")) or now_utc(),
        )
