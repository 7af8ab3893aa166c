# scanflow/store/base.py
"""
Repository interfaces.

The engines depend only on these abstractions. Two implementations ship:

    memory.py: dicts guarded by a lock (default, used by the tests)
    sql.py   : Flask-SQLAlchemy tables (production)

Entities are grouped into collections (`Collections.*`). Every entity
has an `id`, a `to_dict()` and a `from_dict()` classmethod, which is all
a backend needs to persist it.

HistoryStore is append-only: entries are never edited or removed by the
core. It is read for dashboards and statistics, never for control flow.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from scanflow.core.base import (
    AutomationRule,
    DetectionRule,
    ExclusionList,
    NotificationRule,
    ScanProfile,
    ScheduledJob,
    Workflow,
    WorkflowExecution,
)


class Collections:
    JOBS = "jobs"
    WORKFLOWS = "workflows"
    EXECUTIONS = "executions"
    NOTIFICATION_RULES = "notification_rules"
    AUTOMATION_RULES = "automation_rules"
    DETECTION_RULES = "detection_rules"
    SCAN_PROFILES = "scan_profiles"
    EXCLUSION_LISTS = "exclusion_lists"


ENTITY_TYPES = {
    Collections.JOBS: ScheduledJob,
    Collections.WORKFLOWS: Workflow,
    Collections.EXECUTIONS: WorkflowExecution,
    Collections.NOTIFICATION_RULES: NotificationRule,
    Collections.AUTOMATION_RULES: AutomationRule,
    Collections.DETECTION_RULES: DetectionRule,
    Collections.SCAN_PROFILES: ScanProfile,
    Collections.EXCLUSION_LISTS: ExclusionList,
}


class HistoryStreams:
    JOB_RUNS = "job_runs"
    WORKFLOW_EXECUTIONS = "workflow_executions"
    NOTIFICATIONS = "notifications"
    ACTIONS = "actions"


def entity_key(entity: Any) -> str:
    """WorkflowExecution is keyed by execution_id; everything else by id."""
    return getattr(entity, "id", None) or getattr(entity, "execution_id")


class Repository(ABC):
    """CRUD over named collections of entities."""

    @abstractmethod
    def get(self, collection: str, entity_id: str) -> Optional[Any]:
        ...

    @abstractmethod
    def list(self, collection: str) -> List[Any]:
        ...

    @abstractmethod
    def save(self, collection: str, entity: Any) -> Any:
        """Insert or replace. Returns the entity."""

    @abstractmethod
    def delete(self, collection: str, entity_id: str) -> bool:
        """Remove an entity. Returns False if it was already gone."""

    def exists(self, collection: str, entity_id: str) -> bool:
        return self.get(collection, entity_id) is not None


class HistoryStore(ABC):
    """Append-only sink for job runs, workflow executions and notifications."""

    @abstractmethod
    def append(self, stream: str, entry: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def entries(
        self,
        stream: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Entries in insertion order, optionally filtered on top-level keys."""

    def count(self, stream: str, filters: Optional[Dict[str, Any]] = None) -> int:
        return len(self.entries(stream, filters))


def matches_filters(entry: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    return all(entry.get(k) == v for k, v in filters.items() if v is not None)
