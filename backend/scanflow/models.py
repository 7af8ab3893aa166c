from __future__ import annotations

from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint
from .extensions import db


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AutomationEntity(db.Model):
    """
    One row per stored entity (job, workflow, execution, rule, profile, ...).
    The entity's to_dict() form lives in payload_json.
    """
    __tablename__ = "automation_entity"

    id = db.Column(db.Integer, primary_key=True)

    # jobs, workflows, executions, notification_rules, automation_rules,
    # detection_rules, scan_profiles, exclusion_lists
    collection = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.String(100), nullable=False)

    payload_json = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    updated_at = db.Column(db.DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        UniqueConstraint("collection", "entity_id", name="uq_automation_entity_collection_entity"),
    )


class HistoryEntry(db.Model):
    """
    Append-only history: job runs, workflow executions, notifications, actions.
    Rows are only ever inserted by the core (prune_history.py removes old ones).
    """
    __tablename__ = "history_entry"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    stream = db.Column(db.String(50), nullable=False, index=True)

    # Denormalized for filtering without JSON queries
    ref_id = db.Column(db.String(100), nullable=True, index=True)   # job/workflow/notification id
    status = db.Column(db.String(30), nullable=True)

    entry_json = db.Column(db.JSON, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc, index=True)
