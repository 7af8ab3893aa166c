# scanflow/store/sql.py
"""
Flask-SQLAlchemy backed repository and history.

Engines call into these from APScheduler worker threads, so every
operation opens its own app context and commits (or rolls back) before
returning. Entities are stored as their to_dict() JSON; reads always
return fresh objects, so callers must save() after mutating.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from scanflow.extensions import db
from scanflow.models import AutomationEntity, HistoryEntry, now_utc

from .base import ENTITY_TYPES, HistoryStore, Repository, entity_key, matches_filters

logger = logging.getLogger(__name__)


class SqlRepository(Repository):
    def __init__(self, app):
        self._app = app
        # Upserts are read-then-write; serialize them within this process
        self._write_lock = threading.Lock()

    def _decode(self, collection: str, row: AutomationEntity) -> Any:
        return ENTITY_TYPES[collection].from_dict(row.payload_json or {})

    def get(self, collection: str, entity_id: str) -> Optional[Any]:
        with self._app.app_context():
            row = AutomationEntity.query.filter_by(
                collection=collection, entity_id=entity_id,
            ).first()
            return self._decode(collection, row) if row else None

    def list(self, collection: str) -> List[Any]:
        with self._app.app_context():
            rows = (
                AutomationEntity.query
                .filter_by(collection=collection)
                .order_by(AutomationEntity.id.asc())
                .all()
            )
            return [self._decode(collection, r) for r in rows]

    def save(self, collection: str, entity: Any) -> Any:
        key = entity_key(entity)
        payload = entity.to_dict()
        with self._write_lock, self._app.app_context():
            try:
                row = AutomationEntity.query.filter_by(
                    collection=collection, entity_id=key,
                ).first()
                if row:
                    row.payload_json = payload
                    row.updated_at = now_utc()
                else:
                    db.session.add(AutomationEntity(
                        collection=collection,
                        entity_id=key,
                        payload_json=payload,
                    ))
                db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception("Failed to save %s/%s", collection, key)
                raise
        return entity

    def delete(self, collection: str, entity_id: str) -> bool:
        with self._write_lock, self._app.app_context():
            row = AutomationEntity.query.filter_by(
                collection=collection, entity_id=entity_id,
            ).first()
            if not row:
                return False
            db.session.delete(row)
            db.session.commit()
            return True


def _ref_id(entry: Dict[str, Any]) -> Optional[str]:
    for key in ("jobId", "executionId", "id"):
        if entry.get(key):
            return str(entry[key])
    return None


class SqlHistory(HistoryStore):
    def __init__(self, app):
        self._app = app

    def append(self, stream: str, entry: Dict[str, Any]) -> None:
        with self._app.app_context():
            try:
                db.session.add(HistoryEntry(
                    stream=stream,
                    ref_id=_ref_id(entry),
                    status=entry.get("status"),
                    entry_json=entry,
                ))
                db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception("Failed to append history entry to %s", stream)
                raise

    def entries(
        self,
        stream: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._app.app_context():
            rows = (
                HistoryEntry.query
                .filter_by(stream=stream)
                .order_by(HistoryEntry.id.asc())
                .all()
            )
            out = [r.entry_json for r in rows if matches_filters(r.entry_json or {}, filters)]
        if limit is not None:
            out = out[-limit:] if limit > 0 else []
        return out
