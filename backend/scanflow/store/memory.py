# scanflow/store/memory.py
"""In-memory repository and history. Thread-safe; one lock per store."""

from __future__ import annotations

import copy
import threading
from collections import defaultdict
from typing import Any, Dict, List, Optional

from .base import HistoryStore, Repository, entity_key, matches_filters


class InMemoryRepository(Repository):
    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = defaultdict(dict)
        self._lock = threading.RLock()

    def get(self, collection: str, entity_id: str) -> Optional[Any]:
        with self._lock:
            return self._data[collection].get(entity_id)

    def list(self, collection: str) -> List[Any]:
        with self._lock:
            return list(self._data[collection].values())

    def save(self, collection: str, entity: Any) -> Any:
        with self._lock:
            self._data[collection][entity_key(entity)] = entity
        return entity

    def delete(self, collection: str, entity_id: str) -> bool:
        with self._lock:
            return self._data[collection].pop(entity_id, None) is not None


class InMemoryHistory(HistoryStore):
    def __init__(self):
        self._streams: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, stream: str, entry: Dict[str, Any]) -> None:
        # Stored entries are private copies so later caller mutations can't edit history
        with self._lock:
            self._streams[stream].append(copy.deepcopy(entry))

    def entries(
        self,
        stream: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [copy.deepcopy(e) for e in self._streams[stream] if matches_filters(e, filters)]
        if limit is not None:
            rows = rows[-limit:] if limit > 0 else []
        return rows
