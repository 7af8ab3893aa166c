from .base import Collections, HistoryStore, HistoryStreams, Repository
from .memory import InMemoryHistory, InMemoryRepository

__all__ = [
    "Collections",
    "HistoryStore",
    "HistoryStreams",
    "Repository",
    "InMemoryHistory",
    "InMemoryRepository",
]
