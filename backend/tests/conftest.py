"""Shared fixtures: in-memory stores, a scripted scan provider, recording senders."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from scanflow import create_app
from scanflow.config import Settings
from scanflow.configuration.store import ConfigurationStore
from scanflow.notifications.dispatcher import NotificationDispatcher
from scanflow.providers.base import BaseScanProvider
from scanflow.rules.actions import ActionRegistry
from scanflow.rules.engine import RuleEngine
from scanflow.scheduling.scheduler import Scheduler
from scanflow.services import build_services
from scanflow.store import InMemoryHistory, InMemoryRepository
from scanflow.workflows.engine import WorkflowEngine


class FakeScanProvider(BaseScanProvider):
    """Returns a fixed security score per target; listed targets raise."""

    def __init__(self, scores: Optional[Dict[str, int]] = None, failing=()):
        self.scores: Dict[str, int] = dict(scores or {})
        self.failing = set(failing)
        self.calls: List[tuple] = []
        self.on_scan: Optional[Callable[[str], None]] = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "fake"

    def execute(self, target: str, options: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self.calls.append((target, dict(options)))
        if self.on_scan is not None:
            self.on_scan(target)
        if target in self.failing:
            raise RuntimeError(f"connection refused: {target}")
        score = self.scores.get(target, 90)
        return {
            "target": target,
            "summary": {
                "securityScore": score,
                "riskLevel": "High" if score < 70 else "Low",
                "totalFindings": 3 if score < 70 else 0,
                "criticalFindings": 1 if score < 70 else 0,
                "highFindings": 2 if score < 70 else 0,
                "mediumFindings": 0,
                "lowFindings": 0,
            },
        }

    @property
    def scanned_targets(self) -> List[str]:
        with self._lock:
            return [t for t, _ in self.calls]


class RecordingSender:
    """Channel sender double. Records every delivery; can be told to fail."""

    def __init__(self):
        self.deliveries: List[Dict[str, Any]] = []
        self.fail_with: Optional[str] = None
        self._lock = threading.Lock()

    def __call__(self, config, message, meta):
        with self._lock:
            self.deliveries.append({"config": dict(config), "message": message, "meta": dict(meta)})
        if self.fail_with:
            return False, self.fail_with
        return True, None


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def history():
    return InMemoryHistory()


@pytest.fixture
def provider():
    return FakeScanProvider()


@pytest.fixture
def senders():
    return {name: RecordingSender() for name in ("email", "slack", "webhook", "sms")}


@pytest.fixture
def dispatcher(repository, history, senders):
    d = NotificationDispatcher(repository, history, senders=senders, dashboard_url="https://dash.test")
    yield d
    d.shutdown(wait=True)


@pytest.fixture
def actions(dispatcher, provider):
    return ActionRegistry(dispatcher=dispatcher, provider=provider)


@pytest.fixture
def rule_engine(actions, history, repository):
    return RuleEngine(actions, history=history, repository=repository)


@pytest.fixture
def config_store(repository):
    store = ConfigurationStore(repository)
    store.load_defaults()
    return store


@pytest.fixture
def aps():
    """Never started: timers are registered as pending jobs and never fire."""
    return BackgroundScheduler(timezone="UTC")


@pytest.fixture
def scheduler(repository, history, provider, rule_engine, dispatcher, config_store, aps):
    s = Scheduler(
        repository,
        history,
        provider,
        rule_engine,
        dispatcher=dispatcher,
        config_store=config_store,
        scheduler=aps,
        max_concurrent_scans=2,
    )
    yield s
    s.shutdown(wait=True)


@pytest.fixture
def workflows(repository, history, provider, dispatcher, rule_engine):
    engine = WorkflowEngine(repository, history, provider=provider, dispatcher=dispatcher, rule_engine=rule_engine)
    yield engine
    engine.shutdown(wait=True)


@pytest.fixture
def settings():
    return Settings(scheduler_enabled=False, notifications_dry_run=False)


@pytest.fixture
def services(settings, provider, senders):
    svc = build_services(settings, provider=provider, senders=senders, aps_scheduler=BackgroundScheduler(timezone="UTC"))
    yield svc
    svc.shutdown()


@pytest.fixture
def app(settings, services):
    return create_app(settings, services=services)


@pytest.fixture
def client(app):
    return app.test_client()
