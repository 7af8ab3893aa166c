# scanflow/services.py
"""
Wires the automation core together.

    repository / history  ← memory or SQL, from Settings.storage_backend
    provider              ← HttpScanProvider when SCAN_PROVIDER_URL is set
    dispatcher            ← templates + channel senders
    actions → rule_engine ← dispatcher, provider
    config_store          ← repository (defaults seeded)
    scheduler             ← provider, rule_engine, dispatcher, config_store
    workflows             ← provider, dispatcher, rule_engine

Every collaborator is passed in through a constructor; nothing here is
global. The Flask app keeps its container in app.extensions["scanflow"].
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from scanflow.config import Settings
from scanflow.configuration.store import ConfigurationStore
from scanflow.notifications.dispatcher import NotificationDispatcher
from scanflow.providers import BaseScanProvider, HttpScanProvider, UnconfiguredScanProvider
from scanflow.rules.actions import ActionRegistry
from scanflow.rules.engine import RuleEngine
from scanflow.scheduling.scheduler import Scheduler
from scanflow.store import HistoryStore, InMemoryHistory, InMemoryRepository, Repository
from scanflow.workflows.engine import WorkflowEngine

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    repository: Repository
    history: HistoryStore
    provider: BaseScanProvider
    dispatcher: NotificationDispatcher
    actions: ActionRegistry
    rule_engine: RuleEngine
    config_store: ConfigurationStore
    scheduler: Scheduler
    workflows: WorkflowEngine

    def shutdown(self) -> None:
        self.scheduler.shutdown(wait=False)
        self.workflows.shutdown(wait=False)
        self.dispatcher.shutdown(wait=False)


def channel_config_from_settings(settings: Settings) -> Dict[str, Dict[str, Any]]:
    """Channel defaults from the environment; per-send options override them."""
    return {
        "email": {
            "smtp_host": settings.smtp_host,
            "smtp_port": settings.smtp_port,
            "smtp_user": settings.smtp_user,
            "smtp_pass": settings.smtp_pass,
            "from": settings.smtp_from,
        },
        "slack": {"webhook_url": settings.slack_webhook_url},
        "webhook": {},
        "sms": {
            "twilio_account_sid": settings.twilio_account_sid,
            "twilio_auth_token": settings.twilio_auth_token,
            "twilio_from_number": settings.twilio_from_number,
        },
    }


def build_services(
    settings: Settings,
    app=None,
    repository: Optional[Repository] = None,
    history: Optional[HistoryStore] = None,
    provider: Optional[BaseScanProvider] = None,
    senders=None,
    aps_scheduler=None,
) -> Services:
    if repository is None or history is None:
        if settings.storage_backend == "sql":
            if app is None:
                raise RuntimeError("SQL storage needs the Flask app")
            from scanflow.store.sql import SqlHistory, SqlRepository
            repository = repository or SqlRepository(app)
            history = history or SqlHistory(app)
        else:
            repository = repository or InMemoryRepository()
            history = history or InMemoryHistory()

    if provider is None:
        if settings.scan_provider_url:
            provider = HttpScanProvider(
                settings.scan_provider_url,
                token=settings.scan_provider_token,
                timeout=settings.scan_timeout_seconds,
            )
        else:
            logger.warning("SCAN_PROVIDER_URL is not set; scheduled scans will fail until it is")
            provider = UnconfiguredScanProvider()

    dispatcher = NotificationDispatcher(
        repository,
        history,
        senders=senders,
        channel_config=channel_config_from_settings(settings),
        dashboard_url=settings.dashboard_url,
        dry_run=settings.notifications_dry_run,
        max_workers=settings.notification_workers,
    )
    actions = ActionRegistry(
        dispatcher=dispatcher,
        provider=provider,
        firewall_api_url=settings.firewall_api_url,
        blocklist_api_url=settings.blocklist_api_url,
        incident_webhook_url=settings.incident_webhook_url,
    )
    rule_engine = RuleEngine(actions, history=history, repository=repository)

    config_store = ConfigurationStore(
        repository,
        global_settings={"scan_limits": {"max_concurrent_scans": settings.max_concurrent_scans}},
    )
    config_store.load_defaults()

    scheduler = Scheduler(
        repository,
        history,
        provider,
        rule_engine,
        dispatcher=dispatcher,
        config_store=config_store,
        scheduler=aps_scheduler,
        max_concurrent_scans=settings.max_concurrent_scans,
        timezone=settings.scheduler_timezone,
    )
    workflows = WorkflowEngine(
        repository,
        history,
        provider=provider,
        dispatcher=dispatcher,
        rule_engine=rule_engine,
    )

    return Services(
        settings=settings,
        repository=repository,
        history=history,
        provider=provider,
        dispatcher=dispatcher,
        actions=actions,
        rule_engine=rule_engine,
        config_store=config_store,
        scheduler=scheduler,
        workflows=workflows,
    )

