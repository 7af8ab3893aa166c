# scanflow/config.py
"""
Runtime settings, read once from environment variables.

Every value has a development default so the app and the test suite
start without a .env file. Production deployments are expected to set
at least SQLALCHEMY_DATABASE_URI and SECRET_KEY.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    # Core
    secret_key: str = "dev-secret-key-change-me"
    database_uri: str = "sqlite:///scanflow.db"
    storage_backend: str = "memory"          # memory | sql
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    production: bool = False

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_timezone: str = "UTC"
    max_concurrent_scans: int = 5
    scan_timeout_seconds: int = 300

    # Scan provider
    scan_provider_url: str = ""
    scan_provider_token: str = ""

    # Notifications
    dashboard_url: str = "http://localhost:3000"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_from: str = "Scanflow Notifications <notifications@scanflow.local>"
    slack_webhook_url: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    notification_workers: int = 4
    # Log rendered messages instead of delivering them (dev default)
    notifications_dry_run: bool = True

    # Actions
    firewall_api_url: str = ""
    blocklist_api_url: str = ""
    incident_webhook_url: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        cors_env = os.getenv("CORS_ORIGINS")
        if cors_env:
            cors_origins = [o.strip() for o in cors_env.split(",") if o.strip()]
        else:
            cors_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

        production = (cors_env or "").startswith("https://")

        return cls(
            secret_key=os.getenv("SECRET_KEY") or "dev-secret-key-change-me",
            database_uri=os.getenv("SQLALCHEMY_DATABASE_URI") or "sqlite:///scanflow.db",
            storage_backend=(os.getenv("SCANFLOW_STORAGE") or "memory").lower(),
            cors_origins=cors_origins,
            production=production,
            scheduler_enabled=_env_bool("SCHEDULER_ENABLED", True),
            scheduler_timezone=os.getenv("SCHEDULER_TIMEZONE") or "UTC",
            max_concurrent_scans=_env_int("MAX_CONCURRENT_SCANS", 5),
            scan_timeout_seconds=_env_int("SCAN_TIMEOUT_SECONDS", 300),
            scan_provider_url=os.getenv("SCAN_PROVIDER_URL", ""),
            scan_provider_token=os.getenv("SCAN_PROVIDER_TOKEN", ""),
            dashboard_url=os.getenv("DASHBOARD_URL") or "http://localhost:3000",
            smtp_host=os.getenv("SMTP_HOST", ""),
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_user=os.getenv("SMTP_USER", ""),
            smtp_pass=os.getenv("SMTP_PASS", ""),
            smtp_from=os.getenv("SMTP_FROM") or "Scanflow Notifications <notifications@scanflow.local>",
            slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL", ""),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
            twilio_from_number=os.getenv("TWILIO_FROM_NUMBER", ""),
            notification_workers=_env_int("NOTIFICATION_WORKERS", 4),
            notifications_dry_run=_env_bool("NOTIFICATIONS_DRY_RUN", not production),
            firewall_api_url=os.getenv("FIREWALL_API_URL", ""),
            blocklist_api_url=os.getenv("BLOCKLIST_API_URL", ""),
            incident_webhook_url=os.getenv("INCIDENT_WEBHOOK_URL", ""),
        )
