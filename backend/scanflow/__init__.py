# scanflow/__init__.py
"""
App factory.

    - Settings come from the environment (scanflow.config.Settings.from_env)
      unless a Settings instance is passed in (tests do this)
    - Storage is in-memory by default; SCANFLOW_STORAGE=sql keeps entities
      and history in the SQLAlchemy database
    - Flask-Migrate manages the schema; SQLite dev databases are created
      in place on startup
    - Gunicorn-safe scheduler guard (only one process arms cron timers)
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS

from .config import Settings
from .configuration.routes import config_bp
from .errors import register_error_handlers
from .extensions import EXTENSION_KEY, db, init_extensions
from . import models  # noqa: F401  (registers tables with SQLAlchemy)
from .notifications.routes import notifications_bp
from .scheduling.routes import schedules_bp
from .services import Services, build_services
from .workflows.routes import workflows_bp

__version__ = "1.0.0"

logger = logging.getLogger(__name__)


def _configure_logging(production: bool) -> None:
    if production:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    logging.getLogger("werkzeug").setLevel(logging.INFO)
    # Quieten noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def _should_start_scheduler(settings: Settings) -> bool:
    """
    Under Gunicorn every worker runs create_app(), and each would arm its
    own copy of every cron timer. Only start when SCHEDULER_ENABLED is
    true for this process (set it on exactly one worker, or use --preload).
    The Flask dev server always honours settings.scheduler_enabled.
    """
    if not settings.scheduler_enabled:
        return False
    server = os.getenv("SERVER_SOFTWARE", "")
    if "gunicorn" not in server.lower():
        return True
    return os.environ.get("SCHEDULER_ENABLED", "false").lower() == "true"


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> Flask:
    settings = settings or Settings.from_env()
    app = Flask(__name__)

    # ── Logging ──────────────────────────────────────────────────────
    _configure_logging(settings.production)
    app.logger.setLevel(logging.INFO if settings.production else logging.DEBUG)

    # ── CORS ────────────────────────────────────────────────────────
    CORS(app, resources={
        r"/*": {
            "origins": settings.cors_origins,
            "supports_credentials": True,
            "allow_headers": ["Content-Type", "Authorization"],
            "methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        }
    })

    # ── Secret Key / Database ────────────────────────────────────────
    if settings.production and settings.secret_key == "dev-secret-key-change-me":
        raise RuntimeError(
            "SECRET_KEY environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    app.config["SECRET_KEY"] = settings.secret_key
    app.config["SQLALCHEMY_DATABASE_URI"] = settings.database_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # ── Extensions ───────────────────────────────────────────────────
    init_extensions(app)
    if settings.storage_backend == "sql" and settings.database_uri.startswith("sqlite"):
        with app.app_context():
            db.create_all()

    # ── Automation services ─────────────────────────────────────────
    if services is None:
        services = build_services(settings, app=app)
    app.extensions[EXTENSION_KEY] = services

    # ── Blueprints ───────────────────────────────────────────────────
    app.register_blueprint(schedules_bp)
    app.register_blueprint(workflows_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(config_bp)

    # ── Error Handlers ───────────────────────────────────────────────
    register_error_handlers(app)

    # Health check
    @app.get("/health")
    def health():
        return jsonify(status="up and running"), 200

    # ── Background Scheduler ─────────────────────────────────────────
    if _should_start_scheduler(settings):
        services.scheduler.start()
    else:
        logger.info("Scheduler disabled for this process (SCHEDULER_ENABLED != true)")

    return app
