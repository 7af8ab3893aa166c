# scanflow/extensions.py
from __future__ import annotations
from typing import TYPE_CHECKING

from flask import current_app
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

if TYPE_CHECKING:
    from .services import Services

db = SQLAlchemy()
migrate = Migrate()

# app.extensions key holding the Services container
EXTENSION_KEY = "scanflow"

@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, _connection_record):
    # SQLite only. Scheduler ticks write history from worker threads,
    # so readers must not block writers and writers wait instead of failing.
    module_name = type(dbapi_connection).__module__
    if "sqlite" in module_name.lower():
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

def init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)

def get_services() -> "Services":
    return current_app.extensions[EXTENSION_KEY]
