"""SQL repository and history against an in-memory SQLite database."""

from __future__ import annotations

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask

from scanflow.config import Settings
from scanflow.core.base import ScheduledJob, WorkflowExecution
from scanflow.extensions import db, init_extensions
from scanflow.services import build_services
from scanflow.store.base import Collections, HistoryStreams
from scanflow.store.sql import SqlHistory, SqlRepository


def _make_app():
    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    init_extensions(app)
    with app.app_context():
        db.create_all()
    return app


@pytest.fixture
def sql_app():
    return _make_app()


@pytest.fixture
def sql_repository(sql_app):
    return SqlRepository(sql_app)


@pytest.fixture
def sql_history(sql_app):
    return SqlHistory(sql_app)


def test_save_and_get_returns_fresh_objects(sql_repository):
    job = ScheduledJob(name="Nightly", targets=["a.com"], cron_expression="0 2 * * *")
    sql_repository.save(Collections.JOBS, job)

    loaded = sql_repository.get(Collections.JOBS, job.id)
    assert loaded is not job
    assert loaded.to_dict() == job.to_dict()

    loaded.run_count = 7
    assert sql_repository.get(Collections.JOBS, job.id).run_count == 0


def test_save_is_an_upsert(sql_repository):
    job = ScheduledJob(name="Nightly", targets=["a.com"], cron_expression="0 2 * * *")
    sql_repository.save(Collections.JOBS, job)
    job.run_count = 3
    sql_repository.save(Collections.JOBS, job)

    rows = sql_repository.list(Collections.JOBS)
    assert len(rows) == 1
    assert rows[0].run_count == 3


def test_collections_are_separate(sql_repository):
    job = ScheduledJob(name="Nightly", targets=["a.com"], cron_expression="0 2 * * *")
    sql_repository.save(Collections.JOBS, job)

    assert sql_repository.get(Collections.WORKFLOWS, job.id) is None
    assert sql_repository.list(Collections.WORKFLOWS) == []
    assert sql_repository.exists(Collections.JOBS, job.id) is True


def test_executions_are_keyed_by_execution_id(sql_repository):
    execution = WorkflowExecution(workflow_id="workflow_1", context={"target": "a.com"})
    sql_repository.save(Collections.EXECUTIONS, execution)

    loaded = sql_repository.get(Collections.EXECUTIONS, execution.execution_id)
    assert loaded.workflow_id == "workflow_1"
    assert loaded.context == {"target": "a.com"}


def test_delete(sql_repository):
    job = ScheduledJob(name="Nightly", targets=["a.com"], cron_expression="0 2 * * *")
    sql_repository.save(Collections.JOBS, job)

    assert sql_repository.delete(Collections.JOBS, job.id) is True
    assert sql_repository.delete(Collections.JOBS, job.id) is False
    assert sql_repository.get(Collections.JOBS, job.id) is None


def test_history_filters_and_limit(sql_history):
    for i in range(5):
        sql_history.append(HistoryStreams.JOB_RUNS, {"jobId": "job_a" if i % 2 == 0 else "job_b", "n": i})
    sql_history.append(HistoryStreams.NOTIFICATIONS, {"id": "notif_1", "status": "sent"})

    assert [e["n"] for e in sql_history.entries(HistoryStreams.JOB_RUNS)] == [0, 1, 2, 3, 4]
    assert [e["n"] for e in sql_history.entries(HistoryStreams.JOB_RUNS, {"jobId": "job_a"})] == [0, 2, 4]
    assert [e["n"] for e in sql_history.entries(HistoryStreams.JOB_RUNS, limit=2)] == [3, 4]
    assert sql_history.entries(HistoryStreams.JOB_RUNS, limit=0) == []
    assert sql_history.count(HistoryStreams.NOTIFICATIONS, {"status": "sent"}) == 1


def test_scheduler_tick_on_sql_storage(sql_app, provider, senders):
    provider.scores = {"a.com": 60, "b.com": 85}
    settings = Settings(storage_backend="sql", scheduler_enabled=False, notifications_dry_run=False)
    services = build_services(settings, app=sql_app, provider=provider, senders=senders,
                              aps_scheduler=BackgroundScheduler(timezone="UTC"))
    try:
        assert isinstance(services.repository, SqlRepository)
        assert len(services.config_store.list_profiles()) == 4

        job_id = services.scheduler.create_job({
            "name": "Nightly",
            "targets": ["a.com", "b.com", "localhost"],
            "cronExpression": "0 2 * * *",
            "automationRules": [{
                "name": "Low score",
                "condition": {"field": "summary.securityScore", "operator": "less_than", "threshold": 70},
                "action": {"type": "send_alert"},
            }],
        })

        report = services.scheduler.run_tick(job_id)

        assert report.success_count == 2
        assert report.failure_count == 1
        assert len(report.actions) == 1

        job = services.scheduler.get_job(job_id)
        assert job.run_count == 1
        assert job.automation_rules[0].triggered_count == 1
        assert job.next_run is not None

        history = services.scheduler.get_history(job_id)
        assert len(history) == 1
        assert history[0]["status"] == "partial"
        assert services.history.count(HistoryStreams.ACTIONS) == 1
    finally:
        services.shutdown()
