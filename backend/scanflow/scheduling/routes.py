# =============================================================================
# File: scanflow/scheduling/routes.py
# Description: Scheduled scan job routes for creating, updating, deleting,
#   and manually triggering cron-driven scans.
#
# Endpoints:
#   - GET    /schedules                 list jobs
#   - POST   /schedules                 create + arm a job
#   - GET    /schedules/<id>            job detail
#   - PATCH  /schedules/<id>            update (re-arms the timer)
#   - DELETE /schedules/<id>            delete (cancels the timer)
#   - POST   /schedules/<id>/run-now    run one tick in the background
#   - GET    /schedules/<id>/history    recent tick reports
# =============================================================================

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from scanflow.errors import NotFoundError
from scanflow.extensions import get_services

logger = logging.getLogger(__name__)

schedules_bp = Blueprint("schedules", __name__, url_prefix="/schedules")


def _limit(default: int = 50) -> int:
    return max(1, min(request.args.get("limit", default, type=int) or default, 500))


@schedules_bp.get("")
def list_schedules():
    scheduler = get_services().scheduler
    jobs = scheduler.list_jobs()
    active = set(scheduler.active_timers())
    rows = []
    for job in sorted(jobs, key=lambda j: (not j.enabled, j.name.lower())):
        row = job.to_dict()
        row["armed"] = job.id in active
        rows.append(row)
    return jsonify(rows), 200


@schedules_bp.post("")
def create_schedule():
    body = request.get_json(silent=True) or {}
    scheduler = get_services().scheduler
    job_id = scheduler.create_job(body)
    return jsonify(scheduler.get_job(job_id).to_dict()), 201


@schedules_bp.get("/<job_id>")
def get_schedule(job_id: str):
    job = get_services().scheduler.get_job(job_id)
    return jsonify(job.to_dict()), 200


@schedules_bp.patch("/<job_id>")
def update_schedule(job_id: str):
    body = request.get_json(silent=True) or {}
    job = get_services().scheduler.update_job(job_id, body)
    return jsonify(job.to_dict()), 200


@schedules_bp.delete("/<job_id>")
def delete_schedule(job_id: str):
    if not get_services().scheduler.delete_job(job_id):
        raise NotFoundError(f"Scheduled job not found: {job_id}")
    return jsonify(message="deleted", id=job_id), 200


@schedules_bp.post("/<job_id>/run-now")
def run_schedule_now(job_id: str):
    scheduler = get_services().scheduler
    job = scheduler.get_job(job_id)
    scheduler.run_now(job.id)
    logger.info(f"Manual run queued for job {job.name} ({job.id})")
    return jsonify(message="queued", id=job.id), 202


@schedules_bp.get("/<job_id>/history")
def schedule_history(job_id: str):
    scheduler = get_services().scheduler
    scheduler.get_job(job_id)
    return jsonify(scheduler.get_history(job_id, limit=_limit())), 200
