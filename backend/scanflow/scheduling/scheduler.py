# scanflow/scheduling/scheduler.py
"""
Cron-driven scan scheduler
──────────────────────────
Each ScheduledJob gets one APScheduler cron job (id = job id,
max_instances=1). On every fire:

    1. scan every target through the provider, at most
       `max_concurrent_scans` at a time; excluded targets and provider
       failures become failed entries, never exceptions
    2. run the rule engine on every successful result
    3. send `scan_complete` notifications when the job asks for them,
       and let notification rules subscribed to scan_complete fire
    4. append the batch to the job_runs history
    5. bump run_count by exactly one, set last_run, recompute next_run

Timer handles are only touched under the job's own lock. A JobHandle
carries the cancel token: delete_job / update_job cancel the old handle,
so a tick that was already running when its job was deleted records its
scans but leaves next_run unset.

Usage:
    scheduler = Scheduler(repository, history, provider, rule_engine, ...)
    scheduler.start()
    job_id = scheduler.create_job({...})
"""
from __future__ import annotations

import copy
import logging
import threading
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from scanflow.core import cron
from scanflow.core.base import (
    NotificationChannel,
    ScanResult,
    ScheduledJob,
    TargetOutcome,
    camel_keys,
    iso,
    now_utc,
)
from scanflow.errors import NotFoundError, ProviderError, TimerRaceError, ValidationError
from scanflow.rules.engine import validate_automation_rule
from scanflow.store.base import Collections, HistoryStore, HistoryStreams, Repository

logger = logging.getLogger(__name__)


@dataclass
class JobHandle:
    """The live timer of one job plus its cancel token."""
    job_id: str
    cancelled: threading.Event = field(default_factory=threading.Event)

    def cancel(self) -> None:
        self.cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


@dataclass
class TickReport:
    job_id: str
    started_at: datetime
    completed_at: datetime
    outcomes: List[TargetOutcome]
    actions: List[Dict[str, Any]] = field(default_factory=list)
    notifications: List[str] = field(default_factory=list)
    run_count: Optional[int] = None
    next_run: Optional[datetime] = None

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    def to_dict(self) -> dict:
        if self.failure_count == 0:
            status = "completed"
        elif self.success_count == 0:
            status = "failed"
        else:
            status = "partial"
        return {
            "jobId": self.job_id,
            "status": status,
            "startedAt": iso(self.started_at),
            "completedAt": iso(self.completed_at),
            "results": [o.to_dict() for o in self.outcomes],
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "actions": self.actions,
            "notifications": self.notifications,
        }


def scan_notification_data(result: ScanResult, job: ScheduledJob) -> Dict[str, Any]:
    """Flatten a result into the fields the scan_complete templates use."""
    s = result.summary
    return {
        "job_id": job.id,
        "job_name": job.name,
        "target": result.target,
        "scan_id": result.scan_id,
        "security_score": s.security_score,
        "risk_level": s.risk_level,
        "total_findings": s.total_findings,
        "critical_findings": s.critical_findings,
        "high_findings": s.high_findings,
        "medium_findings": s.medium_findings,
        "low_findings": s.low_findings,
        "completed_at": iso(result.completed_at),
        "summary": s.to_dict(),
    }


class Scheduler:
    def __init__(
        self,
        repository: Repository,
        history: HistoryStore,
        provider,
        rule_engine,
        dispatcher=None,
        config_store=None,
        scheduler: Optional[BackgroundScheduler] = None,
        max_concurrent_scans: int = 5,
        timezone: str = "UTC",
    ):
        self.repository = repository
        self.history = history
        self.provider = provider
        self.rule_engine = rule_engine
        self.dispatcher = dispatcher
        self.config_store = config_store
        self.timezone = timezone
        self.max_concurrent_scans = max(1, int(max_concurrent_scans))
        self._aps = scheduler or BackgroundScheduler(daemon=True, timezone=timezone)

        self._handles: Dict[str, JobHandle] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._running: set = set()
        self._running_guard = threading.Lock()
        self._manual = ThreadPoolExecutor(max_workers=2, thread_name_prefix="run-now")

    # ────────────────────────────────────────────────────────────
    # Lifecycle
    # ────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Arm every stored job that has no live timer yet, then start APScheduler."""
        armed = 0
        for job in self.repository.list(Collections.JOBS):
            with self._lock_for(job.id):
                if job.id in self._handles:
                    continue
                try:
                    self._arm(job)
                except ValidationError as e:
                    logger.error(f"Job {job.id} has an invalid schedule, not armed: {e.message}")
                    job.next_run = None
                self.repository.save(Collections.JOBS, job)
                armed += 1 if job.id in self._handles else 0

        if not self._aps.running:
            self._aps.start()
        logger.info(f"Scheduler started ({armed} job(s) armed)")

    def shutdown(self, wait: bool = False) -> None:
        if self._aps.running:
            self._aps.shutdown(wait=wait)
        self._manual.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    # ────────────────────────────────────────────────────────────
    # CRUD
    # ────────────────────────────────────────────────────────────

    def create_job(self, spec: Dict[str, Any]) -> str:
        job = ScheduledJob.from_dict({k: v for k, v in (spec or {}).items() if k != "id"})
        job.run_count = 0
        job.last_run = None
        self._validate(job)

        with self._lock_for(job.id):
            self._arm(job)
            self.repository.save(Collections.JOBS, job)

        logger.info(f"Created job {job.id} '{job.name}' ({job.cron_expression}, {len(job.targets)} target(s))")
        return job.id

    def update_job(self, job_id: str, patch: Dict[str, Any]) -> ScheduledJob:
        if not self.repository.exists(Collections.JOBS, job_id):
            raise NotFoundError(f"Job {job_id} not found")

        with self._lock_for(job_id):
            current = self.repository.get(Collections.JOBS, job_id)
            if current is None:
                raise NotFoundError(f"Job {job_id} not found")

            merged = current.to_dict()
            merged.update(camel_keys(patch))
            for owned in ("id", "runCount", "lastRun", "nextRun", "createdAt"):
                merged[owned] = current.to_dict()[owned]
            updated = ScheduledJob.from_dict(merged)
            self._validate(updated)
            updated.updated_at = now_utc()

            # stop-then-start under the lock: never two live timers
            self._disarm(job_id)
            self._arm(updated)
            self.repository.save(Collections.JOBS, updated)

        logger.info(f"Updated job {job_id} ({updated.cron_expression}, enabled={updated.enabled})")
        return updated

    def delete_job(self, job_id: str) -> bool:
        with self._lock_for(job_id):
            self._disarm(job_id)
            existed = self.repository.delete(Collections.JOBS, job_id)
        self._drop_lock(job_id)
        if existed:
            logger.info(f"Deleted job {job_id}")
        return existed

    def get_job(self, job_id: str) -> ScheduledJob:
        job = self.repository.get(Collections.JOBS, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def list_jobs(self) -> List[ScheduledJob]:
        return sorted(self.repository.list(Collections.JOBS), key=lambda j: j.created_at)

    def get_history(self, job_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self.history.entries(HistoryStreams.JOB_RUNS, {"jobId": job_id}, limit=limit)
        return list(reversed(rows))

    def active_timers(self) -> List[str]:
        return [j.id for j in self._aps.get_jobs()]

    def _validate(self, job: ScheduledJob) -> None:
        if not job.name.strip():
            raise ValidationError("name is required")
        if not isinstance(job.targets, list):
            raise ValidationError("targets must be a list of hostnames or IPs")
        if not job.targets:
            raise ValidationError("At least one target is required")
        for target in job.targets:
            if not isinstance(target, str) or not target.strip():
                raise ValidationError(f"Invalid target: {target!r}")
        job.targets = [t.strip() for t in job.targets]

        cron.validate(job.cron_expression)

        for rule in job.automation_rules:
            validate_automation_rule(rule)

        settings = job.notification_settings or {}
        for ch in settings.get("channels") or []:
            channel = NotificationChannel.from_dict(ch)
            if self.dispatcher is not None and channel.type not in self.dispatcher.senders:
                raise ValidationError(f"Unknown notification channel '{channel.type}'")

        profile_id = (job.scan_options or {}).get("profile")
        if profile_id and self.config_store is not None:
            self.config_store.get_profile(profile_id)

    # ────────────────────────────────────────────────────────────
    # Timer handles (caller holds the job lock)
    # ────────────────────────────────────────────────────────────

    def _lock_for(self, job_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = threading.Lock()
            return lock

    def _drop_lock(self, job_id: str) -> None:
        # only once the job is gone and nobody holds its lock
        with self._locks_guard:
            lock = self._locks.get(job_id)
            if lock is None or lock.locked():
                return
            if not self.repository.exists(Collections.JOBS, job_id):
                del self._locks[job_id]

    def _assert_locked(self, job_id: str) -> None:
        if not self._lock_for(job_id).locked():
            raise TimerRaceError(f"Timer for job {job_id} touched without holding its lock")

    def _arm(self, job: ScheduledJob) -> None:
        self._assert_locked(job.id)
        if not job.enabled:
            job.next_run = None
            return

        trigger = cron.build_trigger(job.cron_expression, self.timezone)
        self._aps.add_job(
            self._fire,
            trigger=trigger,
            args=[job.id],
            id=job.id,
            name=job.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        self._handles[job.id] = JobHandle(job.id)
        job.next_run = cron.next_run(job.cron_expression, now_utc(), self.timezone)

    def _disarm(self, job_id: str) -> None:
        self._assert_locked(job_id)
        handle = self._handles.pop(job_id, None)
        if handle is not None:
            handle.cancel()
        try:
            self._aps.remove_job(job_id)
        except JobLookupError:
            pass

    # ────────────────────────────────────────────────────────────
    # Ticks
    # ────────────────────────────────────────────────────────────

    def _fire(self, job_id: str) -> None:
        """APScheduler callback. Nothing may escape into the scheduler thread."""
        try:
            self.run_tick(job_id)
        except Exception as e:
            logger.exception(f"Tick for job {job_id} crashed: {e}")

    def run_now(self, job_id: str) -> "Future[Optional[TickReport]]":
        self.get_job(job_id)
        return self._manual.submit(self.run_tick, job_id)

    def run_tick(self, job_id: str) -> Optional[TickReport]:
        with self._running_guard:
            if job_id in self._running:
                logger.warning(f"Job {job_id} is still running, skipping this fire")
                return None
            self._running.add(job_id)

        try:
            stored = self.repository.get(Collections.JOBS, job_id)
            if stored is None:
                logger.warning(f"Tick for unknown job {job_id}, ignoring")
                return None

            # Work on a snapshot; the stored job is only written back under the lock
            job = copy.deepcopy(stored)
            handle = self._handles.get(job_id)
            started = now_utc()
            logger.info(f"Job {job_id} '{job.name}' tick started ({len(job.targets)} target(s))")

            outcomes = self._scan_targets(job)

            actions = []
            notifications = []
            for outcome in outcomes:
                if not outcome.success:
                    continue
                for action in self.rule_engine.check_triggers(job, outcome.result):
                    actions.append(action.to_dict())
                notifications.extend(self._notify(job, outcome.result))

            report = TickReport(
                job_id=job_id,
                started_at=started,
                completed_at=now_utc(),
                outcomes=outcomes,
                actions=actions,
                notifications=notifications,
            )
            entry = report.to_dict()
            entry["jobName"] = job.name
            self.history.append(HistoryStreams.JOB_RUNS, entry)

            self._finish_tick(job, handle, report)
            logger.info(
                f"Job {job_id} tick finished: {report.success_count} ok, {report.failure_count} failed, "
                f"{len(actions)} action(s)"
            )
            return report
        finally:
            with self._running_guard:
                self._running.discard(job_id)

    def _finish_tick(self, job: ScheduledJob, handle: Optional[JobHandle], report: TickReport) -> None:
        triggered = Counter(a["ruleId"] for a in report.actions if a.get("jobId") == job.id)

        try:
            with self._lock_for(job.id):
                current = self.repository.get(Collections.JOBS, job.id)
                if current is None:
                    logger.info(f"Job {job.id} was deleted during its tick; results recorded, no further runs")
                    return

                current.run_count += 1
                current.last_run = report.started_at
                for rule in current.automation_rules:
                    if triggered.get(rule.id):
                        rule.triggered_count += triggered[rule.id]
                        rule.last_triggered = report.completed_at

                live = self._handles.get(job.id)
                if live is not None and not live.is_cancelled and current.enabled:
                    current.next_run = cron.next_run(current.cron_expression, now_utc(), self.timezone)
                elif handle is not None and handle.is_cancelled and live is None:
                    current.next_run = None

                self.repository.save(Collections.JOBS, current)
                report.run_count = current.run_count
                report.next_run = current.next_run
        finally:
            self._drop_lock(job.id)

    def _scan_options(self, job: ScheduledJob) -> Dict[str, Any]:
        options = dict(job.scan_options or {})
        profile_id = options.get("profile")
        if profile_id and self.config_store is not None:
            try:
                profile = self.config_store.record_profile_usage(profile_id)
                options = {**profile.config, **options}
            except NotFoundError:
                logger.warning(f"Job {job.id} references unknown scan profile '{profile_id}'")
        return options

    def _scan_targets(self, job: ScheduledJob) -> List[TargetOutcome]:
        outcomes: Dict[int, TargetOutcome] = {}
        pending = []
        for i, target in enumerate(job.targets):
            verdict = self.config_store.should_exclude_target(target) if self.config_store else {"excluded": False}
            if verdict.get("excluded"):
                logger.info(f"Job {job.id}: skipping {target} ({verdict.get('reason')})")
                outcomes[i] = TargetOutcome(target=target, success=False,
                                            error=f"target excluded: {verdict.get('reason')}")
            else:
                pending.append((i, target))

        if pending:
            options = self._scan_options(job)
            workers = min(self.max_concurrent_scans, len(pending))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"scan-{job.id[-6:]}") as pool:
                futures = {pool.submit(self._scan_one, target, options): (i, target) for i, target in pending}
                for fut in as_completed(futures):
                    i, _ = futures[fut]
                    outcomes[i] = fut.result()

        return [outcomes[i] for i in range(len(job.targets))]

    def _scan_one(self, target: str, options: Dict[str, Any]) -> TargetOutcome:
        try:
            result = self.provider.run_scan(target, options)
            return TargetOutcome(target=target, success=True, result=result)
        except ProviderError as e:
            logger.warning(f"Scan of {target} failed: {e.message}")
            return TargetOutcome(target=target, success=False, error=e.message)
        except Exception as e:
            logger.exception(f"Unexpected error scanning {target}: {e}")
            return TargetOutcome(target=target, success=False, error=f"{type(e).__name__}: {str(e)[:200]}")

    def _notify(self, job: ScheduledJob, result: ScanResult) -> List[str]:
        if self.dispatcher is None:
            return []

        data = scan_notification_data(result, job)
        sent = []
        settings = job.notification_settings or {}
        if settings.get("enabled"):
            for ch in settings.get("channels") or []:
                channel = NotificationChannel.from_dict(ch)
                sent.append(self.dispatcher.send("scan_complete", channel.type, data, channel.options).id)
        for n in self.dispatcher.process_trigger("scan_complete", data):
            sent.append(n.id)
        return sent
