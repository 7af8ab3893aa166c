# =============================================================================
# File: scanflow/workflows/engine.py
# Description: Sequential workflow execution with a shared context.
#
#   Step types:
#     scan       provider.run_scan(target)     → scan_result, target, security_score, risk_level
#     notify     dispatcher.send(...)          → notification_id, notification_status
#     wait       cancellable sleep             → wait_completed
#     condition  pure check over the context   → condition_result
#     action     rule engine action registry   → action_type, action_output
#
#   Steps run strictly in order. A successful step's output is merged into
#   the context before the next step starts. The first failing step is
#   recorded with success=False and ends the execution as failed; nothing
#   after it runs. Deleting the workflow sets the cancel token of every
#   running execution: a pending wait returns immediately and the
#   execution ends as cancelled with its recorded steps kept.
# =============================================================================

from __future__ import annotations

import copy
import logging
import threading
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Set

from scanflow.core.base import (
    ActionSpec,
    Condition,
    ExecutionStatus,
    NotificationStatus,
    StepRecord,
    Workflow,
    WorkflowExecution,
    WorkflowStep,
    now_utc,
)
from scanflow.core.conditions import evaluate_all, validate_condition
from scanflow.errors import NotFoundError, ScanflowError, ValidationError
from scanflow.rules.actions import SUPPORTED_ACTIONS, ActionContext
from scanflow.store.base import Collections, HistoryStore, HistoryStreams, Repository

logger = logging.getLogger(__name__)

STEP_TYPES = ("scan", "notify", "wait", "condition", "action")


class ExecutionCancelled(Exception):
    pass


def _wait_seconds(config: dict) -> float:
    """`seconds`, or `duration` in milliseconds. Default one second."""
    if "seconds" in config:
        return float(config["seconds"])
    return float(config.get("duration", 1000)) / 1000.0


def _step_conditions(config: dict) -> List[Condition]:
    raw = config.get("conditions")
    if raw is None and config.get("condition") is not None:
        raw = [config["condition"]]
    return [Condition.from_dict(c) for c in (raw or [])]


class WorkflowEngine:
    def __init__(
        self,
        repository: Repository,
        history: HistoryStore,
        provider=None,
        dispatcher=None,
        rule_engine=None,
        max_workers: int = 4,
        max_wait_seconds: float = 3600,
    ):
        self.repository = repository
        self.history = history
        self.provider = provider
        self.dispatcher = dispatcher
        self.rule_engine = rule_engine
        self.max_wait_seconds = max_wait_seconds
        self._pool = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="workflow")
        self._lock = threading.Lock()
        self._tokens: Dict[str, threading.Event] = {}
        self._active: Dict[str, Set[str]] = defaultdict(set)

    # ────────────────────────────────────────────────────────────
    # Definitions
    # ────────────────────────────────────────────────────────────

    def create_workflow(self, spec: Dict[str, Any]) -> Workflow:
        wf = Workflow.from_dict({k: v for k, v in (spec or {}).items() if k != "id"})
        wf.execution_count = 0
        self._validate(wf)
        self.repository.save(Collections.WORKFLOWS, wf)
        logger.info(f"Created workflow {wf.id} '{wf.name}' ({len(wf.steps)} steps)")
        return wf

    def get_workflow(self, workflow_id: str) -> Workflow:
        wf = self.repository.get(Collections.WORKFLOWS, workflow_id)
        if wf is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return wf

    def list_workflows(self) -> List[Workflow]:
        return sorted(self.repository.list(Collections.WORKFLOWS), key=lambda w: w.created_at)

    def delete_workflow(self, workflow_id: str) -> bool:
        existed = self.repository.delete(Collections.WORKFLOWS, workflow_id)
        with self._lock:
            running = list(self._active.get(workflow_id, ()))
            for execution_id in running:
                self._tokens[execution_id].set()
        if running:
            logger.info(f"Workflow {workflow_id} deleted; cancelling {len(running)} running execution(s)")
        elif existed:
            logger.info(f"Deleted workflow {workflow_id}")
        return existed

    def _validate(self, wf: Workflow) -> None:
        if not wf.name.strip():
            raise ValidationError("name is required")
        if not wf.steps:
            raise ValidationError("At least one step is required")

        for i, step in enumerate(wf.steps):
            if not step.name:
                step.name = f"step_{i + 1}"
            if step.type not in STEP_TYPES:
                raise ValidationError(
                    f"Step {i} has invalid type '{step.type}'. Must be one of: {', '.join(STEP_TYPES)}"
                )
            cfg = step.config

            if step.type == "wait":
                try:
                    seconds = _wait_seconds(cfg)
                except (TypeError, ValueError):
                    raise ValidationError(f"Step {i}: wait duration must be numeric")
                if not 0 <= seconds <= self.max_wait_seconds:
                    raise ValidationError(f"Step {i}: wait must be between 0 and {self.max_wait_seconds}s")

            elif step.type == "condition":
                conditions = _step_conditions(cfg)
                if not conditions:
                    raise ValidationError(f"Step {i}: condition step needs a condition")
                for cond in conditions:
                    validate_condition(cond, closed_schema=False)

            elif step.type == "action":
                action = ActionSpec.from_dict(cfg.get("action") or {})
                if action.type not in SUPPORTED_ACTIONS:
                    raise ValidationError(
                        f"Step {i}: unsupported action '{action.type}'. Must be one of: {', '.join(SUPPORTED_ACTIONS)}"
                    )

            elif step.type == "notify":
                channels = cfg.get("channels") or ([cfg["channel"]] if cfg.get("channel") else [])
                if not channels:
                    raise ValidationError(f"Step {i}: notify step needs a channel")
                ntype = cfg.get("type", "workflow_complete")
                if self.dispatcher is not None:
                    for ch in channels:
                        ch_type = ch if isinstance(ch, str) else ch.get("type", "")
                        if not self.dispatcher.templates.has(ch_type, ntype):
                            raise ValidationError(f"Step {i}: no {ch_type} template for '{ntype}'")

            elif step.type == "scan":
                target = cfg.get("target")
                if target is not None and (not isinstance(target, str) or not target.strip()):
                    raise ValidationError(f"Step {i}: scan target must be a non-empty string")

    # ────────────────────────────────────────────────────────────
    # Execution
    # ────────────────────────────────────────────────────────────

    def execute(self, workflow_id: str, initial_context: Optional[Dict[str, Any]] = None) -> WorkflowExecution:
        wf = self.get_workflow(workflow_id)
        if not wf.enabled:
            raise ValidationError(f"Workflow {workflow_id} is disabled")

        execution = WorkflowExecution(workflow_id=wf.id, context=copy.deepcopy(initial_context or {}))
        token = threading.Event()
        with self._lock:
            self._tokens[execution.execution_id] = token
            self._active[wf.id].add(execution.execution_id)
        self.repository.save(Collections.EXECUTIONS, execution)
        logger.info(f"Workflow {wf.id} execution {execution.execution_id} started")

        try:
            self._run(wf, execution, token)
        finally:
            with self._lock:
                self._tokens.pop(execution.execution_id, None)
                active = self._active.get(wf.id)
                if active is not None:
                    active.discard(execution.execution_id)
                    if not active:
                        del self._active[wf.id]

        self.repository.save(Collections.EXECUTIONS, execution)
        self.history.append(HistoryStreams.WORKFLOW_EXECUTIONS, execution.to_dict())
        self._count_execution(wf.id)
        logger.info(f"Workflow {wf.id} execution {execution.execution_id} {execution.status}")
        return execution

    def execute_async(self, workflow_id: str, initial_context: Optional[Dict[str, Any]] = None) -> "Future[WorkflowExecution]":
        self.get_workflow(workflow_id)
        return self._pool.submit(self.execute, workflow_id, initial_context)

    def _run(self, wf: Workflow, execution: WorkflowExecution, token: threading.Event) -> None:
        for index, step in enumerate(wf.steps):
            if token.is_set():
                self._cancel(execution, index)
                return

            try:
                success, output, error = self._run_step(step, execution.context, token)
            except ExecutionCancelled:
                self._cancel(execution, index)
                return
            except ScanflowError as e:
                success, output, error = False, {}, e.message
            except Exception as e:
                logger.exception(f"Step {index} of workflow {wf.id} crashed: {e}")
                success, output, error = False, {}, f"{type(e).__name__}: {str(e)[:200]}"

            execution.steps_completed.append(StepRecord(
                step_index=index,
                step_name=step.name or f"step_{index + 1}",
                type=step.type,
                success=success,
                output=output,
                completed_at=now_utc(),
                error=error,
            ))

            if not success:
                execution.status = ExecutionStatus.FAILED
                execution.failed_at = now_utc()
                execution.error = f"Step {index} ({step.name or step.type}) failed: {error}"
                return

            execution.context.update(output)
            self.repository.save(Collections.EXECUTIONS, execution)

        execution.status = ExecutionStatus.COMPLETED
        execution.completed_at = now_utc()

    @staticmethod
    def _cancel(execution: WorkflowExecution, index: int) -> None:
        execution.status = ExecutionStatus.CANCELLED
        execution.failed_at = now_utc()
        execution.error = f"Cancelled before step {index}: workflow deleted"

    def _count_execution(self, workflow_id: str) -> None:
        with self._lock:
            wf = self.repository.get(Collections.WORKFLOWS, workflow_id)
            if wf is None:
                return
            wf.execution_count += 1
            self.repository.save(Collections.WORKFLOWS, wf)

    # ── step handlers: (success, output, error) ─────────────────

    def _run_step(self, step: WorkflowStep, context: Dict[str, Any], token: threading.Event):
        handler = getattr(self, f"_step_{step.type}", None)
        if handler is None:
            return False, {}, f"Unknown step type: {step.type}"
        return handler(step.config or {}, context, token)

    def _step_wait(self, config: dict, context: dict, token: threading.Event):
        seconds = _wait_seconds(config)
        if token.wait(timeout=seconds):
            raise ExecutionCancelled()
        return True, {"wait_completed": True}, None

    def _step_condition(self, config: dict, context: dict, token: threading.Event):
        result = evaluate_all(_step_conditions(config), context)
        return True, {"condition_result": bool(result)}, None

    def _step_scan(self, config: dict, context: dict, token: threading.Event):
        if self.provider is None:
            return False, {}, "No scan provider configured"
        target = config.get("target") or context.get("target")
        if not target:
            return False, {}, "No target in step config or context"

        result = self.provider.run_scan(target, dict(config.get("options") or {}))
        doc = result.to_dict()
        return True, {
            "target": result.target,
            "scan_result": doc,
            "security_score": result.summary.security_score,
            "risk_level": result.summary.risk_level,
        }, None

    def _step_notify(self, config: dict, context: dict, token: threading.Event):
        if self.dispatcher is None:
            return False, {}, "No notification dispatcher configured"

        ntype = config.get("type", "workflow_complete")
        data = {**context, **(config.get("data") or {})}
        channels = config.get("channels") or [config.get("channel")]

        sent, failed = [], []
        for ch in channels:
            if isinstance(ch, str):
                ch = {"type": ch, "options": config.get("options") or {}}
            n = self.dispatcher.send(ntype, ch.get("type", ""), data, ch.get("options"))
            (sent if n.status == NotificationStatus.SENT else failed).append(n)

        output = {
            "notification_id": (sent or failed)[0].id if (sent or failed) else None,
            "notification_ids": [n.id for n in sent + failed],
            "notification_status": NotificationStatus.FAILED if failed else NotificationStatus.SENT,
        }
        if failed:
            return False, output, "; ".join(f"{n.channel}: {n.error}" for n in failed)
        return True, output, None

    def _step_action(self, config: dict, context: dict, token: threading.Event):
        if self.rule_engine is None:
            return False, {}, "No rule engine configured"

        action = ActionSpec.from_dict(config.get("action") or {})
        if config.get("config"):
            action.config = {**action.config, **config["config"]}

        ctx = ActionContext(
            target=config.get("target") or context.get("target") or "",
            rule_name=config.get("name") or "workflow",
            result=context.get("scan_result"),
            data=context,
        )
        outcome = self.rule_engine.dispatch_action(action, ctx)
        output = {"action_type": action.type, "action_output": outcome.output}
        if not outcome.success:
            return False, output, outcome.error
        return True, output, None

    # ────────────────────────────────────────────────────────────
    # Executions
    # ────────────────────────────────────────────────────────────

    def get_execution(self, execution_id: str) -> WorkflowExecution:
        execution = self.repository.get(Collections.EXECUTIONS, execution_id)
        if execution is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        return execution

    def list_executions(self, workflow_id: Optional[str] = None) -> List[WorkflowExecution]:
        rows = self.repository.list(Collections.EXECUTIONS)
        if workflow_id:
            rows = [e for e in rows if e.workflow_id == workflow_id]
        return sorted(rows, key=lambda e: e.started_at, reverse=True)

    def running_executions(self, workflow_id: str) -> List[str]:
        with self._lock:
            return sorted(self._active.get(workflow_id, ()))

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
