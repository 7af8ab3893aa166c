"""Workflow engine: definitions, step execution, failures and cancellation."""

from __future__ import annotations

import time

import pytest

from scanflow.core.base import ExecutionStatus
from scanflow.errors import NotFoundError, ValidationError
from scanflow.store.base import HistoryStreams


def _scan(target):
    return {"type": "scan", "config": {"target": target}}


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_steps_run_in_order_and_fill_the_context(workflows, provider):
    provider.scores = {"a.com": 72}
    wf = workflows.create_workflow({
        "name": "Scan and check",
        "steps": [
            _scan("a.com"),
            {"type": "condition", "config": {"condition": {"field": "security_score", "operator": "greater_than",
                                                          "threshold": 50}}},
            {"type": "wait", "config": {"duration": 0}},
        ],
    })

    execution = workflows.execute(wf.id, {"requested_by": "ops"})

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.completed_at is not None
    assert [s.step_name for s in execution.steps_completed] == ["step_1", "step_2", "step_3"]
    assert all(s.success for s in execution.steps_completed)
    assert execution.context["requested_by"] == "ops"
    assert execution.context["security_score"] == 72
    assert execution.context["risk_level"] == "Low"
    assert execution.context["condition_result"] is True
    assert execution.context["wait_completed"] is True
    assert workflows.get_workflow(wf.id).execution_count == 1


def test_false_condition_does_not_stop_the_workflow(workflows):
    wf = workflows.create_workflow({
        "name": "Gate",
        "steps": [
            {"type": "condition", "config": {"conditions": [{"field": "score", "operator": "less_than",
                                                             "threshold": 10}]}},
            {"type": "wait", "config": {"seconds": 0}},
        ],
    })

    execution = workflows.execute(wf.id, {"score": 50})

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.context["condition_result"] is False


def test_first_failing_step_ends_the_execution(workflows, provider):
    provider.failing = {"b.com"}
    wf = workflows.create_workflow({
        "name": "Two scans",
        "steps": [_scan("a.com"), _scan("b.com"), {"type": "wait", "config": {"seconds": 0}}],
    })

    execution = workflows.execute(wf.id)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.failed_at is not None
    assert len(execution.steps_completed) == 2
    failed = execution.steps_completed[-1]
    assert failed.success is False
    assert failed.error == "RuntimeError: connection refused: b.com"
    assert execution.error == "Step 1 (step_2) failed: RuntimeError: connection refused: b.com"
    assert execution.context["target"] == "a.com"
    assert "wait_completed" not in execution.context
    assert provider.scanned_targets == ["a.com", "b.com"]
    assert workflows.get_workflow(wf.id).execution_count == 1


def test_scan_step_uses_context_target(workflows, provider):
    wf = workflows.create_workflow({"name": "Context scan", "steps": [{"type": "scan"}]})

    execution = workflows.execute(wf.id, {"target": "c.com"})

    assert execution.status == ExecutionStatus.COMPLETED
    assert provider.scanned_targets == ["c.com"]
    assert execution.context["scan_result"]["target"] == "c.com"


def test_scan_step_without_target_fails(workflows):
    wf = workflows.create_workflow({"name": "No target", "steps": [{"type": "scan"}]})

    execution = workflows.execute(wf.id)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.steps_completed[0].error == "No target in step config or context"


def test_notify_step_sends_through_dispatcher(workflows, senders):
    wf = workflows.create_workflow({
        "name": "Notify",
        "steps": [{"type": "notify", "config": {"channel": "slack", "data": {"workflow_name": "Notify"}}}],
    })

    execution = workflows.execute(wf.id)

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.context["notification_status"] == "sent"
    assert len(senders["slack"].deliveries) == 1
    assert senders["slack"].deliveries[0]["meta"]["type"] == "workflow_complete"


def test_notify_failure_fails_the_step(workflows, senders):
    senders["slack"].fail_with = "channel_not_found"
    wf = workflows.create_workflow({"name": "Notify", "steps": [{"type": "notify", "config": {"channel": "slack"}}]})

    execution = workflows.execute(wf.id)

    assert execution.status == ExecutionStatus.FAILED
    step = execution.steps_completed[0]
    assert step.output["notification_status"] == "failed"
    assert step.error == "slack: channel_not_found"


def test_action_step_runs_through_rule_engine(workflows, history):
    wf = workflows.create_workflow({
        "name": "Block",
        "steps": [{"type": "action", "config": {"action": {"type": "update_blocklist"}}}],
    })

    execution = workflows.execute(wf.id, {"target": "198.51.100.7"})

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.context["action_type"] == "update_blocklist"
    assert execution.context["action_output"] == {"added_indicators": ["198.51.100.7"], "applied": False}
    assert len(history.entries(HistoryStreams.ACTIONS)) == 1


@pytest.mark.parametrize(
    "steps",
    [
        [],
        [{"type": "teleport"}],
        [{"type": "wait", "config": {"seconds": -1}}],
        [{"type": "wait", "config": {"seconds": 7200}}],
        [{"type": "wait", "config": {"seconds": "soon"}}],
        [{"type": "condition", "config": {}}],
        [{"type": "condition", "config": {"condition": {"field": "x", "operator": "roughly", "threshold": 1}}}],
        [{"type": "action", "config": {"action": {"type": "launch_missiles"}}}],
        [{"type": "notify", "config": {}}],
        [{"type": "notify", "config": {"channel": "sms"}}],
        [{"type": "scan", "config": {"target": "  "}}],
    ],
)
def test_invalid_definitions_are_rejected(workflows, steps):
    with pytest.raises(ValidationError):
        workflows.create_workflow({"name": "Bad", "steps": steps})
    assert workflows.list_workflows() == []


def test_delete_cancels_running_execution(workflows):
    wf = workflows.create_workflow({
        "name": "Slow",
        "steps": [
            {"type": "condition", "config": {"condition": {"field": "x", "operator": "equals", "threshold": 1}}},
            {"type": "wait", "config": {"seconds": 30}},
            {"type": "wait", "config": {"seconds": 0}},
        ],
    })

    future = workflows.execute_async(wf.id, {"x": 1})
    assert _wait_until(lambda: any(e.steps_completed for e in workflows.list_executions(wf.id)))
    assert len(workflows.running_executions(wf.id)) == 1

    started = time.monotonic()
    assert workflows.delete_workflow(wf.id) is True
    execution = future.result(timeout=5)

    assert time.monotonic() - started < 5
    assert execution.status == ExecutionStatus.CANCELLED
    assert len(execution.steps_completed) == 1
    assert workflows.running_executions(wf.id) == []
    with pytest.raises(NotFoundError):
        workflows.get_workflow(wf.id)


def test_disabled_workflow_cannot_run(workflows):
    wf = workflows.create_workflow({"name": "Off", "enabled": False, "steps": [{"type": "wait",
                                                                             "config": {"seconds": 0}}]})
    with pytest.raises(ValidationError):
        workflows.execute(wf.id)


def test_unknown_workflow(workflows):
    with pytest.raises(NotFoundError):
        workflows.execute("workflow_missing")
    with pytest.raises(NotFoundError):
        workflows.execute_async("workflow_missing")
    with pytest.raises(NotFoundError):
        workflows.get_execution("exec_missing")
    assert workflows.delete_workflow("workflow_missing") is False


def test_executions_are_recorded(workflows, history):
    wf = workflows.create_workflow({"name": "Tiny", "steps": [{"type": "wait", "config": {"seconds": 0}}]})

    first = workflows.execute(wf.id)
    second = workflows.execute(wf.id)

    assert {e.execution_id for e in workflows.list_executions(wf.id)} == {first.execution_id, second.execution_id}
    assert workflows.get_execution(first.execution_id).status == ExecutionStatus.COMPLETED
    rows = history.entries(HistoryStreams.WORKFLOW_EXECUTIONS)
    assert [r["executionId"] for r in rows] == [first.execution_id, second.execution_id]
    assert workflows.get_workflow(wf.id).execution_count == 2


def test_finished_executions_leave_no_bookkeeping(workflows):
    wf = workflows.create_workflow({"name": "Tiny", "steps": [{"type": "wait", "config": {"seconds": 0}}]})

    workflows.execute(wf.id)

    assert workflows.running_executions(wf.id) == []
    assert wf.id not in workflows._active
