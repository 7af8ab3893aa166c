# scanflow/rules/engine.py
"""
Rule engine: evaluates automation rules against a ScanResult and
dispatches the actions of the rules that hold.

    evaluate(rule, result)       pure, no side effects
    check_triggers(job, result)  every enabled rule of the job plus every
                                 enabled global rule; each rule that holds
                                 is marked triggered and dispatched once
    dispatch_action(action, ctx) one registry call → ActionOutcome

Rules stay counted as triggered when their action is unknown or fails.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, List, Optional, Union

from scanflow.core.base import ActionSpec, AutomationRule, ScanResult, ScheduledJob, now_utc
from scanflow.core.conditions import canonical_field, compare, resolve_path, validate_condition
from scanflow.errors import ActionError, ActionNotSupportedError, ValidationError
from scanflow.store.base import Collections, HistoryStore, HistoryStreams, Repository

from .actions import SUPPORTED_ACTIONS, ActionContext, ActionOutcome, ActionRegistry

logger = logging.getLogger(__name__)


def _as_document(result: Union[ScanResult, dict]) -> dict:
    return result.to_dict() if isinstance(result, ScanResult) else (result or {})


def validate_automation_rule(rule: AutomationRule) -> None:
    """Reject a rule at configuration time. Field paths must be in the ScanResult schema."""
    if not rule.name.strip():
        raise ValidationError("Automation rule name is required")
    validate_condition(rule.condition, closed_schema=True)
    rule.condition.field = canonical_field(rule.condition.field)
    if rule.action.type not in SUPPORTED_ACTIONS:
        raise ValidationError(
            f"Unsupported action '{rule.action.type}'. Must be one of: {', '.join(SUPPORTED_ACTIONS)}"
        )


class RuleEngine:
    def __init__(
        self,
        actions: ActionRegistry,
        history: Optional[HistoryStore] = None,
        repository: Optional[Repository] = None,
    ):
        self.actions = actions
        self.history = history
        self.repository = repository
        self._lock = threading.Lock()

    def evaluate(self, rule: AutomationRule, result: Union[ScanResult, dict]) -> bool:
        cond = rule.condition
        path = canonical_field(cond.field)
        if path is None:
            logger.warning(f"Rule '{rule.name}' references unknown field '{cond.field}'")
            return False

        value = resolve_path(_as_document(result), path)
        matched = compare(cond.operator, value, cond.threshold)
        if matched is None:
            logger.warning(f"Rule '{rule.name}' uses unknown operator '{cond.operator}'")
            return False
        return matched

    def check_triggers(self, job: Optional[ScheduledJob], result: Union[ScanResult, dict]) -> List[ActionOutcome]:
        doc = _as_document(result)
        outcomes: List[ActionOutcome] = []

        for rule in (job.automation_rules if job else []):
            if rule.enabled and self.evaluate(rule, doc):
                rule.triggered_count += 1
                rule.last_triggered = now_utc()
                outcomes.append(self._fire(rule, doc, job))

        for rule in self._global_rules():
            if self.evaluate(rule, doc):
                self._mark_global_triggered(rule.id)
                outcomes.append(self._fire(rule, doc, job))

        return outcomes

    def dispatch_action(self, action: ActionSpec, context: ActionContext) -> ActionOutcome:
        outcome = ActionOutcome(
            action=action.type,
            success=False,
            target=context.target,
            rule_id=context.rule_id,
            rule_name=context.rule_name,
            job_id=context.job_id,
        )
        try:
            outcome.output = self.actions.execute(action, context)
            outcome.success = True
            logger.info(f"Action {action.type} completed for {context.target}")
        except ActionNotSupportedError as e:
            outcome.error = e.message
            logger.warning(f"Rule '{context.rule_name}': {e.message}")
        except ActionError as e:
            outcome.error = e.message
            logger.error(f"Action {action.type} failed for {context.target}: {e.message}")

        if self.history is not None:
            self.history.append(HistoryStreams.ACTIONS, outcome.to_dict())
        return outcome

    # ────────────────────────────────────────────────────────────

    def _fire(self, rule: AutomationRule, doc: dict, job: Optional[ScheduledJob]) -> ActionOutcome:
        logger.info(f"Rule '{rule.name}' triggered for {doc.get('target')}")
        ctx = ActionContext(
            target=doc.get("target") or "",
            rule_name=rule.name,
            rule_id=rule.id,
            job_id=job.id if job else None,
            result=doc,
        )
        return self.dispatch_action(rule.action, ctx)

    def _global_rules(self) -> List[AutomationRule]:
        if self.repository is None:
            return []
        return [r for r in self.repository.list(Collections.AUTOMATION_RULES) if r.enabled]

    def _mark_global_triggered(self, rule_id: str) -> None:
        with self._lock:
            rule: Any = self.repository.get(Collections.AUTOMATION_RULES, rule_id)
            if rule is None:
                return
            rule.triggered_count += 1
            rule.last_triggered = now_utc()
            self.repository.save(Collections.AUTOMATION_RULES, rule)
