from .actions import SUPPORTED_ACTIONS, ActionContext, ActionOutcome, ActionRegistry
from .engine import RuleEngine, validate_automation_rule

__all__ = ["SUPPORTED_ACTIONS", "ActionContext", "ActionOutcome", "ActionRegistry", "RuleEngine", "validate_automation_rule"]
