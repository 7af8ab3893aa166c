from .engine import STEP_TYPES, WorkflowEngine

__all__ = ["STEP_TYPES", "WorkflowEngine"]
