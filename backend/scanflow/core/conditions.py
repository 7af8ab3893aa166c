# scanflow/core/conditions.py
"""
Condition vocabulary shared by automation rules, notification rules and
workflow `condition` steps.

Operators:
    equals        value == threshold
    greater_than  value >  threshold   (numeric)
    less_than     value <  threshold   (numeric)
    contains      threshold in value   (strings: substring; lists: membership;
                                        a list threshold matches if ANY item is contained)
    in            value in threshold   (threshold must be a list/tuple/set or string)

Everything here is pure. An unknown operator is a configuration problem,
reported by `validate_condition`; at evaluation time it simply returns
False (the caller logs it).

Automation rules run against ScanResult documents, whose shape is
closed: SCAN_RESULT_FIELDS lists every path a rule may reference.
snake_case aliases are normalized to the canonical camelCase path.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from scanflow.errors import ValidationError

OPERATORS = ("equals", "greater_than", "less_than", "contains", "in")

_MISSING = object()

# Closed schema: every path a rule may reference on a ScanResult.
SCAN_RESULT_FIELDS = {
    "target": str,
    "scanId": str,
    "startedAt": str,
    "completedAt": str,
    "summary.securityScore": (int, float),
    "summary.riskLevel": str,
    "summary.totalFindings": int,
    "summary.criticalFindings": int,
    "summary.highFindings": int,
    "summary.mediumFindings": int,
    "summary.lowFindings": int,
}

FIELD_ALIASES = {
    "scan_id": "scanId",
    "started_at": "startedAt",
    "completed_at": "completedAt",
    "summary.security_score": "summary.securityScore",
    "summary.risk_level": "summary.riskLevel",
    "summary.total_findings": "summary.totalFindings",
    "summary.critical_findings": "summary.criticalFindings",
    "summary.high_findings": "summary.highFindings",
    "summary.medium_findings": "summary.mediumFindings",
    "summary.low_findings": "summary.lowFindings",
    # short forms
    "security_score": "summary.securityScore",
    "securityScore": "summary.securityScore",
    "risk_level": "summary.riskLevel",
    "riskLevel": "summary.riskLevel",
}


def canonical_field(path: str) -> Optional[str]:
    """Return the canonical ScanResult path, or None if it isn't in the schema."""
    if not path:
        return None
    path = FIELD_ALIASES.get(path, path)
    return path if path in SCAN_RESULT_FIELDS else None


def resolve_path(data: Any, path: str, default: Any = None) -> Any:
    """Walk a dotted path through nested dicts (and list indexes)."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            idx = int(part)
            current = current[idx] if idx < len(current) else _MISSING
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING:
            return default
    return current


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value))
    except (TypeError, ValueError):
        return None


def _contains(value: Any, needle: Any) -> bool:
    if value is None:
        return False
    if isinstance(needle, (list, tuple, set)):
        return any(_contains(value, n) for n in needle)
    if isinstance(value, str):
        return str(needle).lower() in value.lower()
    if isinstance(value, (list, tuple, set)):
        return needle in value
    if isinstance(value, dict):
        return needle in value
    return str(needle) in str(value)


def compare(operator: str, value: Any, threshold: Any) -> Optional[bool]:
    """
    Apply one operator. Returns None when the operator is unknown so the
    caller can tell "false" apart from "not understood".
    """
    if operator == "equals":
        if isinstance(value, str) and isinstance(threshold, str):
            return value.lower() == threshold.lower()
        return value == threshold

    if operator in ("greater_than", "less_than"):
        left, right = _as_number(value), _as_number(threshold)
        if left is None or right is None:
            return False
        return left > right if operator == "greater_than" else left < right

    if operator == "contains":
        return _contains(value, threshold)

    if operator == "in":
        if isinstance(threshold, str):
            return value is not None and str(value) in threshold
        if isinstance(threshold, (list, tuple, set)):
            return value in threshold
        return False

    return None


def evaluate_all(conditions: Iterable, data: Any) -> bool:
    """
    True when every condition holds against `data` (empty list → True).
    Unknown operators count as not satisfied.
    """
    for cond in conditions:
        result = compare(cond.operator, resolve_path(data, cond.field), cond.threshold)
        if not result:
            return False
    return True


def validate_condition(cond, *, closed_schema: bool) -> None:
    if not cond.field:
        raise ValidationError("condition.field is required")
    if cond.operator not in OPERATORS:
        raise ValidationError(
            f"Invalid operator '{cond.operator}'. Must be one of: {', '.join(OPERATORS)}"
        )
    if closed_schema and canonical_field(cond.field) is None:
        raise ValidationError(
            f"Unknown scan result field '{cond.field}'. "
            f"Must be one of: {', '.join(sorted(SCAN_RESULT_FIELDS))}"
        )
    if cond.operator == "in" and not isinstance(cond.threshold, (list, tuple, str)):
        raise ValidationError("operator 'in' requires a list threshold")
    if cond.operator in ("greater_than", "less_than") and _as_number(cond.threshold) is None:
        raise ValidationError(f"operator '{cond.operator}' requires a numeric threshold")
