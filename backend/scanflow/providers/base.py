# scanflow/providers/base.py
"""
Scan provider contract.

The automation core treats scanning as a black box. A provider takes a
target plus options and returns a normalized ScanResult:

    {
        "target": "example.com",
        "summary": {
            "securityScore": 0..100, "riskLevel": "Low|Medium|High|Critical",
            "totalFindings": n, "criticalFindings": n, "highFindings": n,
            "mediumFindings": n, "lowFindings": n,
        },
        "startedAt": iso8601, "completedAt": iso8601,
    }

To add a provider:
    1. Subclass BaseScanProvider
    2. Implement `execute(target, options)` returning a ScanResult or a
       raw dict in the shape above
    3. Call `run_scan()`, never `execute()` directly

`run_scan()` guarantees that the caller either gets a validated
ScanResult or a ProviderError. Any other exception raised inside a
provider is wrapped, so one target's failure can be isolated by the
scheduler without special-casing provider bugs.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

from scanflow.core.base import ScanResult, ScanSummary, new_id, now_utc, parse_dt
from scanflow.errors import ProviderError

logger = logging.getLogger(__name__)

RISK_LEVELS = ("Low", "Medium", "High", "Critical")

_COUNT_FIELDS = (
    "totalFindings",
    "criticalFindings",
    "highFindings",
    "mediumFindings",
    "lowFindings",
)


def risk_level_for(summary: ScanSummary) -> str:
    """Derive a risk level when the provider doesn't report one."""
    if summary.critical_findings > 0 or summary.security_score < 40:
        return "Critical"
    if summary.high_findings > 0 or summary.security_score < 60:
        return "High"
    if summary.medium_findings > 0 or summary.security_score < 80:
        return "Medium"
    return "Low"


def normalize_scan_result(raw: Union[ScanResult, Dict[str, Any]], target: str) -> ScanResult:
    """
    Validate a provider's output and coerce it into a ScanResult.
    Raises ProviderError when the document is not in the normalized shape.
    """
    if isinstance(raw, ScanResult):
        data = raw.to_dict()
    elif isinstance(raw, dict):
        data = raw
    else:
        raise ProviderError(f"Provider returned {type(raw).__name__}, expected a result document", target=target)

    summary_raw = data.get("summary")
    if not isinstance(summary_raw, dict):
        raise ProviderError("Result document has no summary", target=target)

    summary = ScanSummary.from_dict(summary_raw)

    try:
        score = float(summary.security_score)
    except (TypeError, ValueError):
        raise ProviderError(f"securityScore is not numeric: {summary.security_score!r}", target=target)
    if not 0 <= score <= 100:
        raise ProviderError(f"securityScore out of range 0..100: {score}", target=target)
    summary.security_score = int(score) if score.is_integer() else score

    for name in _COUNT_FIELDS:
        snake = "".join("_" + c.lower() if c.isupper() else c for c in name)
        value = getattr(summary, snake)
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ProviderError(f"{name} must be a non-negative integer, got {value!r}", target=target)

    if summary.risk_level not in RISK_LEVELS:
        # Accept case variations ("high" → "High"), derive anything else
        fixed = str(summary.risk_level or "").capitalize()
        summary.risk_level = fixed if fixed in RISK_LEVELS else risk_level_for(summary)

    try:
        started = parse_dt(data.get("startedAt") or data.get("started_at"))
        completed = parse_dt(data.get("completedAt") or data.get("completed_at"))
    except ValueError as e:
        raise ProviderError(f"Invalid timestamp in result document: {e}", target=target)

    completed = completed or now_utc()
    started = started or completed

    return ScanResult(
        target=data.get("target") or target,
        summary=summary,
        started_at=started,
        completed_at=completed,
        scan_id=data.get("scanId") or data.get("scan_id") or new_id("scan"),
    )


class BaseScanProvider(ABC):
    """Abstract base for scan providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def execute(self, target: str, options: Dict[str, Any]) -> Union[ScanResult, Dict[str, Any]]:
        """Run the scan. May raise anything; run_scan() wraps it."""
        ...

    def run_scan(self, target: str, options: Optional[Dict[str, Any]] = None) -> ScanResult:
        """
        Execute the provider with timing and error normalization.

        DO NOT OVERRIDE THIS METHOD. Override `execute()` instead.
        """
        options = options or {}
        start = time.monotonic()
        try:
            raw = self.execute(target, options)
        except ProviderError:
            raise
        except Exception as e:
            logger.warning("Provider '%s' failed for %s: %s", self.name, target, e)
            raise ProviderError(f"{type(e).__name__}: {str(e)[:300]}", target=target) from e

        result = normalize_scan_result(raw, target)
        logger.debug(
            "Provider '%s' scanned %s in %.2fs (score=%s)",
            self.name, target, time.monotonic() - start, result.summary.security_score,
        )
        return result


class UnconfiguredScanProvider(BaseScanProvider):
    """Stand-in used when SCAN_PROVIDER_URL is unset. Every scan fails cleanly."""

    @property
    def name(self) -> str:
        return "unconfigured"

    def execute(self, target: str, options: Dict[str, Any]) -> Dict[str, Any]:
        raise ProviderError("No scan provider configured (set SCAN_PROVIDER_URL)", target=target)
