# scanflow/providers/http_provider.py
"""
HTTP scan provider: delegates scanning to a remote scan service.

    POST {base_url}/scans  {"target": ..., "options": {...}}
      → 200 {normalized result document}

The remote service does the actual reconnaissance; this class only moves
the request and validates the response shape.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import requests

from scanflow.errors import ProviderError

from .base import BaseScanProvider

logger = logging.getLogger(__name__)


class HttpScanProvider(BaseScanProvider):
    def __init__(self, base_url: str, token: str = "", timeout: int = 300):
        if not base_url:
            raise ValueError("HttpScanProvider requires a base_url")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "http"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": "Scanflow/1.0"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def execute(self, target: str, options: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = requests.post(
                f"{self.base_url}/scans",
                json={"target": target, "options": options},
                headers=self._headers(),
                timeout=int(options.get("timeout") or self.timeout),
            )
        except requests.RequestException as e:
            raise ProviderError(f"Scan service request failed: {str(e)[:200]}", target=target)

        if resp.status_code != 200:
            raise ProviderError(
                f"Scan service returned {resp.status_code}: {resp.text[:200]}",
                target=target,
            )

        try:
            body = resp.json()
        except ValueError:
            raise ProviderError("Scan service returned a non-JSON body", target=target)

        # Some deployments wrap the document: {"success": true, "data": {...}}
        if isinstance(body, dict) and "summary" not in body and isinstance(body.get("data"), dict):
            body = body["data"]
        return body
