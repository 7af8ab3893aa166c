from .base import BaseScanProvider, UnconfiguredScanProvider, normalize_scan_result
from .http_provider import HttpScanProvider

__all__ = ["BaseScanProvider", "HttpScanProvider", "UnconfiguredScanProvider", "normalize_scan_result"]
