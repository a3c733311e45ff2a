"""
Authoritative usage sync.

Pulls ground-truth token counts from the proxy's management API.
"""

from .client import UsageClient
from .report import SyncError, UsageReport, parse_usage_report

__all__ = ["SyncError", "UsageClient", "UsageReport", "parse_usage_report"]
