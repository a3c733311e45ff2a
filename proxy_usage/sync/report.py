"""
Usage report parsing.

Validates the proxy's management usage payload and converts it into
normalized series and per-model totals.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from proxy_usage.core.pricing import estimate_request_cost
from proxy_usage.storage.models import ModelStats, TimeSeriesPoint

logger = logging.getLogger(__name__)

_BARE_HOUR_RE = re.compile(r"\d{2}")


class SyncError(Exception):
    """Raised when an authoritative sync cannot be completed.

    Nothing is merged when this is raised.
    """


@dataclass
class UsageReport:
    """Authoritative usage figures reported by the proxy."""
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    total_requests: int = 0
    estimated_cost: float = 0.0
    model_stats: Dict[str, ModelStats] = field(default_factory=dict)
    requests_by_day: List[TimeSeriesPoint] = field(default_factory=list)
    tokens_by_day: List[TimeSeriesPoint] = field(default_factory=list)
    requests_by_hour: List[TimeSeriesPoint] = field(default_factory=list)
    tokens_by_hour: List[TimeSeriesPoint] = field(default_factory=list)


def _count(value: Any) -> Optional[int]:
    """Return a non-negative integer count, or None for anything else."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def _object(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def hour_label(key: str, now: datetime) -> str:
    """Expand a bare "HH" hour key to "YYYY-MM-DDTHH".

    The proxy reports hours without a date. Hours later than the current
    hour cannot belong to today yet, so they are attributed to the previous
    day. Keys that already carry a date pass through unchanged.
    """
    if not _BARE_HOUR_RE.fullmatch(key):
        return key
    day = now
    if int(key) > now.hour:
        day = now - timedelta(days=1)
        logger.debug("Attributing hour %s to previous day %s", key, day.date())
    return f"{day:%Y-%m-%d}T{key}"


def _parse_series(raw: Any, now: Optional[datetime] = None) -> List[TimeSeriesPoint]:
    points: Dict[str, int] = {}
    for key, value in _object(raw).items():
        count = _count(value)
        if count is None:
            continue
        label = hour_label(str(key), now) if now is not None else str(key)
        points[label] = points.get(label, 0) + count
    return [TimeSeriesPoint(label=label, value=value) for label, value in sorted(points.items())]


def parse_usage_report(payload: Any, now: Optional[datetime] = None) -> UsageReport:
    """Convert a usage endpoint payload into a UsageReport.

    Args:
        payload: Decoded JSON body of the usage endpoint
        now: Reference time for hour labels (defaults to local now)

    Returns:
        Parsed UsageReport

    Raises:
        SyncError: If the payload lacks a "usage" object
    """
    if now is None:
        now = datetime.now()
    if not isinstance(payload, dict):
        raise SyncError("Usage response is not a JSON object")
    usage = payload.get("usage")
    if not isinstance(usage, dict):
        raise SyncError("Missing 'usage' field in response")
    apis = usage.get("apis", {})
    if apis is not None and not isinstance(apis, dict):
        raise SyncError("'usage.apis' must be an object")

    report = UsageReport()
    for api_data in _object(apis).values():
        for model_name, model_data in _object(_object(api_data).get("models")).items():
            model_data = _object(model_data)
            stats = report.model_stats.setdefault(model_name, ModelStats())
            requests = _count(model_data.get("total_requests")) or 0
            stats.requests += requests
            stats.success_count += requests
            stats.tokens += _count(model_data.get("total_tokens")) or 0

            details = model_data.get("details")
            if not isinstance(details, list):
                continue
            for detail in details:
                tokens = _object(_object(detail).get("tokens"))
                stats.input_tokens += _count(tokens.get("input_tokens")) or 0
                stats.output_tokens += _count(tokens.get("output_tokens")) or 0
                stats.cached_tokens += _count(tokens.get("cached_tokens")) or 0

    for model_name, stats in report.model_stats.items():
        report.total_requests += stats.requests
        report.input_tokens += stats.input_tokens
        report.output_tokens += stats.output_tokens
        report.cached_tokens += stats.cached_tokens
        report.estimated_cost += estimate_request_cost(
            model_name, stats.input_tokens, stats.output_tokens
        )

    total_tokens = _count(usage.get("total_tokens"))
    if total_tokens is None:
        total_tokens = report.input_tokens + report.output_tokens
    report.total_tokens = total_tokens

    report.requests_by_day = _parse_series(usage.get("requests_by_day"))
    report.tokens_by_day = _parse_series(usage.get("tokens_by_day"))
    report.requests_by_hour = _parse_series(usage.get("requests_by_hour"), now)
    report.tokens_by_hour = _parse_series(usage.get("tokens_by_hour"), now)
    return report
