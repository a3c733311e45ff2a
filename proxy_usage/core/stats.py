"""
Usage statistics view.

Builds the read-only statistics shown to users from the aggregate and the
recent-request history. Nothing here writes to disk.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional

from .aggregation import bucket_labels
from proxy_usage.storage.models import (
    MAX_HOURLY_POINTS,
    UNKNOWN,
    Aggregate,
    RequestEvent,
    RequestHistory,
    TimeSeriesPoint,
)

DAILY_DISPLAY_POINTS = 14


@dataclass(frozen=True)
class ModelUsage:
    model: str
    requests: int
    tokens: int
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0


@dataclass(frozen=True)
class ProviderUsage:
    provider: str
    requests: int
    tokens: int


@dataclass
class UsageStats:
    """Display-ready usage statistics."""
    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    estimated_cost_usd: float = 0.0
    requests_today: int = 0
    tokens_today: int = 0
    models: List[ModelUsage] = field(default_factory=list)
    providers: List[ProviderUsage] = field(default_factory=list)
    requests_by_day: List[TimeSeriesPoint] = field(default_factory=list)
    tokens_by_day: List[TimeSeriesPoint] = field(default_factory=list)
    requests_by_hour: List[TimeSeriesPoint] = field(default_factory=list)
    tokens_by_hour: List[TimeSeriesPoint] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.success_count / self.total_requests


def _value_for(series: List[TimeSeriesPoint], label: str) -> int:
    for point in series:
        if point.label == label:
            return point.value
    return 0


def _last(series: List[TimeSeriesPoint], count: int) -> List[TimeSeriesPoint]:
    ordered = sorted(series, key=lambda p: p.label)
    return ordered[-count:] if len(ordered) > count else ordered


def _series_from_history(
    requests: List[RequestEvent],
    label_of: Callable[[int], str],
    value_of: Callable[[RequestEvent], int],
) -> List[TimeSeriesPoint]:
    buckets: Dict[str, int] = defaultdict(int)
    for event in requests:
        buckets[label_of(event.timestamp)] += value_of(event)
    return [TimeSeriesPoint(label=label, value=value) for label, value in sorted(buckets.items())]


def _day_label(timestamp_ms: int) -> str:
    return bucket_labels(timestamp_ms)[0]


def _hour_label(timestamp_ms: int) -> str:
    return bucket_labels(timestamp_ms)[1]


def _display_series(
    aggregated: List[TimeSeriesPoint],
    history: RequestHistory,
    label_of: Callable[[int], str],
    value_of: Callable[[RequestEvent], int],
    max_points: int,
) -> List[TimeSeriesPoint]:
    """Aggregate series truncated for display, rebuilt from history when empty."""
    if aggregated:
        points = [TimeSeriesPoint(p.label, p.value) for p in aggregated]
    else:
        points = _series_from_history(history.requests, label_of, value_of)
    return _last(points, max_points)


def compute_usage_stats(
    aggregate: Aggregate,
    history: RequestHistory,
    today: Optional[date] = None,
) -> UsageStats:
    """Compute display statistics from the stored aggregate and history.

    The aggregate is the source of truth for all-time totals. Time series
    fall back to the recent-request history when the aggregate has none,
    which is the case for data directories written before aggregates
    existed.

    Args:
        aggregate: Cumulative analytics record
        history: Recent-request ring
        today: Local date used for the "today" figures (defaults to now)

    Returns:
        UsageStats, all zeros when there is no data at all
    """
    if aggregate.total_requests == 0 and not history.requests:
        return UsageStats()

    today_label = (today or date.today()).strftime("%Y-%m-%d")

    models = [
        ModelUsage(
            model=name,
            requests=stats.requests,
            tokens=stats.tokens,
            input_tokens=stats.input_tokens,
            output_tokens=stats.output_tokens,
            cached_tokens=stats.cached_tokens,
        )
        for name, stats in aggregate.model_stats.items()
        if name and name != UNKNOWN
    ]
    models.sort(key=lambda m: m.requests, reverse=True)

    providers = [
        ProviderUsage(provider=name, requests=stats.requests, tokens=stats.tokens)
        for name, stats in aggregate.provider_stats.items()
        if name and name != UNKNOWN
    ]
    providers.sort(key=lambda p: p.requests, reverse=True)

    def count(event: RequestEvent) -> int:
        return 1

    def tokens(event: RequestEvent) -> int:
        return event.total_tokens

    return UsageStats(
        total_requests=aggregate.total_requests,
        success_count=aggregate.total_success_count,
        failure_count=aggregate.total_failure_count,
        total_tokens=aggregate.total_tokens_in + aggregate.total_tokens_out,
        input_tokens=aggregate.total_tokens_in,
        output_tokens=aggregate.total_tokens_out,
        cached_tokens=aggregate.total_tokens_cached,
        estimated_cost_usd=aggregate.total_cost_usd,
        requests_today=_value_for(aggregate.requests_by_day, today_label),
        tokens_today=_value_for(aggregate.tokens_by_day, today_label),
        models=models,
        providers=providers,
        requests_by_day=_display_series(
            aggregate.requests_by_day, history, _day_label, count, DAILY_DISPLAY_POINTS
        ),
        tokens_by_day=_display_series(
            aggregate.tokens_by_day, history, _day_label, tokens, DAILY_DISPLAY_POINTS
        ),
        requests_by_hour=_display_series(
            aggregate.requests_by_hour, history, _hour_label, count, MAX_HOURLY_POINTS
        ),
        tokens_by_hour=_display_series(
            aggregate.tokens_by_hour, history, _hour_label, tokens, MAX_HOURLY_POINTS
        ),
    )
