"""
Aggregate and history update rules.

Two kinds of update touch the same buckets and must not be confused:

1. Tail increments (record_event) ADD to existing buckets.
2. Authoritative merges (merge_report) OVERWRITE the buckets the proxy
   reports, since its counts supersede locally tallied ones.

Adding an authoritative pull on top of a previous one would double count;
overwriting with a tail increment would lose recent activity.
"""

from datetime import datetime
from typing import Dict, List, Tuple

from .pricing import estimate_request_cost
from proxy_usage.storage.models import (
    HISTORY_MAX_ENTRIES,
    MAX_HOURLY_POINTS,
    UNKNOWN,
    Aggregate,
    ModelStats,
    RequestEvent,
    RequestHistory,
    TimeSeriesPoint,
)
from proxy_usage.sync.report import UsageReport

DAY_FORMAT = "%Y-%m-%d"
HOUR_FORMAT = "%Y-%m-%dT%H"


def bucket_labels(timestamp_ms: int) -> Tuple[str, str]:
    """Return the (day, hour) labels for an epoch-millisecond timestamp in local time."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000)
    return moment.strftime(DAY_FORMAT), moment.strftime(HOUR_FORMAT)


def add_to_series(series: List[TimeSeriesPoint], label: str, increment: int) -> None:
    """Add increment to the bucket for label, creating it if needed; keeps label order."""
    for point in series:
        if point.label == label:
            point.value += increment
            return
    series.append(TimeSeriesPoint(label=label, value=increment))
    series.sort(key=lambda p: p.label)


def overwrite_series(series: List[TimeSeriesPoint], points: List[TimeSeriesPoint]) -> None:
    """Replace bucket values with authoritative ones (last writer wins per label)."""
    by_label: Dict[str, TimeSeriesPoint] = {point.label: point for point in series}
    for point in points:
        existing = by_label.get(point.label)
        if existing is not None:
            existing.value = point.value
        else:
            created = TimeSeriesPoint(label=point.label, value=point.value)
            series.append(created)
            by_label[point.label] = created
    series.sort(key=lambda p: p.label)


def trim_series(series: List[TimeSeriesPoint], max_points: int) -> List[TimeSeriesPoint]:
    """Keep only the newest max_points buckets."""
    if len(series) > max_points:
        return series[-max_points:]
    return series


def _stats_key(name: str) -> str:
    return name if name and name != UNKNOWN else UNKNOWN


def record_event(aggregate: Aggregate, event: RequestEvent) -> None:
    """Fold one tail-derived event into the aggregate additively.

    Buckets are taken from the event's own timestamp.
    """
    tokens_in = event.tokens_in or 0
    tokens_out = event.tokens_out or 0
    tokens_cached = event.tokens_cached or 0
    tokens = tokens_in + tokens_out

    aggregate.total_requests += 1
    if event.success:
        aggregate.total_success_count += 1
    else:
        aggregate.total_failure_count += 1
    aggregate.total_tokens_in += tokens_in
    aggregate.total_tokens_out += tokens_out
    aggregate.total_tokens_cached += tokens_cached
    aggregate.total_cost_usd += estimate_request_cost(event.model, tokens_in, tokens_out)

    day, hour = bucket_labels(event.timestamp)
    add_to_series(aggregate.requests_by_day, day, 1)
    add_to_series(aggregate.tokens_by_day, day, tokens)
    add_to_series(aggregate.requests_by_hour, hour, 1)
    add_to_series(aggregate.tokens_by_hour, hour, tokens)
    aggregate.requests_by_hour = trim_series(aggregate.requests_by_hour, MAX_HOURLY_POINTS)
    aggregate.tokens_by_hour = trim_series(aggregate.tokens_by_hour, MAX_HOURLY_POINTS)

    model = aggregate.model_stats.setdefault(_stats_key(event.model), ModelStats())
    model.requests += 1
    if event.success:
        model.success_count += 1
    model.tokens += tokens
    model.input_tokens += tokens_in
    model.output_tokens += tokens_out
    model.cached_tokens += tokens_cached

    provider = aggregate.provider_stats.setdefault(_stats_key(event.provider), ModelStats())
    provider.requests += 1
    if event.success:
        provider.success_count += 1
    provider.tokens += tokens
    provider.input_tokens += tokens_in
    provider.output_tokens += tokens_out
    provider.cached_tokens += tokens_cached


def merge_report(aggregate: Aggregate, report: UsageReport) -> None:
    """Reconcile an authoritative usage report into the aggregate.

    Series buckets are overwritten, per-model stats are replaced for every
    model in the report, and cumulative scalars are raised to the report's
    values but never lowered.
    """
    overwrite_series(aggregate.requests_by_day, report.requests_by_day)
    overwrite_series(aggregate.tokens_by_day, report.tokens_by_day)
    overwrite_series(aggregate.requests_by_hour, report.requests_by_hour)
    overwrite_series(aggregate.tokens_by_hour, report.tokens_by_hour)
    aggregate.requests_by_hour = trim_series(aggregate.requests_by_hour, MAX_HOURLY_POINTS)
    aggregate.tokens_by_hour = trim_series(aggregate.tokens_by_hour, MAX_HOURLY_POINTS)

    for model_name, stats in report.model_stats.items():
        aggregate.model_stats[model_name] = ModelStats(
            requests=stats.requests,
            success_count=stats.success_count,
            tokens=stats.tokens,
            input_tokens=stats.input_tokens,
            output_tokens=stats.output_tokens,
            cached_tokens=stats.cached_tokens,
        )

    reported_requests = max(
        report.total_requests,
        sum(point.value for point in report.requests_by_day),
    )
    aggregate.total_requests = max(aggregate.total_requests, reported_requests)
    # The proxy only accounts successful requests
    synced_success = sum(stats.success_count for stats in aggregate.model_stats.values())
    aggregate.total_success_count = max(aggregate.total_success_count, synced_success)

    aggregate.total_tokens_in = max(aggregate.total_tokens_in, report.input_tokens)
    aggregate.total_tokens_out = max(aggregate.total_tokens_out, report.output_tokens)
    aggregate.total_tokens_cached = max(aggregate.total_tokens_cached, report.cached_tokens)
    aggregate.total_cost_usd = max(aggregate.total_cost_usd, report.estimated_cost)


def is_duplicate(history: RequestHistory, event: RequestEvent) -> bool:
    """Whether an event with the same timestamp and path is already in the history."""
    return any(
        r.timestamp == event.timestamp and r.path == event.path
        for r in history.requests
    )


def append_event(history: RequestHistory, event: RequestEvent) -> bool:
    """Append an event to the recent-request ring.

    Duplicates by (timestamp, path) are dropped. The ring keeps the newest
    HISTORY_MAX_ENTRIES events; rolling totals keep counting regardless.

    Returns:
        True if the event was appended, False if it was a duplicate
    """
    if is_duplicate(history, event):
        return False

    tokens_in = event.tokens_in or 0
    tokens_out = event.tokens_out or 0

    history.requests.append(event)
    if len(history.requests) > HISTORY_MAX_ENTRIES:
        del history.requests[:len(history.requests) - HISTORY_MAX_ENTRIES]

    history.total_request_count += 1
    if event.success:
        history.total_success_count += 1
    history.total_tokens_in += tokens_in
    history.total_tokens_out += tokens_out
    history.total_tokens_cached += event.tokens_cached or 0
    history.total_cost_usd += estimate_request_cost(event.model, tokens_in, tokens_out)
    return True


def apply_report_to_history(history: RequestHistory, report: UsageReport) -> None:
    """Replace the history's token and cost totals with the proxy's figures."""
    history.total_tokens_in = report.input_tokens
    history.total_tokens_out = report.output_tokens
    history.total_tokens_cached = report.cached_tokens
    history.total_cost_usd = report.estimated_cost


def build_aggregate_from_history(history: RequestHistory) -> Aggregate:
    """Rebuild an aggregate from a history file written before aggregates existed."""
    aggregate = Aggregate()
    for event in history.requests:
        record_event(aggregate, event)
    aggregate.total_tokens_in = max(aggregate.total_tokens_in, history.total_tokens_in)
    aggregate.total_tokens_out = max(aggregate.total_tokens_out, history.total_tokens_out)
    aggregate.total_cost_usd = max(aggregate.total_cost_usd, history.total_cost_usd)
    return aggregate
