"""
Unit tests for aggregate and history update rules.

Tests additive tail increments, overwriting authoritative merges, the
request ring and history migration.
"""

from datetime import datetime

from proxy_usage.core.aggregation import (
    add_to_series,
    append_event,
    build_aggregate_from_history,
    bucket_labels,
    is_duplicate,
    merge_report,
    overwrite_series,
    record_event,
    trim_series,
)
from proxy_usage.storage.models import (
    Aggregate,
    ModelStats,
    RequestEvent,
    RequestHistory,
    TimeSeriesPoint,
)
from proxy_usage.sync.report import UsageReport


def local_ms(*args) -> int:
    return int(datetime(*args).timestamp() * 1000)


def make_event(timestamp: int, path: str = "/v1/messages", status: int = 200, **kwargs) -> RequestEvent:
    fields = dict(
        id=f"req_{timestamp}_0",
        timestamp=timestamp,
        provider="anthropic",
        model="claude-sonnet-4-5",
        method="POST",
        path=path,
        status=status,
        duration_ms=50,
    )
    fields.update(kwargs)
    return RequestEvent(**fields)


class TestSeries:
    """Test series helpers."""

    def test_add_creates_and_increments(self):
        series = []
        add_to_series(series, "2025-06-02", 1)
        add_to_series(series, "2025-06-01", 2)
        add_to_series(series, "2025-06-02", 3)

        assert series == [TimeSeriesPoint("2025-06-01", 2), TimeSeriesPoint("2025-06-02", 4)]

    def test_overwrite_replaces_values(self):
        series = [TimeSeriesPoint("2025-01-01", 5)]
        overwrite_series(series, [TimeSeriesPoint("2025-01-01", 8), TimeSeriesPoint("2024-12-31", 1)])

        assert series == [TimeSeriesPoint("2024-12-31", 1), TimeSeriesPoint("2025-01-01", 8)]

    def test_trim_keeps_newest(self):
        series = [TimeSeriesPoint(f"{i:03d}", i) for i in range(10)]
        assert [p.value for p in trim_series(series, 3)] == [7, 8, 9]

    def test_bucket_labels_use_local_time(self):
        assert bucket_labels(local_ms(2025, 6, 1, 9, 30)) == ("2025-06-01", "2025-06-01T09")


class TestRecordEvent:
    """Test additive tail increments."""

    def test_counts_and_buckets(self):
        aggregate = Aggregate()
        record_event(aggregate, make_event(local_ms(2025, 6, 1, 10)))
        record_event(aggregate, make_event(local_ms(2025, 6, 1, 11), status=500))

        assert aggregate.total_requests == 2
        assert aggregate.total_success_count == 1
        assert aggregate.total_failure_count == 1
        assert aggregate.requests_by_day == [TimeSeriesPoint("2025-06-01", 2)]
        assert [p.label for p in aggregate.requests_by_hour] == ["2025-06-01T10", "2025-06-01T11"]
        assert aggregate.model_stats["claude-sonnet-4-5"].requests == 2
        assert aggregate.model_stats["claude-sonnet-4-5"].success_count == 1
        assert aggregate.provider_stats["anthropic"].requests == 2

    def test_tokens_and_cost(self):
        aggregate = Aggregate()
        record_event(
            aggregate,
            make_event(local_ms(2025, 6, 1, 10), tokens_in=1000, tokens_out=500, tokens_cached=100),
        )

        assert aggregate.total_tokens_in == 1000
        assert aggregate.total_tokens_out == 500
        assert aggregate.total_tokens_cached == 100
        assert aggregate.tokens_by_day == [TimeSeriesPoint("2025-06-01", 1500)]
        assert aggregate.total_cost_usd == 0.0105

    def test_hourly_series_capped(self):
        aggregate = Aggregate()
        start = local_ms(2025, 1, 1, 0)
        for hour in range(200):
            record_event(aggregate, make_event(start + hour * 3_600_000))

        assert len(aggregate.requests_by_hour) == 168
        assert len(aggregate.tokens_by_hour) == 168
        assert aggregate.total_requests == 200
        assert sum(p.value for p in aggregate.requests_by_day) == 200


class TestMergeReport:
    """Test authoritative reconciliation."""

    def test_overwrite_not_add(self):
        aggregate = Aggregate()
        for hour in range(5):
            record_event(aggregate, make_event(local_ms(2025, 1, 1, hour)))
        assert aggregate.requests_by_day == [TimeSeriesPoint("2025-01-01", 5)]

        merge_report(aggregate, UsageReport(requests_by_day=[TimeSeriesPoint("2025-01-01", 8)]))

        assert aggregate.requests_by_day == [TimeSeriesPoint("2025-01-01", 8)]
        assert aggregate.total_requests == 8

    def test_repeated_merge_is_idempotent(self):
        aggregate = Aggregate()
        report = UsageReport(
            total_requests=4,
            input_tokens=100,
            requests_by_day=[TimeSeriesPoint("2025-01-01", 4)],
            model_stats={"gpt-5": ModelStats(requests=4, success_count=4, tokens=100, input_tokens=100)},
        )

        merge_report(aggregate, report)
        first = aggregate.to_dict()
        merge_report(aggregate, report)

        assert aggregate.to_dict() == first

    def test_scalars_never_decrease(self):
        aggregate = Aggregate(
            total_requests=50,
            total_success_count=40,
            total_tokens_in=1000,
            total_tokens_out=2000,
            total_cost_usd=3.0,
        )

        merge_report(aggregate, UsageReport(total_requests=10, input_tokens=5, output_tokens=5, estimated_cost=0.1))

        assert aggregate.total_requests == 50
        assert aggregate.total_success_count == 40
        assert aggregate.total_tokens_in == 1000
        assert aggregate.total_tokens_out == 2000
        assert aggregate.total_cost_usd == 3.0

    def test_scalars_raised_to_report(self):
        aggregate = Aggregate(total_requests=2)

        merge_report(aggregate, UsageReport(
            total_requests=9,
            input_tokens=700,
            output_tokens=300,
            cached_tokens=50,
            estimated_cost=1.25,
            model_stats={"gpt-5": ModelStats(requests=9, success_count=9)},
        ))

        assert aggregate.total_requests == 9
        assert aggregate.total_success_count == 9
        assert aggregate.total_tokens_in == 700
        assert aggregate.total_tokens_out == 300
        assert aggregate.total_tokens_cached == 50
        assert aggregate.total_cost_usd == 1.25

    def test_model_stats_replaced(self):
        aggregate = Aggregate(model_stats={
            "gpt-5": ModelStats(requests=3, tokens=0),
            "claude-sonnet-4-5": ModelStats(requests=2),
        })

        merge_report(aggregate, UsageReport(
            model_stats={"gpt-5": ModelStats(requests=7, success_count=7, tokens=900)},
        ))

        assert aggregate.model_stats["gpt-5"] == ModelStats(requests=7, success_count=7, tokens=900)
        assert aggregate.model_stats["claude-sonnet-4-5"].requests == 2

    def test_provider_stats_untouched(self):
        aggregate = Aggregate(provider_stats={"openai": ModelStats(requests=3)})
        merge_report(aggregate, UsageReport(model_stats={"gpt-5": ModelStats(requests=10)}))

        assert aggregate.provider_stats == {"openai": ModelStats(requests=3)}

    def test_hourly_trimmed_after_merge(self):
        aggregate = Aggregate()
        points = [TimeSeriesPoint(f"2025-01-{1 + i // 24:02d}T{i % 24:02d}", 1) for i in range(200)]

        merge_report(aggregate, UsageReport(requests_by_hour=points, tokens_by_hour=points))

        assert len(aggregate.requests_by_hour) == 168
        assert aggregate.requests_by_hour[-1] == points[-1]


class TestHistoryRing:
    """Test the recent-request ring."""

    def test_duplicate_by_timestamp_and_path(self):
        history = RequestHistory()
        event = make_event(1000)

        assert append_event(history, event)
        assert is_duplicate(history, make_event(1000))
        assert not append_event(history, make_event(1000))
        assert append_event(history, make_event(1000, path="/v1/chat/completions"))
        assert len(history.requests) == 2
        assert history.total_request_count == 2

    def test_ring_keeps_newest_500(self):
        history = RequestHistory()
        for i in range(520):
            append_event(history, make_event(i))

        assert len(history.requests) == 500
        assert history.requests[0].timestamp == 20
        assert history.requests[-1].timestamp == 519
        assert history.total_request_count == 520

    def test_success_counter(self):
        history = RequestHistory()
        append_event(history, make_event(1))
        append_event(history, make_event(2, status=404))

        assert history.total_success_count == 1


class TestMigration:
    """Test rebuilding an aggregate from an old history file."""

    def test_build_from_history(self):
        history = RequestHistory(
            requests=[make_event(local_ms(2025, 3, 1, h)) for h in range(3)],
            total_tokens_in=400,
        )

        aggregate = build_aggregate_from_history(history)

        assert aggregate.total_requests == 3
        assert aggregate.requests_by_day == [TimeSeriesPoint("2025-03-01", 3)]
        assert aggregate.total_tokens_in == 400
