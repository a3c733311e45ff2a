"""
Unit tests for storage layer.

Tests snapshot loading, atomic saves and the history trim.
"""

import json
import shutil
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from proxy_usage.storage.files import PersistenceError, read_json, write_json_atomic
from proxy_usage.storage.models import (
    Aggregate,
    ModelStats,
    RequestEvent,
    RequestHistory,
    TimeSeriesPoint,
)
from proxy_usage.storage.repository import AnalyticsRepository


def make_event(i: int, status: int = 200) -> RequestEvent:
    return RequestEvent(
        id=f"req_{1_700_000_000_000 + i}_{i}",
        timestamp=1_700_000_000_000 + i,
        provider="anthropic",
        model="claude-sonnet-4-5",
        method="POST",
        path="/v1/messages",
        status=status,
        duration_ms=100,
    )


class TestAtomicWrite:
    """Test the temp-file-and-rename writer."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "snapshot.json"

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_write_and_read(self):
        write_json_atomic(self.path, {"a": 1})

        assert read_json(self.path) == {"a": 1}
        assert not Path(str(self.path) + ".tmp").exists()

    def test_creates_parent_directory(self):
        nested = Path(self.temp_dir) / "nested" / "dir" / "file.json"
        write_json_atomic(nested, [1, 2])
        assert read_json(nested) == [1, 2]

    def test_rename_failure_keeps_old_file(self):
        write_json_atomic(self.path, {"version": 1})

        with patch("proxy_usage.storage.files.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError, match="disk full") as exc_info:
                write_json_atomic(self.path, {"version": 2})

        assert exc_info.value.path == self.path
        assert json.loads(self.path.read_text(encoding='utf-8')) == {"version": 1}
        assert not Path(str(self.path) + ".tmp").exists()

    def test_unserializable_payload(self):
        with pytest.raises(PersistenceError):
            write_json_atomic(self.path, {"bad": object()})
        assert not self.path.exists()

    def test_read_missing_file(self):
        assert read_json(self.path) is None

    def test_read_corrupt_file(self):
        self.path.write_text("{not json", encoding='utf-8')
        assert read_json(self.path) is None


class TestModels:
    """Test camelCase serialization of the stored records."""

    def test_event_keys(self):
        data = make_event(1).to_dict()

        assert data["durationMs"] == 100
        assert data["tokensIn"] is None
        assert RequestEvent.from_dict(data) == make_event(1)

    def test_event_success(self):
        assert make_event(1, status=399).success
        assert not make_event(1, status=400).success

    def test_aggregate_keys(self):
        aggregate = Aggregate(
            total_requests=3,
            requests_by_day=[TimeSeriesPoint("2025-06-01", 3)],
            model_stats={"gpt-5": ModelStats(requests=3, success_count=2)},
        )

        data = aggregate.to_dict()

        assert data["totalRequests"] == 3
        assert data["requestsByDay"] == [{"label": "2025-06-01", "value": 3}]
        assert data["modelStats"]["gpt-5"]["successCount"] == 2
        assert Aggregate.from_dict(data) == aggregate

    def test_history_recomputes_missing_counters(self):
        data = {"requests": [make_event(1).to_dict(), make_event(2, status=500).to_dict()]}

        history = RequestHistory.from_dict(data)

        assert history.total_request_count == 2
        assert history.total_success_count == 1


class TestAnalyticsRepository:
    """Test loading and saving of the analytics snapshots."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.repository = AnalyticsRepository(self.temp_dir)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_missing_files_load_defaults(self):
        assert self.repository.load_aggregate() == Aggregate()
        assert self.repository.load_history() == RequestHistory()
        assert not self.repository.has_aggregate()

    def test_corrupt_files_load_defaults(self):
        self.repository.aggregate_path.write_text("garbage", encoding='utf-8')
        self.repository.history_path.write_text('"a string"', encoding='utf-8')

        assert self.repository.load_aggregate() == Aggregate()
        assert self.repository.load_history() == RequestHistory()

    def test_aggregate_round_trip(self):
        aggregate = Aggregate(total_requests=7, total_cost_usd=1.5)
        self.repository.save_aggregate(aggregate)

        assert self.repository.has_aggregate()
        assert self.repository.load_aggregate() == aggregate

    def test_history_is_trimmed_on_save(self):
        history = RequestHistory(
            requests=[make_event(i) for i in range(600)],
            total_request_count=600,
        )

        self.repository.save_history(history)
        loaded = self.repository.load_history()

        assert len(loaded.requests) == 500
        assert loaded.requests[0] == make_event(100)
        assert loaded.total_request_count == 600

    def test_save_failure_raises_persistence_error(self):
        self.repository.save_aggregate(Aggregate(total_requests=1))

        with patch("proxy_usage.storage.files.os.replace", side_effect=PermissionError("denied")):
            with pytest.raises(PersistenceError):
                self.repository.save_aggregate(Aggregate(total_requests=2))

        assert self.repository.load_aggregate().total_requests == 1
