"""
Repository pattern for data access.

Loads and saves the aggregate and history snapshots, one canonical JSON file
each.
"""

import logging
from pathlib import Path
from typing import Union

from .files import read_json, write_json_atomic
from .models import HISTORY_MAX_ENTRIES, Aggregate, RequestHistory

logger = logging.getLogger(__name__)

AGGREGATE_FILENAME = "aggregate.json"
HISTORY_FILENAME = "history.json"


class AnalyticsRepository:
    """Repository for the on-disk analytics snapshots.

    Every load returns a fresh copy that the caller owns; nothing is cached
    between calls, so independent readers never share mutable state.
    """

    def __init__(self, data_dir: Union[str, Path]):
        """Initialize the repository with a data directory.

        Args:
            data_dir: Directory holding aggregate.json and history.json
        """
        self.data_dir = Path(data_dir)

    @property
    def aggregate_path(self) -> Path:
        return self.data_dir / AGGREGATE_FILENAME

    @property
    def history_path(self) -> Path:
        return self.data_dir / HISTORY_FILENAME

    def load_aggregate(self) -> Aggregate:
        """Load the aggregate, or a zeroed default if missing or corrupt."""
        data = read_json(self.aggregate_path)
        if data is None:
            return Aggregate()
        try:
            return Aggregate.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Aggregate snapshot has unexpected shape, using defaults: %s", e)
            return Aggregate()

    def save_aggregate(self, aggregate: Aggregate) -> None:
        """Persist the aggregate atomically.

        Raises:
            PersistenceError: If the write or rename fails
        """
        write_json_atomic(self.aggregate_path, aggregate.to_dict())

    def load_history(self) -> RequestHistory:
        """Load the request history, or an empty one if missing or corrupt."""
        data = read_json(self.history_path)
        if data is None:
            return RequestHistory()
        try:
            return RequestHistory.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("History snapshot has unexpected shape, using defaults: %s", e)
            return RequestHistory()

    def save_history(self, history: RequestHistory) -> None:
        """Persist the history atomically, keeping only the newest entries.

        Rolling totals are preserved even when requests are trimmed.

        Raises:
            PersistenceError: If the write or rename fails
        """
        data = history.to_dict()
        data["requests"] = data["requests"][-HISTORY_MAX_ENTRIES:]
        write_json_atomic(self.history_path, data)

    def has_aggregate(self) -> bool:
        return self.aggregate_path.exists()
