"""
Authoritative sync scheduling.

Runs the fetch, parse and merge cycle on demand and on a periodic
background timer.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from proxy_usage.storage.files import PersistenceError
from proxy_usage.storage.owner import AggregateOwner
from .client import UsageClient
from .report import SyncError, UsageReport, parse_usage_report

logger = logging.getLogger(__name__)


class UsageSynchronizer:
    """Pulls the proxy's usage report and merges it through the owner.

    A sync either merges the whole report or changes nothing: the payload is
    fully parsed before any merge is submitted.
    """

    def __init__(
        self,
        client: UsageClient,
        owner: AggregateOwner,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.client = client
        self.owner = owner
        self._clock = clock

    def sync(self) -> UsageReport:
        """Run one sync and wait for the merge to be persisted.

        Returns:
            The merged report

        Raises:
            SyncError: If the proxy cannot be reached or replies with bad data
            PersistenceError: If the merged aggregate cannot be saved
        """
        payload = self.client.fetch_usage()
        report = parse_usage_report(payload, now=self._clock())
        self.owner.apply_merge(report).result()
        logger.info(
            "Synced usage: %d requests, %d tokens across %d models",
            report.total_requests, report.total_tokens, len(report.model_stats),
        )
        return report


class PeriodicSync:
    """Background thread that calls UsageSynchronizer.sync on an interval.

    Failures are logged and retried on the next tick; the last good
    aggregate stays in place.
    """

    def __init__(self, synchronizer: UsageSynchronizer, interval: float = 60.0):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.synchronizer = synchronizer
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background sync thread; a no-op while it is running."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="PeriodicSync")
        self._thread.start()
        logger.info("PeriodicSync: started (interval=%.0fs)", self.interval)

    def stop(self) -> None:
        """Signal stop and wait for the thread to finish."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=10)
        if self._thread.is_alive():
            logger.warning("PeriodicSync: thread did not stop within timeout")
        else:
            logger.info("PeriodicSync: stopped")
        self._thread = None

    def run_once(self) -> bool:
        """Run one best-effort sync.

        Returns:
            True if the sync succeeded
        """
        try:
            self.synchronizer.sync()
        except (SyncError, PersistenceError) as e:
            logger.warning("PeriodicSync: sync failed: %s", e)
            return False
        return True

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(timeout=self.interval)
