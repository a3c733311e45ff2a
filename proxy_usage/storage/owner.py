"""
Serialized writer for the analytics snapshots.

Both the log watcher and the sync task update aggregate.json. Rename
atomicity protects the file from corruption but not from lost updates, so
every read-modify-write cycle goes through this single owner.
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, Optional, Tuple

from proxy_usage.core.aggregation import (
    append_event,
    apply_report_to_history,
    build_aggregate_from_history,
    is_duplicate,
    merge_report,
    record_event,
)
from proxy_usage.sync.report import UsageReport
from .models import Aggregate, RequestEvent, RequestHistory
from .repository import AnalyticsRepository

logger = logging.getLogger(__name__)

_Message = Tuple[Callable[[], Any], Future]
_STOP = None


class AggregateOwner:
    """Single owner of aggregate.json and history.json.

    Operations are queued and executed one at a time on a background thread;
    each is a complete load, modify, atomic save cycle whose outcome resolves
    the returned Future. When the thread is not running, operations execute
    inline on the caller's thread under the same lock.
    """

    QUEUE_MAX = 10_000

    def __init__(self, repository: AnalyticsRepository):
        self.repository = repository
        self._queue: "queue.Queue[Optional[_Message]]" = queue.Queue(maxsize=self.QUEUE_MAX)
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background writer thread."""
        if self.running:
            return
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="AggregateOwner")
        self._thread.start()
        logger.info("AggregateOwner: started")

    def stop(self) -> None:
        """Drain queued operations and stop the writer thread."""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout=10)
        if self._thread.is_alive():
            logger.warning("AggregateOwner: thread did not stop within timeout")
        else:
            logger.info("AggregateOwner: stopped")
        self._thread = None

    def apply_increment(self, event: RequestEvent) -> "Future[bool]":
        """Record a tail-derived event in the aggregate and the history.

        The Future resolves to False when the event is a duplicate, in which
        case neither file changes.
        """
        return self._submit(lambda: self._increment(event))

    def apply_merge(self, report: UsageReport) -> "Future[Aggregate]":
        """Reconcile an authoritative usage report; resolves to the saved aggregate."""
        return self._submit(lambda: self._merge(report))

    def clear_history(self) -> "Future[None]":
        return self._submit(lambda: self.repository.save_history(RequestHistory()))

    def clear_all(self) -> "Future[None]":
        """Reset both the history and the cumulative aggregate."""
        return self._submit(self._clear_all)

    def migrate(self) -> "Future[bool]":
        """Build aggregate.json from history.json if only the latter exists."""
        return self._submit(self._migrate)

    def _submit(self, operation: Callable[[], Any]) -> Future:
        future: Future = Future()
        if self.running:
            self._queue.put((operation, future))
        else:
            self._execute(operation, future)
        return future

    def _execute(self, operation: Callable[[], Any], future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        with self._lock:
            try:
                result = operation()
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(result)

    def _run_loop(self) -> None:
        while True:
            message = self._queue.get()
            if message is _STOP:
                break
            operation, future = message
            self._execute(operation, future)

        # Operations queued behind the stop marker still run
        while True:
            try:
                message = self._queue.get_nowait()
            except queue.Empty:
                break
            if message is not _STOP:
                self._execute(*message)

    def _increment(self, event: RequestEvent) -> bool:
        history = self.repository.load_history()
        if is_duplicate(history, event):
            logger.debug("Dropping duplicate request %s %s", event.timestamp, event.path)
            return False
        aggregate = self.repository.load_aggregate()
        record_event(aggregate, event)
        append_event(history, event)
        # History is saved first; it backs the duplicate check
        self.repository.save_history(history)
        self.repository.save_aggregate(aggregate)
        return True

    def _merge(self, report: UsageReport) -> Aggregate:
        aggregate = self.repository.load_aggregate()
        history = self.repository.load_history()
        merge_report(aggregate, report)
        apply_report_to_history(history, report)
        self.repository.save_aggregate(aggregate)
        self.repository.save_history(history)
        return aggregate

    def _clear_all(self) -> None:
        self.repository.save_aggregate(Aggregate())
        self.repository.save_history(RequestHistory())

    def _migrate(self) -> bool:
        if self.repository.has_aggregate():
            return False
        history = self.repository.load_history()
        if not history.requests:
            return False
        logger.info("Building aggregate from %d history entries", len(history.requests))
        self.repository.save_aggregate(build_aggregate_from_history(history))
        return True
