"""
Background log watcher.

Wires the tail reader, the line parser and the aggregate owner together on
one long-lived daemon thread.
"""

import logging
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, List, Optional, Union

from .context import WatcherContext
from .correlation import DEFAULT_CAPACITY, CorrelationCache
from .parser import LineParser
from .tail import DEFAULT_ATTACH_TIMEOUT, DEFAULT_POLL_INTERVAL, TailReader
from proxy_usage.storage.models import RequestEvent
from proxy_usage.storage.owner import AggregateOwner

logger = logging.getLogger(__name__)

EventListener = Callable[[RequestEvent], None]


class LogWatcher:
    """Tails the proxy log and feeds parsed requests to the aggregate owner.

    Listeners receive every parsed RequestEvent synchronously, in file
    order, before deduplication. The watcher never raises: I/O problems are
    logged and retried, failed listeners and failed saves are logged.
    """

    def __init__(
        self,
        log_path: Union[str, Path],
        owner: AggregateOwner,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        attach_timeout: float = DEFAULT_ATTACH_TIMEOUT,
        correlation_capacity: int = DEFAULT_CAPACITY,
    ):
        self.log_path = Path(log_path)
        self.owner = owner
        self.poll_interval = poll_interval
        self.attach_timeout = attach_timeout
        self.cache = CorrelationCache(correlation_capacity)
        self._listeners: List[EventListener] = []
        self._thread: Optional[threading.Thread] = None
        self._context: Optional[WatcherContext] = None

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, context: WatcherContext) -> None:
        """Start tailing on a background thread.

        Restarting re-attaches at the current end of the file, so lines
        processed by a previous run are never read twice.
        """
        if self.running:
            return
        context.restart()
        self._context = context
        self._thread = threading.Thread(
            target=self._run, args=(context,), daemon=True, name="LogWatcher",
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the worker and wait for it to exit."""
        if self._thread is None:
            return
        if self._context is not None:
            self._context.stop()
        self._thread.join(timeout=max(10.0, self.poll_interval * 4))
        if self._thread.is_alive():
            logger.warning("LogWatcher: thread did not stop within timeout")
        self._thread = None

    def _run(self, context: WatcherContext) -> None:
        parser = LineParser(self.cache, context.next_id)
        reader = TailReader(self.log_path, self.poll_interval, self.attach_timeout)
        for line in reader.follow(context):
            try:
                self.handle_line(parser, line)
            except Exception:
                logger.warning("LogWatcher: skipping line that failed to process: %r", line[:200], exc_info=True)

    def handle_line(self, parser: LineParser, line: str) -> Optional[RequestEvent]:
        """Parse one line and dispatch the resulting event, if any."""
        result = parser.parse(line)
        if not result.is_request:
            return None
        event = result.event
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning("LogWatcher: listener failed for %s", event.id, exc_info=True)
        self.owner.apply_increment(event).add_done_callback(self._log_failure)
        return event

    @staticmethod
    def _log_failure(future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.warning("LogWatcher: failed to persist request: %s", error)
