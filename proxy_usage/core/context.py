"""
Watcher lifecycle context.

Carries the stop flag and the request id counter for one watcher instance.
"""

import itertools
import threading


class WatcherContext:
    """Explicit lifecycle state passed to a log watcher at start time.

    The counter survives stop/start cycles, so request ids are never reused
    within a process; combined with the timestamp they stay unique across
    restarts.
    """

    def __init__(self):
        self._stop_event = threading.Event()
        self._counter = itertools.count()
        self._counter_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self) -> None:
        """Ask the worker to stop; it observes this within one poll interval."""
        self._stop_event.set()

    def restart(self) -> None:
        """Clear the stop flag so the context can drive a new worker."""
        self._stop_event.clear()

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds, waking early on stop.

        Returns:
            True if the context was stopped
        """
        return self._stop_event.wait(timeout)

    def next_id(self) -> int:
        with self._counter_lock:
            return next(self._counter)
