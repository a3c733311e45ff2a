"""
Log file tailing.

Follows a growing log file from its current end by polling, surviving
truncation and replacement of the file.
"""

import logging
import os
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Union

from .context import WatcherContext

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_ATTACH_TIMEOUT = 15.0


class TailReader:
    """Polling tail over one file path.

    Only lines appended after attach() are delivered; content already in the
    file is never replayed. A file that shrinks below the read position, or
    whose path now points at a different inode, is treated as rotated and
    re-read from the start. Incomplete trailing lines are held back until
    their newline arrives.
    """

    def __init__(
        self,
        path: Union[str, Path],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        attach_timeout: float = DEFAULT_ATTACH_TIMEOUT,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        self.path = Path(path)
        self.poll_interval = poll_interval
        self.attach_timeout = attach_timeout
        self._file: Optional[BinaryIO] = None
        self._inode: Optional[int] = None
        self._position = 0
        self._partial = b""
        self._reopen_pending = False

    @property
    def attached(self) -> bool:
        return self._file is not None

    @property
    def position(self) -> int:
        return self._position

    def wait_for_file(self, context: WatcherContext) -> bool:
        """Wait a bounded time for the log file to appear.

        Returns:
            True if the file exists, False on timeout or stop
        """
        attempts = max(1, int(self.attach_timeout / self.poll_interval))
        for _ in range(attempts):
            if self.path.exists():
                return True
            if context.wait(self.poll_interval):
                return False
        return self.path.exists()

    def attach(self) -> bool:
        """Open the file and seek to its end.

        Returns:
            True on success; failures are logged and can be retried
        """
        self.close()
        try:
            f = open(self.path, 'rb')
        except OSError as e:
            logger.warning("Failed to open log file %s: %s", self.path, e)
            return False
        f.seek(0, os.SEEK_END)
        self._file = f
        self._position = f.tell()
        self._inode = os.fstat(f.fileno()).st_ino
        self._partial = b""
        return True

    def poll(self) -> List[str]:
        """Read all complete lines appended since the previous poll."""
        if self._file is None:
            # A failed reopen after rotation is retried on every poll
            if not self._reopen_pending or not self._reopen():
                return []
        try:
            stat = os.stat(self.path)
        except FileNotFoundError:
            # Rotated away; the writer has not created the new file yet
            return []
        except OSError as e:
            logger.warning("Failed to stat log file %s: %s", self.path, e)
            return []

        if stat.st_size < self._position or stat.st_ino != self._inode:
            logger.info("Log file %s rotated, reading from start", self.path)
            if not self._reopen():
                return []
            stat = os.fstat(self._file.fileno())

        if stat.st_size == self._position:
            return []

        try:
            self._file.seek(self._position)
            data = self._file.read()
            self._position = self._file.tell()
        except OSError as e:
            logger.warning("Failed to read log file %s: %s", self.path, e)
            return []

        chunks = (self._partial + data).split(b"\n")
        self._partial = chunks.pop()
        return [chunk.decode('utf-8', errors='replace').rstrip("\r") for chunk in chunks]

    def follow(self, context: WatcherContext) -> Iterator[str]:
        """Yield new lines until the context is stopped.

        Waits for the file to exist, attaches at its end and polls every
        poll_interval seconds. Gives up silently if the file never appears.
        """
        if not self.wait_for_file(context):
            logger.info("Log file %s not found, not watching", self.path)
            return

        while not self.attach():
            if context.wait(self.poll_interval):
                return

        logger.info("Started watching %s", self.path)
        try:
            while not context.wait(self.poll_interval):
                for line in self.poll():
                    yield line
        finally:
            self.close()
            logger.info("Stopped watching %s", self.path)

    def close(self) -> None:
        self._reopen_pending = False
        if self._file is not None:
            try:
                self._file.close()
            except OSError:
                pass
            self._file = None

    def _reopen(self) -> bool:
        self.close()
        try:
            f = open(self.path, 'rb')
        except OSError as e:
            logger.warning("Failed to reopen log file %s after rotation: %s", self.path, e)
            self._reopen_pending = True
            return False
        self._file = f
        self._position = 0
        self._inode = os.fstat(f.fileno()).st_ino
        self._partial = b""
        return True
