"""
Unit tests for log file tailing.

Tests attach-at-end, partial lines, truncation, replacement and stopping.
"""

import os
import shutil
import tempfile
import threading
from pathlib import Path

import pytest

from proxy_usage.core.context import WatcherContext
from proxy_usage.core.tail import TailReader


def append(path: Path, text: str) -> None:
    with open(path, 'a', encoding='utf-8') as f:
        f.write(text)


class TestTailReader:
    """Test polling reads against a real file."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.log_path = Path(self.temp_dir) / "main.log"
        self.log_path.write_text("old line 1\nold line 2\n", encoding='utf-8')

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_attach_skips_existing_content(self):
        reader = TailReader(self.log_path)
        assert reader.attach()

        assert reader.poll() == []
        assert reader.position == self.log_path.stat().st_size
        reader.close()

    def test_reads_appended_lines(self):
        reader = TailReader(self.log_path)
        reader.attach()

        append(self.log_path, "new 1\nnew 2\n")

        assert reader.poll() == ["new 1", "new 2"]
        assert reader.poll() == []
        reader.close()

    def test_reattach_replays_nothing(self):
        reader = TailReader(self.log_path)
        reader.attach()
        append(self.log_path, "a\nb\nc\n")
        assert len(reader.poll()) == 3
        reader.close()

        reader.attach()
        assert reader.poll() == []
        reader.close()

    def test_partial_line_is_held_back(self):
        reader = TailReader(self.log_path)
        reader.attach()

        append(self.log_path, "complete\nhalf")
        assert reader.poll() == ["complete"]

        append(self.log_path, " done\n")
        assert reader.poll() == ["half done"]
        reader.close()

    def test_crlf_and_invalid_utf8(self):
        reader = TailReader(self.log_path)
        reader.attach()

        with open(self.log_path, 'ab') as f:
            f.write(b"windows\r\nbad \xff byte\n")

        lines = reader.poll()
        assert lines[0] == "windows"
        assert lines[1] == "bad � byte"
        reader.close()

    def test_truncation_reads_from_start(self):
        self.log_path.write_text("x" * 200 + "\n", encoding='utf-8')
        reader = TailReader(self.log_path)
        reader.attach()

        with open(self.log_path, 'w', encoding='utf-8') as f:
            f.write("r1\nr2\n")

        assert reader.poll() == ["r1", "r2"]
        reader.close()

    def test_replacement_reads_new_file(self):
        reader = TailReader(self.log_path)
        reader.attach()

        rotated = Path(self.temp_dir) / "main.log.1"
        os.rename(self.log_path, rotated)
        lines = [f"line {i}" for i in range(5)]
        self.log_path.write_text("".join(f"{line}\n" for line in lines), encoding='utf-8')

        assert reader.poll() == lines
        reader.close()

    def test_missing_file_during_rotation(self):
        reader = TailReader(self.log_path)
        reader.attach()

        os.remove(self.log_path)
        assert reader.poll() == []

        self.log_path.write_text("fresh\n", encoding='utf-8')
        assert reader.poll() == ["fresh"]
        reader.close()

    def test_invalid_poll_interval(self):
        with pytest.raises(ValueError, match="poll_interval"):
            TailReader(self.log_path, poll_interval=0)


class TestFollow:
    """Test the follow generator's lifecycle."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.log_path = Path(self.temp_dir) / "main.log"

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_gives_up_when_file_never_appears(self):
        reader = TailReader(self.log_path, poll_interval=0.01, attach_timeout=0.05)
        assert list(reader.follow(WatcherContext())) == []

    def test_stop_ends_iteration(self):
        self.log_path.write_text("", encoding='utf-8')
        reader = TailReader(self.log_path, poll_interval=0.01)
        context = WatcherContext()
        received = []

        def consume():
            for line in reader.follow(context):
                received.append(line)
                if len(received) == 2:
                    context.stop()

        thread = threading.Thread(target=consume)
        thread.start()
        # Keep appending until the consumer has attached and seen two lines
        for i in range(500):
            if not thread.is_alive():
                break
            append(self.log_path, f"line {i}\n")
            thread.join(timeout=0.01)

        thread.join(timeout=5)
        assert not thread.is_alive()
        assert len(received) >= 2
        assert not reader.attached
