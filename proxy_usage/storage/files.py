"""
JSON file persistence.

Provides atomic writes (temp sibling + rename) and tolerant reads for the
analytics snapshots.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a snapshot cannot be written to disk.

    The previously saved file remains the authoritative version.
    """
    def __init__(self, message: str, path: Path):
        super().__init__(message)
        self.path = path


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to path so that readers see either the old or the new file.

    The payload is written to a temporary sibling, flushed to disk and then
    renamed over the canonical path. A failure at any step leaves the
    existing file untouched.

    Args:
        path: Canonical file path
        data: JSON-serializable payload

    Raises:
        PersistenceError: If the temp file cannot be written or renamed
    """
    path = Path(path)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(data, indent=2)
        with open(temp_path, 'w', encoding='utf-8') as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except (OSError, TypeError, ValueError) as e:
        try:
            temp_path.unlink()
        except OSError:
            pass
        raise PersistenceError(f"Failed to write {path}: {e}", path) from e


def read_json(path: Path) -> Optional[Any]:
    """Read a JSON file, returning None when it is missing or unreadable.

    Corrupt state is never fatal: callers fall back to defaults.
    """
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable snapshot %s: %s", path, e)
        return None
