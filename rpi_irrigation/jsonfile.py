"""Whole-file JSON persistence shared by the device registry and schedule store."""
from __future__ import annotations

import json
import os
import threading
from typing import Any

from .errors import StorageFailure

_LOCK = threading.Lock()


def read_json(path: str) -> Any:
    try:
        with open(path, "r") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise StorageFailure(f"Failed to read {path}: {e}") from e


def write_json(path: str, data: Any) -> None:
    """Atomically replace ``path`` with ``data``."""
    tmp = path + ".tmp"
    try:
        with _LOCK:
            with open(tmp, "w") as f:
                json.dump(data, f, indent=4)
            os.replace(tmp, path)
    except (OSError, TypeError, ValueError) as e:
        raise StorageFailure(f"Failed to write {path}: {e}") from e
