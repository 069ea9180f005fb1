from __future__ import annotations

"""
Key-value persistence for corpus snapshots.

Backends implement three methods, ``get``, ``put`` and ``delete``.
They store opaque JSON-serializable values and know nothing about
expiry: freshness is judged by the caller from the timestamp it wrote
into the value.  Calls are blocking and may come from worker threads.
"""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from loguru import logger

from .config import CACHE_DIR


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryCache:
    """In-process cache, mostly useful for tests and one-shot CLI runs."""

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def put(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


_SAFE_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]+")


class JsonFileCache:
    """
    One JSON document per key under ``directory``.

    Writes go to a temporary file in the same directory followed by
    ``os.replace`` so a crash mid-write never leaves a truncated
    snapshot behind.  Unreadable files are reported as a miss.
    """

    def __init__(self, directory: Path = CACHE_DIR) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = _SAFE_KEY_RE.sub("_", key)
        return self.directory / f"{safe}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Cache entry {} unreadable ({}); treating as miss", path, e)
            return None

    def put(self, key: str, value: Any) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.info("Cache entry written to {}", path)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()
            logger.info("Cache entry {} removed", path)
