"""Durable key-value storage for the offline queue."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger("harbor.sync.storage")

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    """JSON blob storage. Implementations never raise on I/O failure."""

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> bool: ...

    def remove(self, key: str) -> bool: ...


class MemoryStore:
    """Process-local store, used when durable storage is disabled and in tests."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> bool:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error("Failed to serialize %s: %s", key, e)
            return False
        return True

    def remove(self, key: str) -> bool:
        self._data.pop(key, None)
        return True


class JsonFileStore:
    """Stores each key as ``<directory>/<key>.json``.

    Writes go through a temporary file and ``os.replace`` so a crash never
    leaves a half-written queue behind.
    """

    def __init__(self, directory: Path):
        self.directory = directory

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load %s from %s: %s", key, path, e)
            return None

    def set(self, key: str, value: Any) -> bool:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to persist %s to %s: %s", key, path, e)
            return False
        logger.debug("Persisted %s to %s", key, path)
        return True

    def remove(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.error("Failed to remove %s: %s", path, e)
            return False
        return True


__all__ = ["KeyValueStore", "MemoryStore", "JsonFileStore"]
