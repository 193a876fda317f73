"""Snapshot storage backends.

Provides the localStorage-style key/value slots the durable queue, token
lifecycle, identity and consent persist into. Each key holds one string
value that is replaced wholesale on every write.

Backends:
- InMemoryStorage: process-local dict (no persistence across restarts)
- FileStorage: one file per key inside a directory, atomic replace on write

Both backends enforce an optional byte quota across all keys and raise
StorageQuotaExceededError when a write would exceed it.
"""

import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Optional

from trackwire.errors import StorageError, StorageQuotaExceededError
from trackwire.protocols import LoggerProtocol
from trackwire.utils.logging import get_component_logger

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


def _byte_size(value: str) -> int:
    return len(value.encode("utf-8"))


class InMemoryStorage:
    """In-memory storage for tests and non-persistent deployments."""

    def __init__(
        self,
        quota_bytes: Optional[int] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._items: Dict[str, str] = {}
        self._quota_bytes = quota_bytes
        self._logger = get_component_logger("InMemoryStorage", logger)

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            used = sum(_byte_size(v) for k, v in self._items.items() if k != key)
            size = used + _byte_size(value)
            if size > self._quota_bytes:
                raise StorageQuotaExceededError(key, size, self._quota_bytes)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self):
        return list(self._items.keys())


class FileStorage:
    """File-backed storage: one file per key under a directory.

    Writes go to a temporary file that is atomically renamed over the
    target, so a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(
        self,
        directory: str,
        quota_bytes: Optional[int] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._quota_bytes = quota_bytes
        self._logger = get_component_logger("FileStorage", logger)

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            self._logger.warning("storage_read_failed", key=key, error=str(e))
            return None

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        if self._quota_bytes is not None:
            size = self._used_bytes(exclude=path) + _byte_size(value)
            if size > self._quota_bytes:
                raise StorageQuotaExceededError(key, size, self._quota_bytes)

        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_name, path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise StorageError(key, str(e)) from e

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def _used_bytes(self, exclude: Path) -> int:
        total = 0
        for entry in self._directory.glob("*.json"):
            if entry != exclude:
                try:
                    total += entry.stat().st_size
                except OSError:
                    continue
        return total


def create_storage(
    directory: Optional[str] = None,
    quota_bytes: Optional[int] = None,
    logger: Optional[LoggerProtocol] = None,
):
    """Pick a backend: FileStorage when a directory is configured."""
    if directory:
        return FileStorage(directory, quota_bytes=quota_bytes, logger=logger)
    return InMemoryStorage(quota_bytes=quota_bytes, logger=logger)


__all__ = [
    "InMemoryStorage",
    "FileStorage",
    "create_storage",
]
