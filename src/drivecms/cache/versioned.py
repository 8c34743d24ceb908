"""Versioned resource cache with a JSON snapshot on disk."""

import json
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

from ..remote.base import DriveCMSError
from ..utils.logging import get_logger


class DurableStoreReadError(DriveCMSError):
    """Raised when the cache snapshot exists but cannot be read."""
    pass


class DurableStoreWriteError(DriveCMSError):
    """Raised when the cache snapshot cannot be written."""
    pass


@dataclass(frozen=True)
class CacheEntry:
    """Last synchronized version of a resource and its normalized payload."""

    version: int
    payload: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "payload": self.payload}


class VersionedCache:
    """Mapping from resource id to its last synchronized (version, payload).

    Entries are only ever replaced whole through ``put``. The cache does not
    check version ordering; callers decide when an entry is stale.
    """

    def __init__(self, snapshot_path: Optional[Union[str, Path]] = None):
        """Initialize an empty cache.

        Args:
            snapshot_path: JSON file used by ``load`` and ``snapshot``
        """
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.logger = get_logger(self.__class__.__name__)

    def get(self, resource_id: str) -> Optional[CacheEntry]:
        return self._entries.get(resource_id)

    def put(self, resource_id: str, version: int, payload: Any) -> CacheEntry:
        entry = CacheEntry(version=version, payload=payload)
        with self._lock:
            self._entries[resource_id] = entry
        return entry

    def entries(self) -> Dict[str, CacheEntry]:
        """Copy of the current mapping, safe to hand to readers."""
        with self._lock:
            return dict(self._entries)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """JSON-ready form of the whole cache."""
        return {resource_id: entry.to_dict() for resource_id, entry in self.entries().items()}

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> None:
        """Replace the in-memory mapping with the snapshot on disk.

        A missing snapshot leaves the cache empty. An unreadable one is
        logged and also leaves the cache empty.
        """
        if self.snapshot_path is None or not self.snapshot_path.exists():
            self.logger.info("No cache found", path=str(self.snapshot_path))
            return

        try:
            entries = self._read_snapshot(self.snapshot_path)
        except DurableStoreReadError as e:
            self.logger.error("Failed to read cache", path=str(self.snapshot_path), error=str(e))
            return

        with self._lock:
            self._entries = entries
        self.logger.info("Cache loaded from file", path=str(self.snapshot_path), entries=len(entries))

    def snapshot(self) -> bool:
        """Write the whole mapping to disk.

        Returns:
            True on success; failures are logged, never raised
        """
        if self.snapshot_path is None:
            return False

        try:
            self._write_snapshot(self.snapshot_path, self.to_dict())
        except DurableStoreWriteError as e:
            self.logger.error("Failed to write cache", path=str(self.snapshot_path), error=str(e))
            return False

        self.logger.info("Cache stored", path=str(self.snapshot_path), entries=len(self))
        return True

    def _read_snapshot(self, path: Path) -> Dict[str, CacheEntry]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise DurableStoreReadError(f"Could not read {path}: {e}") from e

        if not isinstance(data, dict):
            raise DurableStoreReadError(f"Snapshot {path} is not a JSON object")

        entries: Dict[str, CacheEntry] = {}
        for resource_id, record in data.items():
            if not isinstance(record, dict) or "version" not in record or "payload" not in record:
                self.logger.warning("Skipping malformed cache record", resource_id=resource_id)
                continue
            try:
                version = int(record["version"])
            except (TypeError, ValueError):
                self.logger.warning("Skipping cache record with bad version", resource_id=resource_id)
                continue
            entries[resource_id] = CacheEntry(version=version, payload=record["payload"])
        return entries

    def _write_snapshot(self, path: Path, data: Dict[str, Any]) -> None:
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise DurableStoreWriteError(f"Could not write {path}: {e}") from e


@contextmanager
def managed_cache(target: Union[str, Path, VersionedCache]) -> Iterator[VersionedCache]:
    """Load a cache and snapshot it again on exit, including on errors.

    Args:
        target: An existing cache, or the snapshot path of a new one
    """
    cache = target if isinstance(target, VersionedCache) else VersionedCache(target)
    cache.load()
    try:
        yield cache
    finally:
        cache.snapshot()
