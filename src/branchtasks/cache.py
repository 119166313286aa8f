"""Parse cache for task files, keyed by modification time."""

import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import structlog

from branchtasks.errors import CacheInconsistency
from branchtasks.models.task import TaskRecord

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    modified: datetime
    record: TaskRecord


def file_mtime(path: str) -> Optional[datetime]:
    """Return the on-disk modification time of a file, or None if it is gone."""
    try:
        return datetime.fromtimestamp(os.stat(path).st_mtime, tz=timezone.utc)
    except OSError:
        return None


class ParseCache:
    """Memoizes decoded task records per path.

    An entry is only valid while its stored time equals the file's current
    time. Keys are file paths for working-tree files and ``branch:path`` for
    files read from other branches. Anything that writes a task file must
    call ``invalidate`` (or ``invalidate_all``) before the next read.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

        # Stats
        self.hits = 0
        self.misses = 0

    def get(self, path: str, modified: Optional[datetime] = None) -> Optional[TaskRecord]:
        """Return the cached record for a path if it is still current.

        Args:
            path: Cache key
            modified: Current modification time; when omitted the file is
                stat'ed on disk

        Returns:
            Cached record, or None on a miss
        """
        if modified is None:
            modified = file_mtime(path)

        with self._lock:
            entry = self._entries.get(path)
            if entry is None or modified is None:
                if entry is not None:
                    del self._entries[path]
                self.misses += 1
                return None

            try:
                self._check(path, entry)
            except CacheInconsistency as e:
                logger.debug("parse_cache_inconsistent", path=path, error=str(e))
                del self._entries[path]
                self.misses += 1
                return None

            if entry.modified != modified:
                # Stale: drop it so a put with an older time can still land
                del self._entries[path]
                self.misses += 1
                return None

            self.hits += 1
            return entry.record

    def put(self, path: str, modified: datetime, record: TaskRecord) -> bool:
        """Store a record. A put older than the stored entry is ignored.

        Returns:
            True if the record was stored
        """
        with self._lock:
            existing = self._entries.get(path)
            if existing is not None and existing.modified > modified:
                logger.debug("parse_cache_put_ignored", path=path)
                return False
            self._entries[path] = CacheEntry(modified=modified, record=record)
            return True

    def invalidate(self, path: str) -> None:
        with self._lock:
            self._entries.pop(path, None)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def prune(self, scope: str, present: Iterable[str]) -> int:
        """Evict entries under ``scope`` that a fresh listing no longer reports.

        Args:
            scope: Key prefix the listing covers (a directory or ``branch:dir/``)
            present: Keys the listing reported

        Returns:
            Number of evicted entries
        """
        keep = set(present)
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(scope) and key not in keep]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("parse_cache_pruned", scope=scope, evicted=len(doomed))
        return len(doomed)

    def keys(self) -> List[str]:
        """Snapshot of the current cache keys."""
        with self._lock:
            return list(self._entries)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dictionary with cache stats
        """
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0.0

        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate:.1f}%",
            "entries": len(self),
        }

    def _check(self, path: str, entry: CacheEntry) -> None:
        if not isinstance(entry.record, TaskRecord) or not isinstance(entry.modified, datetime):
            raise CacheInconsistency(f"Malformed cache entry for {path}")
