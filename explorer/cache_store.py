"""Quota-aware, expiring cache for search results and item details.

Entries are JSON documents kept in a character-quota-limited key/value
backing store. Two backing stores are provided:
- MemoryStore: in-process dict (same semantics as browser local storage)
- JsonFileStore: dict persisted to a JSON file between runs

Features:
- Fixed TTL per entry (30 minutes by default)
- Corrupt entries are deleted and reported as a miss
- Quota pressure triggers eviction (expired first, then oldest) before writing
- Thread-safe: every evict-then-write sequence runs under one re-entrant lock
"""
from __future__ import annotations

import json
import logging
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from api.core.config import get_cache_config, get_cache_ttl_seconds
from api.model import CacheCorruptionError, QuotaExceededError

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "archive_explorer:"
DEFAULT_TTL_S = 30 * 60
DEFAULT_QUOTA_CHARS = 5_000_000

_WHITESPACE = re.compile(r"\s+")


# ============================================================================
# Backing stores
# ============================================================================

class MemoryStore:
    """Key/value store with a character quota over keys and values."""

    def __init__(self, quota_chars: int = DEFAULT_QUOTA_CHARS):
        self._quota = int(quota_chars)
        self._data: Dict[str, str] = {}
        self._batch_depth = 0
        self._dirty = False

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        """Store a value.

        Raises:
            QuotaExceededError: The write would exceed the quota
        """
        old = self._data.get(key)
        freed = len(key) + len(old) if old is not None else 0
        if self.used() - freed + len(key) + len(value) > self._quota:
            raise QuotaExceededError(f"Storage quota of {self._quota} characters exceeded")
        self._data[key] = value
        self._changed()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._changed()

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def used(self) -> int:
        return sum(len(k) + len(v) for k, v in self._data.items())

    def quota(self) -> int:
        return self._quota

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Defer persistence until the outermost batch ends."""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty:
                self._dirty = False
                self._persist()

    def _changed(self) -> None:
        if self._batch_depth:
            self._dirty = True
        else:
            self._persist()

    def _persist(self) -> None:
        """Hook for stores that write through to disk."""


class JsonFileStore(MemoryStore):
    """MemoryStore that persists its contents to a JSON file."""

    def __init__(self, path: str, quota_chars: int = DEFAULT_QUOTA_CHARS):
        super().__init__(quota_chars)
        self._path = Path(path)
        self._load()

    def _load(self) -> None:
        """Load stored entries from disk."""
        if not self._path.exists():
            logger.debug("No existing cache file at %s", self._path)
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
            entries = data.get("entries", {}) if isinstance(data, dict) else {}
            self._data = {str(k): str(v) for k, v in entries.items()}
            logger.info("Loaded %d cache entr(ies) from %s", len(self._data), self._path)
        except Exception as e:
            logger.warning("Failed to load cache file %s: %s", self._path, e)

    def _persist(self) -> None:
        """Save entries to disk."""
        try:
            data = {
                "entries": self._data,
                "last_updated": datetime.now(timezone.utc).isoformat(),
            }
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(data, f)
        except Exception as e:
            logger.warning("Failed to save cache file %s: %s", self._path, e)


# ============================================================================
# Cache entries
# ============================================================================

@dataclass
class CacheEntry:
    """A stored payload with its timestamps (seconds since the epoch)."""

    key: str
    payload: Any
    stored_at: float
    expires_at: float
    source: str = ""

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_json(self) -> str:
        return json.dumps({
            "key": self.key,
            "payload": self.payload,
            "stored_at": self.stored_at,
            "expires_at": self.expires_at,
            "source": self.source,
        })

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        """Parse a stored entry.

        Raises:
            CacheCorruptionError: The text is not a valid entry
        """
        try:
            data = json.loads(raw)
            return cls(
                key=str(data["key"]),
                payload=data["payload"],
                stored_at=float(data["stored_at"]),
                expires_at=float(data["expires_at"]),
                source=str(data.get("source") or ""),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise CacheCorruptionError(f"Unreadable cache entry: {e}") from e


def normalize_query(query: str) -> str:
    """Trim, lower-case and collapse whitespace."""
    return _WHITESPACE.sub(" ", (query or "").strip().lower())


def search_key(query: str, sources: Iterable[str]) -> str:
    """Cache key for a search over a set of sources."""
    return f"search:{','.join(sorted(set(sources)))}:{normalize_query(query)}"


def item_key(source: str, record_id: str) -> str:
    """Cache key for one item's details."""
    return f"item:{source}:{record_id}"


# ============================================================================
# Cache store
# ============================================================================

class CacheStore:
    """Expiring cache over a quota-limited backing store."""

    def __init__(
        self,
        store: Optional[MemoryStore] = None,
        prefix: str = DEFAULT_PREFIX,
        ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.time,
        near_quota_ratio: float = 0.9,
    ):
        self._store = store if store is not None else MemoryStore()
        self._prefix = prefix
        self._ttl_s = float(ttl_s)
        self._clock = clock
        self._near_quota_ratio = float(near_quota_ratio)
        self._lock = threading.RLock()

    @property
    def store(self) -> MemoryStore:
        return self._store

    def _own_keys(self) -> List[str]:
        return [k for k in self._store.keys() if k.startswith(self._prefix)]

    def get(self, key: str) -> Optional[CacheEntry]:
        """Look up a live entry; expired or corrupt entries are removed."""
        full_key = self._prefix + key
        with self._lock:
            raw = self._store.get(full_key)
            if raw is None:
                return None
            try:
                entry = CacheEntry.from_json(raw)
            except CacheCorruptionError as e:
                logger.warning("Discarding corrupt cache entry %s: %s", key, e)
                self._store.delete(full_key)
                return None
            if entry.is_expired(self._clock()):
                logger.debug("Cache entry %s expired", key)
                self._store.delete(full_key)
                return None
            return entry

    def set(self, key: str, payload: Any, ttl: Optional[float] = None, source: str = "") -> bool:
        """Store a payload.

        Args:
            key: Cache key (see search_key / item_key)
            payload: JSON-serializable value
            ttl: Lifetime in seconds (defaults to the store TTL)
            source: Source label used by clear() and stats()

        Returns:
            True if the entry was written
        """
        now = self._clock()
        entry = CacheEntry(
            key=key,
            payload=payload,
            stored_at=now,
            expires_at=now + (self._ttl_s if ttl is None else float(ttl)),
            source=source,
        )
        try:
            serialized = entry.to_json()
        except (TypeError, ValueError) as e:
            logger.warning("Cache payload for %s is not serializable; skipping write: %s", key, e)
            return False

        full_key = self._prefix + key
        size = len(full_key) + len(serialized)

        with self._lock, self._store.batch():
            if size > self._store.quota():
                logger.warning("Cache entry %s (%d chars) exceeds the whole quota; skipping write", key, size)
                return False

            if self._store.used() + size > self._store.quota() * self._near_quota_ratio:
                self.evict_expired()

            try:
                self._store.set(full_key, serialized)
                return True
            except QuotaExceededError:
                logger.info("Cache quota reached while writing %s; evicting entries", key)

            self.evict_expired()
            self.evict_oldest_until_fits(size)
            try:
                self._store.set(full_key, serialized)
                return True
            except QuotaExceededError as e:
                logger.warning("Cache disabled for this write (%s): %s", key, e)
                return False

    def _scan(self) -> List[tuple[str, Optional[CacheEntry]]]:
        entries = []
        for full_key in self._own_keys():
            raw = self._store.get(full_key)
            if raw is None:
                continue
            try:
                entries.append((full_key, CacheEntry.from_json(raw)))
            except CacheCorruptionError:
                entries.append((full_key, None))
        return entries

    def evict_expired(self) -> int:
        """Remove expired and corrupt entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = 0
        with self._lock, self._store.batch():
            for full_key, entry in self._scan():
                if entry is None or entry.is_expired(now):
                    self._store.delete(full_key)
                    removed += 1
        if removed:
            logger.debug("Evicted %d expired cache entr(ies)", removed)
        return removed

    def evict_oldest_until_fits(self, new_size: int) -> int:
        """Remove entries, oldest first, until new_size more characters fit.

        Corrupt entries count as the oldest.

        Returns:
            Number of entries removed
        """
        removed = 0
        with self._lock, self._store.batch():
            entries = self._scan()
            entries.sort(key=lambda pair: pair[1].stored_at if pair[1] is not None else 0.0)
            for full_key, _entry in entries:
                if self._store.used() + new_size <= self._store.quota():
                    break
                self._store.delete(full_key)
                removed += 1
        if removed:
            logger.info("Evicted %d cache entr(ies) to free space", removed)
        return removed

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.delete(self._prefix + key)

    def clear(self, source: Optional[str] = None) -> int:
        """Remove all entries, or only those tagged with one source.

        Search entries spanning several sources are tagged with each of them
        (comma-separated), so clearing one source removes them too.

        Returns:
            Number of entries removed
        """
        removed = 0
        with self._lock, self._store.batch():
            for full_key, entry in self._scan():
                if source is not None:
                    if entry is None or source not in entry.source.split(","):
                        continue
                self._store.delete(full_key)
                removed += 1
        return removed

    def stats(self) -> Dict[str, int]:
        """Entry counts per source, plus total and corrupted."""
        stats: Dict[str, int] = {"total": 0, "corrupted": 0}
        with self._lock:
            for _full_key, entry in self._scan():
                stats["total"] += 1
                if entry is None:
                    stats["corrupted"] += 1
                    continue
                for source in filter(None, entry.source.split(",")):
                    stats[source] = stats.get(source, 0) + 1
        return stats


def build_cache_store(state_file: Optional[str] = None) -> Optional[CacheStore]:
    """Create the cache store described by the configuration.

    Args:
        state_file: JSON file to persist entries in (overrides cache.state_file)

    Returns:
        CacheStore, or None when caching is disabled
    """
    cc = get_cache_config()
    if not cc.get("enabled", True):
        logger.info("Result cache disabled by configuration")
        return None

    quota = int(cc.get("quota_chars", DEFAULT_QUOTA_CHARS) or DEFAULT_QUOTA_CHARS)
    state_file = state_file or cc.get("state_file")
    store = JsonFileStore(state_file, quota) if state_file else MemoryStore(quota)
    ttl_s = get_cache_ttl_seconds()
    return CacheStore(store, ttl_s=ttl_s, near_quota_ratio=float(cc.get("near_quota_ratio", 0.9) or 0.9))


__all__ = [
    "MemoryStore",
    "JsonFileStore",
    "CacheEntry",
    "CacheStore",
    "normalize_query",
    "search_key",
    "item_key",
    "build_cache_store",
]
