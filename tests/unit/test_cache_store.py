"""Tests for explorer/cache_store.py - Quota-aware expiring cache."""
from __future__ import annotations

import json
import os
from unittest.mock import patch

import pytest

from api.model import CacheCorruptionError, QuotaExceededError
from explorer.cache_store import (
    DEFAULT_PREFIX,
    CacheEntry,
    CacheStore,
    JsonFileStore,
    MemoryStore,
    build_cache_store,
    item_key,
    normalize_query,
    search_key,
)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestKeys:
    """Tests for cache key helpers."""

    def test_normalize_query(self):
        assert normalize_query("  Blue   POTTERY\t") == "blue pottery"
        assert normalize_query(None) == ""

    def test_search_key_is_order_independent(self):
        a = search_key("Blue  pottery", ["smithsonian", "europeana"])
        b = search_key("blue pottery", ["europeana", "smithsonian"])
        assert a == b == "search:europeana,smithsonian:blue pottery"

    def test_item_key(self):
        assert item_key("europeana", "1/x") == "item:europeana:1/x"


class TestMemoryStore:
    """Tests for MemoryStore quota accounting."""

    def test_used_counts_keys_and_values(self):
        store = MemoryStore(quota_chars=100)
        store.set("ab", "cde")
        assert store.used() == 5

    def test_overwrite_frees_old_value(self):
        store = MemoryStore(quota_chars=10)
        store.set("k", "123456789")
        store.set("k", "987654321")
        assert store.get("k") == "987654321"

    def test_quota_exceeded(self):
        store = MemoryStore(quota_chars=10)
        with pytest.raises(QuotaExceededError):
            store.set("key", "way too long")
        assert store.keys() == []


class TestCacheEntry:
    """Tests for CacheEntry parsing."""

    def test_round_trip(self):
        entry = CacheEntry(key="k", payload={"a": [1, 2]}, stored_at=1.0, expires_at=2.0, source="europeana")
        assert CacheEntry.from_json(entry.to_json()) == entry

    @pytest.mark.parametrize("raw", ["not json", "[]", '{"key": "k"}', '{"key": "k", "payload": 1, "stored_at": "x", "expires_at": 1}'])
    def test_corrupt_text(self, raw):
        with pytest.raises(CacheCorruptionError):
            CacheEntry.from_json(raw)


class TestGetSet:
    """Tests for CacheStore get/set and expiry."""

    def test_hit_within_ttl(self, clock):
        cache = CacheStore(MemoryStore(), ttl_s=60, clock=clock)
        assert cache.set("k", {"items": []}) is True

        clock.now += 59
        entry = cache.get("k")

        assert entry is not None
        assert entry.payload == {"items": []}
        assert entry.stored_at == 1000.0

    def test_expired_entry_is_a_miss_and_removed(self, clock):
        store = MemoryStore()
        cache = CacheStore(store, ttl_s=60, clock=clock)
        cache.set("k", 1)

        clock.now += 60

        assert cache.get("k") is None
        assert store.keys() == []

    def test_per_entry_ttl(self, clock):
        cache = CacheStore(MemoryStore(), ttl_s=60, clock=clock)
        cache.set("k", 1, ttl=5)

        clock.now += 6

        assert cache.get("k") is None

    def test_keys_are_prefixed(self):
        store = MemoryStore()
        CacheStore(store).set("k", 1)
        assert store.keys() == [DEFAULT_PREFIX + "k"]

    def test_corrupt_entry_is_deleted(self):
        store = MemoryStore()
        store.set(DEFAULT_PREFIX + "k", "{broken")
        cache = CacheStore(store)

        assert cache.get("k") is None
        assert store.keys() == []

    def test_non_serializable_payload_skipped(self):
        store = MemoryStore()
        cache = CacheStore(store)

        assert cache.set("k", {"bad": object()}) is False
        assert store.keys() == []

    def test_delete(self):
        cache = CacheStore(MemoryStore())
        cache.set("k", 1)
        cache.delete("k")
        assert cache.get("k") is None


class TestQuota:
    """Tests for quota-driven eviction."""

    PAYLOAD = "x" * 1000

    def test_oversized_entry_skipped(self):
        cache = CacheStore(MemoryStore(quota_chars=500))
        assert cache.set("big", "x" * 1000) is False

    def test_expired_entries_evicted_first(self, clock):
        store = MemoryStore(quota_chars=2500)
        cache = CacheStore(store, ttl_s=1000, clock=clock)
        cache.set("old", self.PAYLOAD, ttl=10)
        clock.now += 5
        cache.set("fresh", self.PAYLOAD)
        clock.now += 10

        assert cache.set("new", self.PAYLOAD) is True

        assert cache.get("fresh") is not None
        assert cache.get("new") is not None
        assert DEFAULT_PREFIX + "old" not in store.keys()

    def test_oldest_evicted_when_nothing_expired(self, clock):
        store = MemoryStore(quota_chars=2500)
        cache = CacheStore(store, ttl_s=1000, clock=clock, near_quota_ratio=1.0)
        cache.set("first", self.PAYLOAD)
        clock.now += 1
        cache.set("second", self.PAYLOAD)
        clock.now += 1

        assert cache.set("third", self.PAYLOAD) is True

        assert cache.get("first") is None
        assert cache.get("second") is not None
        assert cache.get("third") is not None

    def test_corrupt_entries_evicted_before_oldest(self, clock):
        store = MemoryStore(quota_chars=2500)
        cache = CacheStore(store, ttl_s=1000, clock=clock, near_quota_ratio=1.0)
        cache.set("first", self.PAYLOAD)
        store.set(DEFAULT_PREFIX + "junk", "y" * 1000)
        clock.now += 1

        assert cache.set("second", self.PAYLOAD) is True

        assert cache.get("first") is not None
        assert DEFAULT_PREFIX + "junk" not in store.keys()

    def test_foreign_keys_never_evicted(self, clock):
        store = MemoryStore(quota_chars=2500)
        store.set("other-app:data", "z" * 1500)
        cache = CacheStore(store, ttl_s=1000, clock=clock)

        assert cache.set("k", self.PAYLOAD) is False
        assert store.get("other-app:data") is not None


class TestClearAndStats:
    """Tests for clear() and stats()."""

    @pytest.fixture
    def cache(self):
        cache = CacheStore(MemoryStore())
        cache.set("search:europeana,smithsonian:jug", [], source="europeana,smithsonian")
        cache.set("item:smithsonian:1", {}, source="smithsonian")
        cache.set("item:europeana:1", {}, source="europeana")
        return cache

    def test_stats(self, cache):
        cache.store.set(DEFAULT_PREFIX + "broken", "nope")

        assert cache.stats() == {"total": 4, "corrupted": 1, "europeana": 2, "smithsonian": 2}

    def test_clear_one_source(self, cache):
        assert cache.clear("smithsonian") == 2
        assert cache.get("item:europeana:1") is not None
        assert cache.get("search:europeana,smithsonian:jug") is None

    def test_clear_all(self, cache):
        assert cache.clear() == 3
        assert cache.stats()["total"] == 0


class TestJsonFileStore:
    """Tests for JsonFileStore persistence."""

    def test_entries_survive_reload(self, temp_dir):
        path = os.path.join(temp_dir, "cache.json")
        CacheStore(JsonFileStore(path)).set("k", {"a": 1})

        reloaded = CacheStore(JsonFileStore(path))

        assert reloaded.get("k").payload == {"a": 1}

    def test_file_layout(self, temp_dir):
        path = os.path.join(temp_dir, "cache.json")
        JsonFileStore(path).set("k", "v")

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        assert data["entries"] == {"k": "v"}
        assert "last_updated" in data

    def test_unreadable_file_starts_empty(self, temp_dir):
        path = os.path.join(temp_dir, "cache.json")
        with open(path, "w", encoding="utf-8") as f:
            f.write("{not json")

        assert JsonFileStore(path).keys() == []

    def test_batch_defers_writes_until_outermost_exit(self, temp_dir):
        path = os.path.join(temp_dir, "cache.json")
        store = JsonFileStore(path)

        with store.batch():
            store.set("a", "1")
            with store.batch():
                store.set("b", "2")
            assert not os.path.exists(path)

        with open(path, "r", encoding="utf-8") as f:
            assert json.load(f)["entries"] == {"a": "1", "b": "2"}

    def test_eviction_writes_file_once(self, temp_dir, clock):
        path = os.path.join(temp_dir, "cache.json")
        store = JsonFileStore(path, quota_chars=2500)
        cache = CacheStore(store, ttl_s=1000, clock=clock, near_quota_ratio=1.0)
        cache.set("first", "x" * 1000)
        clock.now += 1
        cache.set("second", "x" * 1000)
        clock.now += 1

        with patch.object(store, "_persist", wraps=store._persist) as persist:
            assert cache.set("third", "x" * 1000) is True

        assert persist.call_count == 1
        reloaded = CacheStore(JsonFileStore(path, quota_chars=2500), clock=clock)
        assert reloaded.get("first") is None
        assert reloaded.get("third") is not None


class TestBuildCacheStore:
    """Tests for build_cache_store."""

    def test_from_config(self, mock_config):
        cache = build_cache_store()

        assert isinstance(cache.store, MemoryStore)
        assert not isinstance(cache.store, JsonFileStore)
        assert cache.store.quota() == 100_000
        assert cache._ttl_s == 600.0

    def test_disabled(self, mock_config):
        mock_config["cache"]["enabled"] = False
        assert build_cache_store() is None

    def test_state_file(self, mock_config, temp_dir):
        cache = build_cache_store(os.path.join(temp_dir, "cache.json"))
        assert isinstance(cache.store, JsonFileStore)
