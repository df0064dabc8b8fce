"""Tests for branch-state caches."""

from __future__ import annotations

import json

from mirrorsync.cache import (
    BranchStateCache,
    DiskCacheStore,
    MemoryCacheStore,
    NullCacheStore,
    create_cache_store,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestMemoryCacheStore:
    def test_get_missing(self):
        assert MemoryCacheStore().get("nope") is None

    def test_set_then_get(self):
        store = MemoryCacheStore()
        store.set("k", True, ttl_minutes=5)
        assert store.get("k") is True
        assert len(store) == 1

    def test_entries_expire(self):
        clock = FakeClock()
        store = MemoryCacheStore(clock=clock)
        store.set("k", False, ttl_minutes=1)
        clock.now += 59
        assert store.get("k") is False
        clock.now += 2
        assert store.get("k") is None
        assert len(store) == 0


class TestDiskCacheStore:
    def test_round_trip(self, tmp_path):
        store = DiskCacheStore(tmp_path / "cache")
        store.set("conflict:main:a:b:c", True, ttl_minutes=10)
        assert store.get("conflict:main:a:b:c") is True
        assert store.stats()["count"] == 1

    def test_survives_new_instance(self, tmp_path):
        DiskCacheStore(tmp_path / "cache").set("k", {"x": 1}, ttl_minutes=10)
        assert DiskCacheStore(tmp_path / "cache").get("k") == {"x": 1}

    def test_expired_entry_is_removed(self, tmp_path):
        clock = FakeClock()
        store = DiskCacheStore(tmp_path / "cache", clock=clock)
        store.set("k", True, ttl_minutes=1)
        clock.now += 120
        assert store.get("k") is None
        assert store.stats()["count"] == 0

    def test_corrupt_file_is_a_miss(self, tmp_path):
        store = DiskCacheStore(tmp_path / "cache")
        store.set("k", True, ttl_minutes=10)
        for path in (tmp_path / "cache").glob("*.json"):
            path.write_text("{not json")
        assert store.get("k") is None

    def test_key_is_checked(self, tmp_path):
        store = DiskCacheStore(tmp_path / "cache")
        store.set("k", True, ttl_minutes=10)
        for path in (tmp_path / "cache").glob("*.json"):
            data = json.loads(path.read_text())
            data["key"] = "other"
            path.write_text(json.dumps(data))
        assert store.get("k") is None

    def test_no_temp_files_left(self, tmp_path):
        store = DiskCacheStore(tmp_path / "cache")
        store.set("a", 1, ttl_minutes=10)
        store.set("a", 2, ttl_minutes=10)
        assert list((tmp_path / "cache").glob("*.tmp")) == []
        assert store.get("a") == 2


def test_null_store_always_misses():
    store = NullCacheStore()
    store.set("k", True, ttl_minutes=10)
    assert store.get("k") is None


def test_create_cache_store(tmp_path):
    assert isinstance(create_cache_store("memory"), MemoryCacheStore)
    assert isinstance(create_cache_store("none"), NullCacheStore)
    disk = create_cache_store("disk", tmp_path / "d")
    assert isinstance(disk, DiskCacheStore)
    assert disk.cache_dir == tmp_path / "d"


class TestBranchStateCache:
    def test_keys_are_content_addressed(self):
        assert BranchStateCache.conflict_key("main", "a1", "update/x", "b2") == "conflict:main:a1:update/x:b2"
        assert BranchStateCache.modified_key("update/x", "b2") == "modified:update/x:b2"

    def test_conflict_round_trip(self):
        cache = BranchStateCache(MemoryCacheStore())
        assert cache.get_conflict("main", "a1", "x", "b2") is None
        cache.set_conflict("main", "a1", "x", "b2", True)
        assert cache.get_conflict("main", "a1", "x", "b2") is True
        # A moved branch is a different key
        assert cache.get_conflict("main", "a1", "x", "b3") is None
        assert cache.get_conflict("main", "a2", "x", "b2") is None

    def test_modified_round_trip(self):
        cache = BranchStateCache(MemoryCacheStore())
        cache.set_modified("x", "b2", False)
        assert cache.get_modified("x", "b2") is False
        assert cache.get_modified("x", "b3") is None

    def test_non_boolean_values_are_ignored(self):
        store = MemoryCacheStore()
        cache = BranchStateCache(store)
        store.set(cache.modified_key("x", "b2"), "yes", ttl_minutes=10)
        assert cache.get_modified("x", "b2") is None

    def test_null_store_still_works(self):
        cache = BranchStateCache(NullCacheStore())
        cache.set_conflict("main", "a", "x", "b", False)
        assert cache.get_conflict("main", "a", "x", "b") is None

    def test_ttl_is_forwarded(self):
        clock = FakeClock()
        cache = BranchStateCache(MemoryCacheStore(clock=clock), ttl_minutes=2)
        cache.set_modified("x", "b", True)
        clock.now += 3 * 60
        assert cache.get_modified("x", "b") is None
