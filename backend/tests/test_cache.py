from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from snack_index.models import CacheKind
from snack_index.services.cache import (
    CACHE_COLLECTION,
    LOCAL_CACHE_PREFIX,
    LocalCache,
    PersistentCache,
    TwoTierCache,
    make_cache_key,
)
from snack_index.services.store import InMemoryRecordStore


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def build(storage=None, max_entries=None):
    clock = FakeClock()
    store = InMemoryRecordStore()
    local = LocalCache(storage, max_entries=max_entries, clock=clock)
    persistent = PersistentCache(store, clock=clock)
    return TwoTierCache(local, persistent, clock=clock), store, clock


def test_key_construction() -> None:
    assert make_cache_key(CacheKind.HOURS, "abc") == "hours:abc"
    assert make_cache_key(CacheKind.PHOTO, "abc", "800") == "photo:abc:800"


def test_round_trip_fetches_once() -> None:
    cache, store, _ = build()
    fetch = MagicMock(return_value={"v": 1})
    key = make_cache_key(CacheKind.HOURS, "p1")

    first = cache.get_cached(key, CacheKind.HOURS, "p1", 3600, 600, fetch)
    second = cache.get_cached(key, CacheKind.HOURS, "p1", 3600, 600, fetch)

    assert first == second == {"v": 1}
    assert fetch.call_count == 1
    doc = store.get_by_id(CACHE_COLLECTION, key)
    assert doc is not None
    assert doc["external_id"] == "p1"
    assert doc["expires_at"] == doc["created_at"] + 3600


def test_local_expired_persistent_fresh_skips_fetch_and_repopulates_local() -> None:
    cache, _, clock = build()
    key = make_cache_key(CacheKind.DETAILS, "p1")
    cache.get_cached(key, CacheKind.DETAILS, "p1", 3600, 60, lambda: "v1")

    clock.advance(120)
    fetch = MagicMock(return_value="v2")
    assert cache.get_cached(key, CacheKind.DETAILS, "p1", 3600, 60, fetch) == "v1"
    fetch.assert_not_called()

    hit, data = cache.local.get(key, 60)
    assert hit and data == "v1"


def test_stale_persistent_entry_is_refetched() -> None:
    cache, store, clock = build()
    key = make_cache_key(CacheKind.HOURS, "p1")
    cache.get_cached(key, CacheKind.HOURS, "p1", 100, 50, lambda: "old")

    clock.advance(200)
    assert cache.get_cached(key, CacheKind.HOURS, "p1", 100, 50, lambda: "new") == "new"
    assert store.get_by_id(CACHE_COLLECTION, key)["data"] == "new"
    assert cache.local.get(key, 50) == (True, "new")


def test_fetch_errors_propagate_and_nothing_is_cached() -> None:
    cache, store, _ = build()
    key = make_cache_key(CacheKind.HOURS, "p1")

    def boom():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError, match="upstream down"):
        cache.get_cached(key, CacheKind.HOURS, "p1", 100, 50, boom)
    assert store.get_by_id(CACHE_COLLECTION, key) is None
    assert cache.local.keys() == []


def test_persistent_read_failure_is_a_miss() -> None:
    clock = FakeClock()
    broken = MagicMock()
    broken.get_by_id.side_effect = RuntimeError("store offline")
    broken.upsert.side_effect = RuntimeError("store offline")
    cache = TwoTierCache(LocalCache(clock=clock), PersistentCache(broken, clock=clock), clock=clock)

    key = make_cache_key(CacheKind.HOURS, "p1")
    assert cache.get_cached(key, CacheKind.HOURS, "p1", 100, 50, lambda: "v") == "v"
    assert cache.local.get(key, 50) == (True, "v")


def test_invalidate_local_leaves_persistent_tier() -> None:
    cache, store, _ = build()
    base = make_cache_key(CacheKind.PHOTO, "p1")
    variant = make_cache_key(CacheKind.PHOTO, "p1", "400")
    cache.get_cached(base, CacheKind.PHOTO, "p1", 100, 50, lambda: "a")
    cache.get_cached(variant, CacheKind.PHOTO, "p1", 100, 50, lambda: "b")

    cache.invalidate_local(CacheKind.PHOTO, "p1", "400")

    assert cache.local.keys() == []
    assert store.get_by_id(CACHE_COLLECTION, base) is not None
    assert store.get_by_id(CACHE_COLLECTION, variant) is not None


def test_invalidate_external_id_drops_every_kind() -> None:
    cache, _, _ = build()
    for kind, suffix in ((CacheKind.HOURS, None), (CacheKind.DETAILS, None), (CacheKind.PHOTO, "800")):
        cache.get_cached(make_cache_key(kind, "old", suffix), kind, "old", 100, 50, lambda: 1)
    cache.get_cached(make_cache_key(CacheKind.HOURS, "other"), CacheKind.HOURS, "other", 100, 50, lambda: 2)

    assert cache.invalidate_external_id("old") == 3
    assert cache.local.keys() == ["hours:other"]


def test_clear_all_local_respects_namespace() -> None:
    shared = {"unrelated": "keep me"}
    cache, _, _ = build(storage=shared)
    cache.get_cached("hours:p1", CacheKind.HOURS, "p1", 100, 50, lambda: 1)
    assert LOCAL_CACHE_PREFIX + "hours:p1" in shared

    assert cache.clear_all_local() == 1
    assert shared == {"unrelated": "keep me"}


def test_local_lru_cap_evicts_least_recent() -> None:
    clock = FakeClock()
    local = LocalCache(max_entries=2, clock=clock)
    local.set("a", 1)
    local.set("b", 2)
    local.set("a", 10)
    local.set("c", 3)
    assert sorted(local.keys()) == ["a", "c"]


def test_local_entry_age_limit() -> None:
    clock = FakeClock()
    local = LocalCache(clock=clock)
    local.set("k", "v")
    clock.advance(30)
    assert local.get("k", 30) == (True, "v")
    clock.advance(1)
    assert local.get("k", 30) == (False, None)
    assert local.keys() == []
