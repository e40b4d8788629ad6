"""Two-tier read-through cache for place-registry data.

L1 (local): in-process mapping, namespaced by a key prefix, entries stamped
with their write time and judged against a caller-supplied max age.
L2 (persistent): documents in the shared record store carrying an explicit
``expires_at``. Shared by every user of the store.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, MutableMapping, Optional, Tuple, TypeVar

from loguru import logger

from snack_index.models import CacheEntry, CacheKind
from snack_index.services.store import RecordStore


T = TypeVar("T")

CACHE_COLLECTION = "placesCache"
LOCAL_CACHE_PREFIX = "snack-cache:"

Clock = Callable[[], float]


def make_cache_key(kind: CacheKind, external_id: str, suffix: Optional[str] = None) -> str:
    if suffix:
        return f"{kind.value}:{external_id}:{suffix}"
    return f"{kind.value}:{external_id}"


class LocalCache:
    """Namespaced local tier. Only keys under ``prefix`` are ever touched."""

    def __init__(
        self,
        storage: Optional[MutableMapping[str, Any]] = None,
        *,
        prefix: str = LOCAL_CACHE_PREFIX,
        max_entries: Optional[int] = None,
        clock: Clock = time.time,
    ) -> None:
        self._storage: MutableMapping[str, Any] = storage if storage is not None else OrderedDict()
        self.prefix = prefix
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()

    def _full(self, key: str) -> str:
        return self.prefix + key

    def get(self, key: str, max_age: float) -> Tuple[bool, Any]:
        full = self._full(key)
        with self._lock:
            entry = self._storage.get(full)
            if entry is None:
                logger.debug("[cache] L1 miss (not found): {}", key)
                return False, None
            written_at, data = entry
            age = self._clock() - written_at
            if age > max_age:
                logger.debug("[cache] L1 miss (stale): {} age={}s", key, round(age))
                self._storage.pop(full, None)
                return False, None
            logger.debug("[cache] L1 hit: {} age={}s", key, round(age))
            return True, data

    def set(self, key: str, data: Any) -> None:
        full = self._full(key)
        with self._lock:
            # Re-insert so insertion order doubles as recency order.
            self._storage.pop(full, None)
            self._storage[full] = (self._clock(), data)
            if self.max_entries is not None:
                self._evict()

    def _evict(self) -> None:
        own = [k for k in self._storage if isinstance(k, str) and k.startswith(self.prefix)]
        for key in own[: max(0, len(own) - self.max_entries)]:
            self._storage.pop(key, None)

    def remove(self, key: str) -> bool:
        with self._lock:
            return self._storage.pop(self._full(key), None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return [
                k[len(self.prefix):]
                for k in self._storage
                if isinstance(k, str) and k.startswith(self.prefix)
            ]

    def clear(self) -> int:
        with self._lock:
            own = [k for k in self._storage if isinstance(k, str) and k.startswith(self.prefix)]
            for key in own:
                self._storage.pop(key, None)
            return len(own)


class PersistentCache:
    """Shared tier over the record store. Read/write failures degrade to a miss."""

    def __init__(self, store: RecordStore, *, collection: str = CACHE_COLLECTION, clock: Clock = time.time) -> None:
        self.store = store
        self.collection = collection
        self._clock = clock

    def get(self, key: str) -> Optional[CacheEntry]:
        try:
            doc = self.store.get_by_id(self.collection, key)
        except Exception as exc:
            logger.warning("[cache] L2 read error for {}: {}", key, exc)
            return None
        if doc is None:
            return None
        return CacheEntry(
            kind=CacheKind(doc["kind"]),
            external_id=doc["external_id"],
            data=doc.get("data"),
            created_at=float(doc["created_at"]),
            expires_at=float(doc["expires_at"]),
        )

    def put(self, key: str, kind: CacheKind, external_id: str, data: Any, ttl: float) -> None:
        now = self._clock()
        try:
            self.store.upsert(
                self.collection,
                key,
                {
                    "kind": kind.value,
                    "external_id": external_id,
                    "data": data,
                    "created_at": now,
                    "expires_at": now + ttl,
                },
                merge=False,
            )
        except Exception as exc:
            logger.warning("[cache] L2 write error for {}: {}", key, exc)


class TwoTierCache:
    def __init__(self, local: LocalCache, persistent: PersistentCache, *, clock: Clock = time.time) -> None:
        self.local = local
        self.persistent = persistent
        self._clock = clock

    def get_cached(
        self,
        cache_key: str,
        kind: CacheKind,
        external_id: str,
        persistent_ttl: float,
        local_ttl: float,
        fetch: Callable[[], T],
    ) -> T:
        """Read through L1, then L2, then ``fetch``; populate both tiers on fetch.

        Errors raised by ``fetch`` propagate unchanged.
        """
        hit, data = self.local.get(cache_key, local_ttl)
        if hit:
            return data

        entry = self.persistent.get(cache_key)
        if entry is not None:
            fresh = entry.expires_at > self._clock()
            logger.debug("[cache] L2 hit: {} fresh={}", cache_key, fresh)
            self.local.set(cache_key, entry.data)
            if fresh:
                return entry.data
        else:
            logger.debug("[cache] L2 miss: {}", cache_key)

        logger.debug("[cache] fetching from source: {}", cache_key)
        value = fetch()
        self.local.set(cache_key, value)
        self.persistent.put(cache_key, kind, external_id, value, persistent_ttl)
        return value

    def invalidate_local(self, kind: CacheKind, external_id: str, *suffixes: str) -> None:
        """Drop L1 entries for the base key and each suffixed variant. L2 expires on its own."""
        self.local.remove(make_cache_key(kind, external_id))
        for suffix in suffixes:
            self.local.remove(make_cache_key(kind, external_id, suffix))

    def invalidate_external_id(self, external_id: str) -> int:
        """Drop every L1 entry (all kinds, all suffixes) tied to ``external_id``."""
        removed = 0
        for key in self.local.keys():
            parts = key.split(":", 2)
            if len(parts) >= 2 and parts[1] == external_id and parts[0] in {k.value for k in CacheKind}:
                if self.local.remove(key):
                    removed += 1
        logger.info("[cache] invalidated {} local entries for place {}", removed, external_id)
        return removed

    def clear_all_local(self) -> int:
        return self.local.clear()
