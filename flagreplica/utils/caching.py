"""
Read-through caching in front of a persistent data store.

Supports:
- TTL caching of single items, whole kinds, and the "initialized" answer
- Refresh on stale write: when an upsert is rejected, the stored item is
  re-read so the cache reflects what the store actually holds
- Availability tracking with listeners, and recovery from an indefinite
  cache when the store comes back

Usage:
    store = CachingStoreWrapper(RedisDataStore(url=...), cache_ttl=15)
    store.add_listener(lambda status: print(status.available))
    await store.init(all_data)

    # Called periodically by the status poller while unavailable
    await store.poll_availability()
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from ..core.errors import StoreUnavailableError
from ..core.interfaces.store import DataStore
from ..core.models import DataKind, FullDataSet, ItemDescriptor
from ..core.sorter import sort_all_collections

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_MAX_ENTRIES = 10000


@dataclass(frozen=True)
class DataStoreStatus:
    """
    Attributes:
        available: The store answered its last request
        refresh_needed: The store came back but may hold outdated data
    """
    available: bool
    refresh_needed: bool = False


@dataclass
class CacheEntry:
    """Cache entry with value and expiration."""
    value: Any
    expires_at: float | None = None

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return time.monotonic() >= self.expires_at


class CachingStoreWrapper(DataStore):
    """
    DataStore that caches reads from another DataStore.

    Args:
        core: The persistent store
        cache_ttl: Seconds to keep cached reads. 0 disables caching; None
            caches indefinitely, which also lets the wrapper rewrite the
            store from its cache after an outage.
        max_entries: Upper bound on cached single items, least recently
            used evicted first. None leaves the item cache unbounded.
    """

    def __init__(
        self,
        core: DataStore,
        cache_ttl: float | None = 15.0,
        max_entries: int | None = DEFAULT_MAX_ENTRIES,
    ):
        self.core = core
        self.cache_ttl = cache_ttl
        self.max_entries = max_entries
        self._items: OrderedDict[tuple[DataKind, str], CacheEntry] = OrderedDict()
        self._all: dict[DataKind, CacheEntry] = {}
        self._inited = False
        self._inited_entry: CacheEntry | None = None
        self._status = DataStoreStatus(available=True)
        self._listeners: list[Callable[[DataStoreStatus], None]] = []

    # ============================================================
    # CACHE HELPERS
    # ============================================================

    @property
    def caching(self) -> bool:
        return self.cache_ttl != 0

    @property
    def cache_indefinitely(self) -> bool:
        return self.cache_ttl is None

    def _entry(self, value: Any) -> CacheEntry:
        if self.cache_ttl is None:
            return CacheEntry(value=value)
        return CacheEntry(value=value, expires_at=time.monotonic() + self.cache_ttl)

    def _put_item(self, kind: DataKind, key: str, item: ItemDescriptor | None) -> None:
        self._items[(kind, key)] = self._entry(item)
        self._items.move_to_end((kind, key))
        if self.max_entries is not None:
            while len(self._items) > self.max_entries:
                self._items.popitem(last=False)

    def _cache_item(self, kind: DataKind, key: str, item: ItemDescriptor | None) -> None:
        if not self.caching:
            return
        self._put_item(kind, key, item)
        all_entry = self._all.get(kind)
        if all_entry is not None and item is not None:
            all_entry.value = {**all_entry.value, key: item}

    def _cache_all_data(self, all_data: FullDataSet) -> None:
        self._items.clear()
        self._all.clear()
        if not self.caching:
            return
        for kind, items in all_data.items():
            self._all[kind] = self._entry(dict(items))
            for key, item in items.items():
                self._put_item(kind, key, item)

    def clear_cache(self) -> None:
        self._items.clear()
        self._all.clear()
        self._inited_entry = None

    # ============================================================
    # STATUS
    # ============================================================

    @property
    def status(self) -> DataStoreStatus:
        return self._status

    def add_listener(self, listener: Callable[[DataStoreStatus], None]) -> None:
        self._listeners.append(listener)

    def _update_status(self, status: DataStoreStatus) -> None:
        if status == self._status:
            return
        self._status = status
        logger.warning(
            "Data store status changed",
            store=self.core.describe(),
            available=status.available,
            refresh_needed=status.refresh_needed,
        )
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error("Data store status listener failed", error=str(e))

    async def _guard(self, operation: Awaitable[T]) -> T:
        """Run a core operation, recording unavailability before re-raising."""
        try:
            return await operation
        except StoreUnavailableError:
            self._update_status(DataStoreStatus(available=False))
            raise

    async def poll_availability(self) -> bool:
        """
        Check whether an unavailable store has come back.

        With an indefinite cache the cached data set is written back to the
        store; otherwise the cache is dropped and refresh_needed is reported.
        """
        if self._status.available:
            return True
        if not await self.core.is_available():
            return False

        if self.cache_indefinitely and self._all:
            snapshot = {kind: dict(entry.value) for kind, entry in self._all.items()}
            logger.warning("Data store recovered, rewriting cached data", store=self.core.describe())
            try:
                await self.core.init(sort_all_collections(snapshot))
            except StoreUnavailableError as e:
                logger.error("Rewriting cached data failed", error=str(e))
                return False
            self._update_status(DataStoreStatus(available=True))
        else:
            self.clear_cache()
            self._update_status(DataStoreStatus(available=True, refresh_needed=True))
        return True

    # ============================================================
    # DATA STORE OPERATIONS
    # ============================================================

    async def is_initialized(self) -> bool:
        if self._inited:
            return True
        entry = self._inited_entry
        if entry is not None and not entry.is_expired:
            return entry.value

        result = await self._guard(self.core.is_initialized())
        if result:
            self._inited = True
        elif self.caching:
            self._inited_entry = self._entry(False)
        return result

    async def init(self, all_data: FullDataSet) -> None:
        ordered = sort_all_collections(all_data)
        try:
            await self._guard(self.core.init(ordered))
        except StoreUnavailableError:
            # Keep the new data so it can be written back on recovery
            if self.cache_indefinitely:
                self._cache_all_data(ordered)
            raise
        self._cache_all_data(ordered)
        self._inited = True

    async def get(self, kind: DataKind, key: str) -> ItemDescriptor | None:
        entry = self._items.get((kind, key))
        if entry is not None and not entry.is_expired:
            self._items.move_to_end((kind, key))
            return entry.value

        try:
            item = await self._guard(self.core.get(kind, key))
        except StoreUnavailableError:
            if entry is not None:
                logger.warning("Serving last known value", kind=kind.name, key=key)
                return entry.value
            raise
        self._cache_item(kind, key, item)
        return item

    async def get_all(self, kind: DataKind) -> dict[str, ItemDescriptor]:
        entry = self._all.get(kind)
        if entry is not None and not entry.is_expired:
            return dict(entry.value)

        try:
            items = await self._guard(self.core.get_all(kind))
        except StoreUnavailableError:
            if entry is not None:
                logger.warning("Serving last known values", kind=kind.name)
                return dict(entry.value)
            raise
        if self.caching:
            self._all[kind] = self._entry(dict(items))
        return items

    async def upsert(self, kind: DataKind, key: str, item: ItemDescriptor) -> bool:
        try:
            applied = await self._guard(self.core.upsert(kind, key, item))
        except StoreUnavailableError:
            if self.cache_indefinitely:
                cached = self._items.get((kind, key))
                if cached is None or cached.value is None or cached.value.version < item.version:
                    self._cache_item(kind, key, item)
            raise

        if applied:
            self._cache_item(kind, key, item)
        else:
            # Someone else's write won; cache what the store actually holds
            self._cache_item(kind, key, await self._guard(self.core.get(kind, key)))
        return applied

    async def is_available(self) -> bool:
        return await self.core.is_available()

    async def close(self) -> None:
        await self.core.close()

    def describe(self) -> str:
        return self.core.describe()
