"""
In-memory data store.

Used directly as the replica when no persistent store is configured, and in
tests. Data is lost on restart.
"""

import threading

import structlog

from ...core.interfaces.store import DataStore
from ...core.models import DataKind, FullDataSet, ItemDescriptor

logger = structlog.get_logger()


class InMemoryDataStore(DataStore):
    """
    Process-local store.

    The lock is only held for dict operations, never across an await, so
    the store is safe to share between event-loop tasks and threads.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._items: dict[DataKind, dict[str, ItemDescriptor]] = {}
        self._initialized = False

    async def is_initialized(self) -> bool:
        return self._initialized

    async def init(self, all_data: FullDataSet) -> None:
        with self._lock:
            self._items = {kind: dict(items) for kind, items in all_data.items()}
            self._initialized = True
        logger.info(
            "Initialized in-memory store",
            items=sum(len(items) for items in all_data.values()),
        )

    async def get(self, kind: DataKind, key: str) -> ItemDescriptor | None:
        with self._lock:
            return self._items.get(kind, {}).get(key)

    async def get_all(self, kind: DataKind) -> dict[str, ItemDescriptor]:
        with self._lock:
            return dict(self._items.get(kind, {}))

    async def upsert(self, kind: DataKind, key: str, item: ItemDescriptor) -> bool:
        with self._lock:
            items = self._items.setdefault(kind, {})
            old = items.get(key)
            if old is not None and old.version >= item.version:
                return False
            items[key] = item
            return True

    async def is_available(self) -> bool:
        return True

    def describe(self) -> str:
        return "memory"
