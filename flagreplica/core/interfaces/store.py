"""
Data store contract.

Implemented identically by the in-memory store, the caching wrapper, and
every persistent backend. All operations may be called concurrently from
any number of tasks and processes; none may assume exclusive access.
"""

from abc import ABC, abstractmethod

from ..models import DataKind, FullDataSet, ItemDescriptor


class DataStore(ABC):
    """
    Versioned store for replicated records.

    Implementations:
    - InMemoryDataStore: process-local dicts
    - ConsulDataStore: Consul KV, 64-op transactions
    - DynamoDBDataStore: DynamoDB table with conditional writes
    - RedisDataStore: one Redis hash per kind
    - CachingStoreWrapper: TTL cache in front of any of the above
    """

    @abstractmethod
    async def is_initialized(self) -> bool:
        """
        True iff a complete data set has been written ($inited marker present).

        Only raises for genuine connectivity failures.
        """
        pass

    @abstractmethod
    async def init(self, all_data: FullDataSet) -> None:
        """
        Replace the whole replica with all_data, then set the $inited marker.

        Without multi-key transactions: write every item first, then delete
        stored keys not in all_data, then set $inited last.
        """
        pass

    @abstractmethod
    async def get(self, kind: DataKind, key: str) -> ItemDescriptor | None:
        """
        Get one item. None means never written; a tombstone is returned
        as a descriptor with deleted=True.
        """
        pass

    @abstractmethod
    async def get_all(self, kind: DataKind) -> dict[str, ItemDescriptor]:
        """All items of a kind, tombstones included."""
        pass

    @abstractmethod
    async def upsert(self, kind: DataKind, key: str, item: ItemDescriptor) -> bool:
        """
        Store item only if its version is greater than the stored version.

        Returns True if the write took effect, False for a stale write.
        """
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        """Best-effort liveness check. Never raises."""
        pass

    async def close(self) -> None:
        """Release resources the store created itself."""
        pass

    def describe(self) -> str:
        """Short name used in logs and health output."""
        return type(self).__name__
