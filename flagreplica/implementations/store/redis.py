"""
Redis data store backend.

Layout:
- One hash per kind, "{prefix}/{kind}", whose fields are item keys and whose
  values are serialized items (tombstones included).
- "{prefix}/$inited" is a plain string key marking a complete data set.

Redis has real multi-key transactions, so `init` rewrites every kind hash
and sets $inited inside one MULTI/EXEC. Upserts use WATCH on the kind hash
and retry when another writer changed it first.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as redis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError, WatchError

from ...core.errors import InvalidStoreDataError, StoreUnavailableError
from ...core.interfaces.store import DataStore
from ...core.keys import DEFAULT_PREFIX, inited_key, kind_key, normalize_prefix
from ...core.models import ALL_KINDS, DataKind, FullDataSet, ItemDescriptor

logger = structlog.get_logger()


class RedisConnectionMixin:
    """
    Connection ownership and error translation shared by the Redis stores.

    A client passed in by the caller is borrowed and never closed; a client
    created from a URL is owned and closed by close().
    """

    def _setup_client(
        self,
        url: str,
        prefix: str,
        max_connections: int,
        client: redis.Redis | None,
    ) -> None:
        self.prefix = normalize_prefix(prefix)
        self._owns_client = client is None
        if client is None:
            self._client = redis.from_url(
                url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=max_connections,
            )
            self.target = url
        else:
            self._client = client
            self.target = repr(client)

    @property
    def client(self) -> redis.Redis:
        return self._client

    @asynccontextmanager
    async def _translate_errors(self) -> AsyncIterator[None]:
        try:
            yield
        except WatchError:
            raise
        except RedisError as e:
            raise StoreUnavailableError("redis", str(e)) from e

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class RedisDataStore(RedisConnectionMixin, DataStore):
    """
    Redis data store.

    Usage:
        store = RedisDataStore(url="redis://localhost:6379/0", prefix="prod")
        await store.init(all_data)
        applied = await store.upsert(FEATURES, "my-flag", descriptor)
        await store.close()
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = DEFAULT_PREFIX,
        max_connections: int = 10,
        client: redis.Redis | None = None,
    ):
        self._setup_client(url, prefix, max_connections, client)
        logger.info("Using Redis data store", url=self.target, prefix=self.prefix)

    def _deserialize(self, kind: DataKind, key: str, serialized: str | bytes) -> ItemDescriptor:
        try:
            return kind.deserialize(serialized)
        except ValidationError as e:
            raise InvalidStoreDataError(
                f"Invalid data in Redis at {kind_key(self.prefix, kind)}[{key}]: {e}"
            ) from e

    async def is_initialized(self) -> bool:
        async with self._translate_errors():
            return await self._client.exists(inited_key(self.prefix)) > 0

    async def init(self, all_data: FullDataSet) -> None:
        num_items = 0
        async with self._translate_errors():
            async with self._client.pipeline(transaction=True) as pipe:
                for kind in dict.fromkeys([*all_data, *ALL_KINDS]):
                    base = kind_key(self.prefix, kind)
                    pipe.delete(base)
                    items = all_data.get(kind) or {}
                    if items:
                        pipe.hset(
                            base,
                            mapping={key: kind.serialize(key, item) for key, item in items.items()},
                        )
                        num_items += len(items)
                pipe.set(inited_key(self.prefix), "")
                await pipe.execute()

        logger.info("Initialized data store", backend="redis", items=num_items)

    async def get(self, kind: DataKind, key: str) -> ItemDescriptor | None:
        async with self._translate_errors():
            serialized = await self._client.hget(kind_key(self.prefix, kind), key)
        if serialized is None:
            return None
        return self._deserialize(kind, key, serialized)

    async def get_all(self, kind: DataKind) -> dict[str, ItemDescriptor]:
        async with self._translate_errors():
            stored = await self._client.hgetall(kind_key(self.prefix, kind))

        items = {}
        for key, serialized in stored.items():
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            items[key] = self._deserialize(kind, key, serialized)
        return items

    async def upsert(self, kind: DataKind, key: str, item: ItemDescriptor) -> bool:
        base = kind_key(self.prefix, kind)
        serialized = kind.serialize(key, item)

        async with self._translate_errors():
            async with self._client.pipeline(transaction=True) as pipe:
                # Retry until either our write lands or the stored version wins
                while True:
                    try:
                        await pipe.watch(base)
                        old = await pipe.hget(base, key)
                        if old is not None:
                            old_item = self._deserialize(kind, key, old)
                            if old_item.version >= item.version:
                                return False

                        pipe.multi()
                        pipe.hset(base, key, serialized)
                        await pipe.execute()
                        return True
                    except WatchError:
                        logger.debug("Concurrent modification detected, retrying", key=f"{base}[{key}]")

    async def is_available(self) -> bool:
        try:
            await self.is_initialized()
            return True
        except Exception:
            return False

    def describe(self) -> str:
        return "redis"
