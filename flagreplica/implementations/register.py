"""
Register all backend implementations with their registries.

Call register_backends() once at startup, then build stores from settings.
"""

from datetime import timedelta

import structlog

from ..core.big_segments import BigSegmentStoreWrapper
from ..core.config import Settings, get_settings
from ..core.interfaces.store import DataStore
from ..core.registry import big_segment_backends, data_store_backends
from ..utils.caching import CachingStoreWrapper
from ..utils.logging import bind_replica_prefix

logger = structlog.get_logger()


def register_backends() -> None:
    """Register all backend implementations."""

    # ============ Data Stores ============

    def create_memory_store(**config):
        from .store.memory import InMemoryDataStore
        return InMemoryDataStore()

    def create_redis_store(**config):
        from .store.redis import RedisDataStore
        return RedisDataStore(
            url=config["url"],
            prefix=config["prefix"],
            max_connections=config.get("max_connections", 10),
            client=config.get("client"),
        )

    def create_consul_store(**config):
        from .store.consul import ConsulDataStore
        return ConsulDataStore(
            url=config["url"],
            prefix=config["prefix"],
            token=config.get("token"),
            datacenter=config.get("datacenter"),
            timeout=config.get("timeout", 10.0),
            client=config.get("client"),
        )

    def create_dynamodb_store(**config):
        from .store.dynamodb import DynamoDBDataStore
        return DynamoDBDataStore(
            table_name=config["table_name"],
            prefix=config["prefix"],
            region=config.get("region", "us-east-1"),
            endpoint_url=config.get("endpoint_url"),
            access_key=config.get("access_key"),
            secret_key=config.get("secret_key"),
            client=config.get("client"),
        )

    data_store_backends.register("memory", create_memory_store, default=True)
    data_store_backends.register("redis", create_redis_store)
    data_store_backends.register("consul", create_consul_store)
    data_store_backends.register("dynamodb", create_dynamodb_store)

    # ============ Big Segment Stores ============

    def create_redis_big_segments(**config):
        from .big_segments.redis import RedisBigSegmentStore
        return RedisBigSegmentStore(
            url=config["url"],
            prefix=config["prefix"],
            max_connections=config.get("max_connections", 10),
            client=config.get("client"),
        )

    def create_dynamodb_big_segments(**config):
        from .big_segments.dynamodb import DynamoDBBigSegmentStore
        return DynamoDBBigSegmentStore(
            table_name=config["table_name"],
            prefix=config["prefix"],
            region=config.get("region", "us-east-1"),
            endpoint_url=config.get("endpoint_url"),
            access_key=config.get("access_key"),
            secret_key=config.get("secret_key"),
            client=config.get("client"),
        )

    big_segment_backends.register("redis", create_redis_big_segments, default=True)
    big_segment_backends.register("dynamodb", create_dynamodb_big_segments)


def _backend_config(backend: str, prefix: str, settings: Settings) -> dict:
    """Get factory configuration for one backend."""
    if backend == "redis":
        return {
            "url": str(settings.redis.url),
            "prefix": prefix,
            "max_connections": settings.redis.max_connections,
        }
    if backend == "consul":
        return {
            "url": settings.consul.url,
            "prefix": prefix,
            "token": settings.consul.token,
            "datacenter": settings.consul.datacenter,
            "timeout": settings.consul.timeout,
        }
    if backend == "dynamodb":
        if not settings.dynamodb.table_name:
            raise ValueError("DYNAMODB_TABLE_NAME is required for the dynamodb backend")
        return {
            "table_name": settings.dynamodb.table_name,
            "prefix": prefix,
            "region": settings.dynamodb.region,
            "endpoint_url": settings.dynamodb.endpoint_url,
            "access_key": settings.dynamodb.access_key,
            "secret_key": settings.dynamodb.secret_key,
        }
    return {"prefix": prefix}


def create_data_store(settings: Settings | None = None) -> DataStore:
    """
    Build the configured data store.

    Persistent backends are wrapped in a CachingStoreWrapper.
    """
    settings = settings or get_settings()
    backend = settings.store_backend
    bind_replica_prefix(settings.prefix)
    store = data_store_backends.get(
        backend,
        config=_backend_config(backend, settings.prefix, settings),
    )
    if backend == "memory":
        return store
    return CachingStoreWrapper(
        store,
        cache_ttl=settings.cache_ttl,
        max_entries=settings.cache_max_entries,
    )


def create_big_segment_store(settings: Settings | None = None) -> BigSegmentStoreWrapper | None:
    """Build the configured Big Segment store wrapper, or None if disabled."""
    settings = settings or get_settings()
    config = settings.big_segments
    if not config.backend:
        return None

    store = big_segment_backends.get(
        config.backend,
        config=_backend_config(config.backend, config.prefix, settings),
    )
    return BigSegmentStoreWrapper(
        store,
        stale_after=timedelta(seconds=config.stale_after),
        context_cache_size=config.context_cache_size,
        context_cache_time=timedelta(seconds=config.context_cache_time),
        status_poll_interval=timedelta(seconds=config.status_poll_interval),
    )
