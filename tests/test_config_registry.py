"""
Tests for settings, the backend registry and store construction.
"""

import pytest
from pydantic import ValidationError

from flagreplica.core.big_segments import BigSegmentStoreWrapper
from flagreplica.core.config import Settings
from flagreplica.core.registry import PluginRegistry, data_store_backends
from flagreplica.implementations.register import (
    create_big_segment_store,
    create_data_store,
    register_backends,
)
from flagreplica.implementations.store.consul import ConsulDataStore
from flagreplica.implementations.store.memory import InMemoryDataStore
from flagreplica.implementations.store.redis import RedisDataStore
from flagreplica.utils.caching import CachingStoreWrapper


@pytest.fixture(autouse=True)
def registered():
    register_backends()


# ============ Settings ============


def test_settings_from_environment(monkeypatch):
    """Test settings are read from prefixed environment variables."""
    monkeypatch.setenv("REPLICA_STORE_BACKEND", "consul")
    monkeypatch.setenv("REPLICA_PREFIX", "prod")
    monkeypatch.setenv("CONSUL_URL", "http://consul:8500")
    monkeypatch.setenv("CONSUL_TOKEN", "secret")
    monkeypatch.setenv("BIG_SEGMENTS_STALE_AFTER", "30")

    settings = Settings()

    assert settings.store_backend == "consul"
    assert settings.prefix == "prod"
    assert settings.consul.url == "http://consul:8500"
    assert settings.consul.token == "secret"
    assert settings.big_segments.stale_after == 30


def test_settings_defaults():
    """Test defaults give an in-memory replica with a 15 second cache."""
    settings = Settings()

    assert settings.store_backend == "memory"
    assert settings.prefix == "launchdarkly"
    assert settings.cache_ttl == 15
    assert settings.cache_max_entries == 10000
    assert settings.big_segments.backend is None


@pytest.mark.parametrize(
    "overrides",
    [{"store_backend": "etcd"}, {"cache_ttl": -1}, {"cache_max_entries": 0}, {"log_format": "xml"}],
)
def test_settings_validation(overrides):
    """Test invalid settings are rejected."""
    with pytest.raises(ValidationError):
        Settings(**overrides)


# ============ Registry ============


def test_registry_default_and_lookup():
    """Test registration, default selection and config passing."""
    registry = PluginRegistry[dict]("test")
    registry.register("a", lambda **config: {"name": "a", **config})
    registry.register("b", lambda **config: {"name": "b", **config}, default=True)

    assert registry.default == "b"
    assert registry.get() == {"name": "b"}
    assert registry.get("a", config={"x": 1}) == {"name": "a", "x": 1}


def test_registry_unknown_backend():
    """Test unknown names raise with the available choices."""
    registry = PluginRegistry[dict]("test")
    registry.register("a", dict)

    with pytest.raises(ValueError, match="registered: a"):
        registry.get("zzz")


def test_registry_first_registration_is_default():
    """Test the first backend is the default until another claims it."""
    registry = PluginRegistry[dict]("test")
    registry.register("a", lambda **config: {"name": "a"})
    registry.register("b", lambda **config: {"name": "b"})

    assert registry.default == "a"
    assert registry.get() == {"name": "a"}


def test_registry_empty():
    """Test an empty registry has nothing to build."""
    with pytest.raises(ValueError, match="registered: none"):
        PluginRegistry[dict]("test").get()


def test_builtin_backends_registered():
    """Test the built-in data store backends and their default."""
    assert data_store_backends.default == "memory"
    assert isinstance(data_store_backends.get(config={"prefix": "p"}), InMemoryDataStore)


# ============ Construction ============


def test_create_memory_store():
    """Test the memory backend is used unwrapped."""
    assert isinstance(create_data_store(Settings()), InMemoryDataStore)


@pytest.mark.asyncio
async def test_create_persistent_store_is_cached():
    """Test persistent backends are wrapped with the configured cache TTL."""
    store = create_data_store(Settings(store_backend="redis", prefix="prod", cache_ttl=5, cache_max_entries=50))

    assert isinstance(store, CachingStoreWrapper)
    assert isinstance(store.core, RedisDataStore)
    assert store.core.prefix == "prod"
    assert store.cache_ttl == 5
    assert store.max_entries == 50
    await store.close()


@pytest.mark.asyncio
async def test_create_consul_store():
    """Test Consul settings reach the store."""
    store = create_data_store(Settings(store_backend="consul"))

    assert isinstance(store.core, ConsulDataStore)
    await store.close()


def test_dynamodb_requires_table_name():
    """Test the dynamodb backend refuses to start without a table."""
    with pytest.raises(ValueError, match="DYNAMODB_TABLE_NAME"):
        create_data_store(Settings(store_backend="dynamodb"))


def test_big_segments_disabled_by_default():
    """Test no Big Segment store is built unless configured."""
    assert create_big_segment_store(Settings()) is None


@pytest.mark.asyncio
async def test_create_big_segment_store(monkeypatch):
    """Test the configured Big Segment backend is wrapped."""
    monkeypatch.setenv("BIG_SEGMENTS_BACKEND", "redis")
    monkeypatch.setenv("BIG_SEGMENTS_STALE_AFTER", "60")

    wrapper = create_big_segment_store(Settings())

    assert isinstance(wrapper, BigSegmentStoreWrapper)
    assert wrapper.stale_after.total_seconds() == 60
    await wrapper.close()
