"""
Tests for applying stream events to a store.
"""

import json

import pytest

from flagreplica.core.errors import StreamProtocolError
from flagreplica.core.models import FEATURES, SEGMENTS
from flagreplica.core.updates import DataSourceUpdates
from flagreplica.implementations.store.memory import InMemoryDataStore


PUT = json.dumps({
    "path": "/",
    "data": {
        "flags": {
            "a": {"key": "a", "version": 1, "prerequisites": [{"key": "b", "variation": 0}]},
            "b": {"key": "b", "version": 1},
        },
        "segments": {"s": {"key": "s", "version": 1}},
    },
})


@pytest.fixture
def updates():
    return DataSourceUpdates(InMemoryDataStore())


@pytest.mark.asyncio
async def test_apply_put(updates):
    """Test a put initializes the store."""
    assert await updates.apply_event("put", PUT) is True

    assert await updates.store.is_initialized()
    assert set(await updates.store.get_all(FEATURES)) == {"a", "b"}
    assert (await updates.store.get(SEGMENTS, "s")).version == 1


@pytest.mark.asyncio
async def test_patch_and_delete(updates):
    """Test patches and deletes follow version ordering."""
    await updates.apply_put(PUT)

    assert await updates.apply_event("patch", '{"path": "/flags/a", "data": {"key": "a", "version": 2}}')
    assert not await updates.apply_event("patch", '{"path": "/flags/a", "data": {"key": "a", "version": 2}}')

    assert await updates.apply_event("delete", '{"path": "/flags/a", "version": 3}')
    assert (await updates.store.get(FEATURES, "a")).deleted

    # a stale patch cannot resurrect the deleted flag
    assert not await updates.apply_event("patch", '{"path": "/flags/a", "data": {"key": "a", "version": 3}}')
    assert (await updates.store.get(FEATURES, "a")).deleted


@pytest.mark.asyncio
async def test_unknown_path_is_ignored(updates):
    """Test events for unknown collections are not applied."""
    await updates.apply_put(PUT)

    assert not await updates.apply_patch('{"path": "/widgets/w", "data": {"key": "w", "version": 1}}')
    assert not await updates.apply_delete('{"path": "/widgets/w", "version": 1}')


@pytest.mark.asyncio
async def test_unknown_event_type(updates):
    """Test unknown event types are ignored."""
    assert await updates.apply_event("reconnect", "{}") is False
    assert not await updates.store.is_initialized()


@pytest.mark.asyncio
async def test_malformed_event_raises(updates):
    """Test malformed bodies surface as protocol errors."""
    with pytest.raises(StreamProtocolError):
        await updates.apply_event("patch", '{"path": "/flags/a"}')
