"""
Pytest fixtures for testing.

Provides:
- Record factories for flags, segments and data sets
- In-process fakes for the Consul KV API, Redis, and DynamoDB
- A store fixture parametrized over every backend
"""

from __future__ import annotations

import base64
import json
from types import SimpleNamespace
from typing import Any, Awaitable, Callable

import httpx
import pytest
import pytest_asyncio
from botocore.exceptions import ClientError, EndpointConnectionError
from redis.exceptions import ConnectionError as RedisConnectionError, WatchError

from flagreplica.core.models import (
    FEATURES,
    SEGMENTS,
    FeatureFlag,
    FullDataSet,
    ItemDescriptor,
    Prerequisite,
    Segment,
)
from flagreplica.implementations.store.consul import ConsulDataStore
from flagreplica.implementations.store.dynamodb import DynamoDBDataStore
from flagreplica.implementations.store.memory import InMemoryDataStore
from flagreplica.implementations.store.redis import RedisDataStore
from flagreplica.utils.logging import bind_replica_prefix, reset_replica_prefix


# ============ Logging ============


@pytest.fixture(autouse=True)
def replica_log_context():
    """Each test starts without a bound replica prefix and leaves none behind."""
    token = bind_replica_prefix(None)
    yield
    reset_replica_prefix(token)


# ============ Factory Fixtures ============


class DataFactory:
    """Factory for building records and data sets."""

    def flag(self, key: str, version: int = 1, prerequisites=(), **fields: Any) -> FeatureFlag:
        return FeatureFlag(
            key=key,
            version=version,
            prerequisites=[Prerequisite(key=p, variation=0) for p in prerequisites],
            **fields,
        )

    def segment(self, key: str, version: int = 1, **fields: Any) -> Segment:
        return Segment(key=key, version=version, **fields)

    def flag_item(self, key: str, version: int = 1, prerequisites=(), **fields: Any) -> ItemDescriptor:
        return ItemDescriptor(version=version, item=self.flag(key, version, prerequisites, **fields))

    def segment_item(self, key: str, version: int = 1, **fields: Any) -> ItemDescriptor:
        return ItemDescriptor(version=version, item=self.segment(key, version, **fields))

    def data_set(
        self,
        flags: dict[str, ItemDescriptor] | None = None,
        segments: dict[str, ItemDescriptor] | None = None,
    ) -> FullDataSet:
        return {FEATURES: dict(flags or {}), SEGMENTS: dict(segments or {})}


@pytest.fixture
def data() -> DataFactory:
    return DataFactory()


# ============ Consul ============


class FakeConsul:
    """
    Minimal Consul KV HTTP API served through httpx.MockTransport.

    Supports single-key GET/PUT (with ?cas), ?keys and ?recurse listing, and
    /v1/txn with Consul's 64 operation limit.
    """

    TXN_LIMIT = 64

    def __init__(self):
        self.kv: dict[str, dict[str, Any]] = {}
        self.index = 0
        self.txn_sizes: list[int] = []
        self.available = True
        self.before_cas: Callable[[str], None] | None = None

    def _set(self, key: str, value_b64: str | None) -> None:
        self.index += 1
        existing = self.kv.get(key)
        self.kv[key] = {
            "Key": key,
            "Value": value_b64 or None,
            "CreateIndex": existing["CreateIndex"] if existing else self.index,
            "ModifyIndex": self.index,
        }

    def put_raw(self, key: str, value: str) -> None:
        self._set(key, base64.b64encode(value.encode()).decode())

    def value(self, key: str) -> str | None:
        pair = self.kv.get(key)
        if pair is None:
            return None
        return base64.b64decode(pair["Value"] or "").decode()

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.available:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        params = request.url.params

        if path == "/v1/txn" and request.method == "PUT":
            ops = json.loads(request.content)
            if len(ops) > self.TXN_LIMIT:
                return httpx.Response(413, text="too many operations")
            self.txn_sizes.append(len(ops))
            for op in ops:
                kv = op["KV"]
                if kv["Verb"] == "set":
                    self._set(kv["Key"], kv.get("Value"))
                elif kv["Verb"] == "delete":
                    self.kv.pop(kv["Key"], None)
            return httpx.Response(200, json={"Results": [], "Errors": None})

        key = path[len("/v1/kv/"):]

        if request.method == "GET":
            if "keys" in params:
                found = sorted(k for k in self.kv if k.startswith(key))
                return httpx.Response(200, json=found) if found else httpx.Response(404)
            if "recurse" in params:
                found = [self.kv[k] for k in sorted(self.kv) if k.startswith(key)]
                return httpx.Response(200, json=found) if found else httpx.Response(404)
            if key in self.kv:
                return httpx.Response(200, json=[self.kv[key]])
            return httpx.Response(404)

        if request.method == "PUT":
            if "cas" in params:
                if self.before_cas is not None:
                    hook, self.before_cas = self.before_cas, None
                    hook(key)
                expected = int(params["cas"])
                current = self.kv.get(key)
                current_index = current["ModifyIndex"] if current else 0
                if expected != current_index:
                    return httpx.Response(200, text="false")
            self._set(key, base64.b64encode(request.content).decode())
            return httpx.Response(200, text="true")

        return httpx.Response(405)


@pytest.fixture
def fake_consul() -> FakeConsul:
    return FakeConsul()


@pytest_asyncio.fixture
async def consul_client(fake_consul: FakeConsul):
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(fake_consul.handler),
        base_url="http://consul.test:8500",
    ) as client:
        yield client


# ============ Redis ============


class FakeRedisPipeline:
    """Pipeline with WATCH/MULTI/EXEC semantics."""

    def __init__(self, redis: "FakeRedis", transaction: bool = True):
        self.redis = redis
        self.transaction = transaction
        self.watched: dict[str, int] = {}
        self.buffering = False
        self.commands: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> "FakeRedisPipeline":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.reset()

    async def reset(self) -> None:
        self.watched = {}
        self.buffering = False
        self.commands = []

    async def watch(self, *names: str) -> bool:
        self.redis._check_available()
        for name in names:
            self.watched[name] = self.redis.versions.get(name, 0)
        return True

    def multi(self) -> None:
        self.buffering = True

    def _command(self, name: str, *args, **kwargs):
        if self.watched and not self.buffering:
            return getattr(self.redis, name)(*args, **kwargs)
        self.commands.append((name, args, kwargs))
        return self

    def hget(self, *args, **kwargs):
        return self._command("hget", *args, **kwargs)

    def hset(self, *args, **kwargs):
        return self._command("hset", *args, **kwargs)

    def delete(self, *args, **kwargs):
        return self._command("delete", *args, **kwargs)

    def set(self, *args, **kwargs):
        return self._command("set", *args, **kwargs)

    async def execute(self) -> list[Any]:
        self.redis._check_available()
        if self.redis.before_execute is not None:
            hook, self.redis.before_execute = self.redis.before_execute, None
            await hook()
        try:
            for name, version in self.watched.items():
                if self.redis.versions.get(name, 0) != version:
                    raise WatchError("Watched variable changed.")
            self.redis.transactions += 1
            return [await getattr(self.redis, name)(*args, **kwargs) for name, args, kwargs in self.commands]
        finally:
            await self.reset()


class FakeRedis:
    """In-process stand-in for redis.asyncio.Redis (decode_responses=True)."""

    def __init__(self):
        self.data: dict[str, Any] = {}
        self.versions: dict[str, int] = {}
        self.available = True
        self.closed = False
        self.transactions = 0
        self.before_execute: Callable[[], Awaitable[None]] | None = None

    def _check_available(self) -> None:
        if not self.available:
            raise RedisConnectionError("Connection refused")

    def _touch(self, name: str) -> None:
        self.versions[name] = self.versions.get(name, 0) + 1

    def pipeline(self, transaction: bool = True) -> FakeRedisPipeline:
        return FakeRedisPipeline(self, transaction)

    async def exists(self, *names: str) -> int:
        self._check_available()
        return sum(1 for n in names if n in self.data)

    async def get(self, name: str) -> str | None:
        self._check_available()
        return self.data.get(name)

    async def set(self, name: str, value: str) -> bool:
        self._check_available()
        self.data[name] = value
        self._touch(name)
        return True

    async def delete(self, *names: str) -> int:
        self._check_available()
        count = 0
        for name in names:
            if self.data.pop(name, None) is not None:
                count += 1
            self._touch(name)
        return count

    async def hget(self, name: str, key: str) -> str | None:
        self._check_available()
        return self.data.get(name, {}).get(key)

    async def hgetall(self, name: str) -> dict[str, str]:
        self._check_available()
        return dict(self.data.get(name, {}))

    async def hset(self, name: str, key: str | None = None, value: str | None = None, mapping=None) -> int:
        self._check_available()
        fields = dict(mapping or {})
        if key is not None:
            fields[key] = value
        self.data.setdefault(name, {}).update(fields)
        self._touch(name)
        return len(fields)

    async def sadd(self, name: str, *values: str) -> int:
        self._check_available()
        self.data.setdefault(name, set()).update(values)
        self._touch(name)
        return len(values)

    async def smembers(self, name: str) -> set[str]:
        self._check_available()
        return set(self.data.get(name, set()))

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# ============ DynamoDB ============


def _conditional_check_failed(operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        operation,
    )


class FakeDynamoDB:
    """
    In-process stand-in for an aioboto3 DynamoDB client (low-level API).

    Only the calls and expressions the stores issue are understood.
    """

    def __init__(self, page_size: int = 3):
        self.meta = SimpleNamespace(endpoint_url="http://dynamodb.test", region_name="eu-west-1")
        self.tables: dict[str, dict[tuple[str, str], dict[str, Any]]] = {}
        self.page_size = page_size
        self.batch_sizes: list[int] = []
        self.unprocessed_once = False
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise EndpointConnectionError(endpoint_url="http://dynamodb.test")

    def _table(self, name: str) -> dict[tuple[str, str], dict[str, Any]]:
        return self.tables.setdefault(name, {})

    @staticmethod
    def _key(item: dict[str, Any]) -> tuple[str, str]:
        return item["namespace"]["S"], item["key"]["S"]

    def put_raw(self, table: str, item: dict[str, Any]) -> None:
        self._table(table)[self._key(item)] = item

    async def get_item(self, TableName: str, Key: dict, ConsistentRead: bool = False) -> dict:
        self._check_available()
        item = self._table(TableName).get(self._key(Key))
        return {"Item": item} if item is not None else {}

    async def put_item(self, TableName: str, Item: dict, ConditionExpression: str | None = None, **kwargs) -> dict:
        self._check_available()
        table = self._table(TableName)
        existing = table.get(self._key(Item))
        if ConditionExpression and existing is not None:
            new_version = int(kwargs["ExpressionAttributeValues"][":version"]["N"])
            if not new_version > int(existing["version"]["N"]):
                raise _conditional_check_failed("PutItem")
        table[self._key(Item)] = Item
        return {}

    async def query(self, TableName: str, ExpressionAttributeValues: dict, ExclusiveStartKey=None, **kwargs) -> dict:
        self._check_available()
        namespace = ExpressionAttributeValues[":namespace"]["S"]
        keys = sorted(k for k in self._table(TableName) if k[0] == namespace)
        if ExclusiveStartKey is not None:
            keys = [k for k in keys if k > self._key(ExclusiveStartKey)]
        page = keys[:self.page_size]
        response: dict[str, Any] = {"Items": [self._table(TableName)[k] for k in page]}
        if len(keys) > self.page_size:
            last = page[-1]
            response["LastEvaluatedKey"] = {"namespace": {"S": last[0]}, "key": {"S": last[1]}}
        return response

    async def batch_write_item(self, RequestItems: dict) -> dict:
        self._check_available()
        unprocessed: dict[str, list] = {}
        for table_name, requests in RequestItems.items():
            assert len(requests) <= 25
            self.batch_sizes.append(len(requests))
            if self.unprocessed_once and len(requests) > 1:
                self.unprocessed_once = False
                unprocessed[table_name] = requests[-1:]
                requests = requests[:-1]
            table = self._table(table_name)
            for request in requests:
                if "PutRequest" in request:
                    item = request["PutRequest"]["Item"]
                    table[self._key(item)] = item
                else:
                    table.pop(self._key(request["DeleteRequest"]["Key"]), None)
        return {"UnprocessedItems": unprocessed}


@pytest.fixture
def fake_dynamodb() -> FakeDynamoDB:
    return FakeDynamoDB()


# ============ Store Fixtures ============


@pytest_asyncio.fixture(params=["memory", "consul", "redis", "dynamodb"])
async def store(request, consul_client, fake_redis, fake_dynamodb):
    """Every data store backend, each against its own fresh fake."""
    if request.param == "memory":
        store = InMemoryDataStore()
    elif request.param == "consul":
        store = ConsulDataStore(client=consul_client, prefix="test")
    elif request.param == "redis":
        store = RedisDataStore(client=fake_redis, prefix="test")
    else:
        store = DynamoDBDataStore(table_name="flags", client=fake_dynamodb, prefix="test")

    yield store

    await store.close()
