"""
DynamoDB data store backend.

Layout:
- All kinds share one table. The partition key "namespace" is
  "{prefix}/{kind}" and the sort key "key" is the item key.
- The serialized item lives in a single string attribute "item" (DynamoDB
  rejects empty strings, so tombstones store the placeholder "null"); the
  version is duplicated in the numeric attribute "version" for the
  conditional write.
- The $inited marker is the item ("{prefix}/$inited", "{prefix}/$inited").

DynamoDB has no multi-item transactions of useful size, so `init` writes
every item, then deletes stale ones, then writes the marker. Items larger
than DynamoDB's 400KB limit are logged and skipped.
"""

from __future__ import annotations

from contextlib import AsyncExitStack
from typing import Any

import structlog
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from ...core.errors import InvalidStoreDataError, StoreUnavailableError
from ...core.interfaces.store import DataStore
from ...core.keys import DEFAULT_PREFIX, inited_key, kind_key, normalize_prefix
from ...core.models import ALL_KINDS, DataKind, FullDataSet, ItemDescriptor

logger = structlog.get_logger()

PARTITION_KEY = "namespace"
SORT_KEY = "key"

VERSION_ATTR = "version"
ITEM_ATTR = "item"
DELETED_ITEM_PLACEHOLDER = "null"

# Rounded down from DynamoDB's documented 400KB
DYNAMODB_MAX_ITEM_SIZE = 400000

# BatchWriteItem accepts at most this many requests
DYNAMODB_BATCH_LIMIT = 25


def make_keys(namespace: str, key: str) -> dict[str, Any]:
    return {
        PARTITION_KEY: {"S": namespace},
        SORT_KEY: {"S": key},
    }


def is_conditional_check_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class DynamoDBClientMixin:
    """
    Client ownership and error translation shared by the DynamoDB stores.

    A client passed in by the caller is borrowed and never closed. Otherwise
    an aioboto3 client is created on first use and released by close().
    """

    def _setup_client(
        self,
        table_name: str,
        prefix: str,
        region: str,
        endpoint_url: str | None,
        access_key: str | None,
        secret_key: str | None,
        client: Any | None,
    ) -> None:
        self.table_name = table_name
        self.prefix = normalize_prefix(prefix)
        self._client = client
        self._owns_client = client is None
        self._exit_stack: AsyncExitStack | None = None
        self._client_config: dict[str, Any] = {"region_name": region}
        if endpoint_url:
            self._client_config["endpoint_url"] = endpoint_url
        self._credentials = {
            "aws_access_key_id": access_key,
            "aws_secret_access_key": secret_key,
        }
        self.endpoint = client.meta.endpoint_url if client is not None else (endpoint_url or region)

    async def _get_client(self) -> Any:
        if self._client is None:
            # Import here to avoid requiring aioboto3 if not using DynamoDB
            import aioboto3

            session = aioboto3.Session(**self._credentials)
            self._exit_stack = AsyncExitStack()
            self._client = await self._exit_stack.enter_async_context(
                session.client("dynamodb", **self._client_config)
            )
        return self._client

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        """Call a client operation, translating transport errors."""
        client = await self._get_client()
        try:
            return await getattr(client, operation)(**kwargs)
        except ClientError as e:
            if is_conditional_check_failure(e):
                raise
            raise StoreUnavailableError("dynamodb", f"{operation}: {e}") from e
        except BotoCoreError as e:
            raise StoreUnavailableError("dynamodb", f"{operation}: {e}") from e

    async def _get_item(self, namespace: str, key: str) -> dict[str, Any] | None:
        response = await self._call(
            "get_item",
            TableName=self.table_name,
            Key=make_keys(namespace, key),
            ConsistentRead=True,
        )
        item = response.get("Item")
        return item or None

    async def _query(self, namespace: str, **extra: Any) -> list[dict[str, Any]]:
        """Query a whole partition, following pagination."""
        request: dict[str, Any] = {
            "TableName": self.table_name,
            "KeyConditionExpression": "#namespace = :namespace",
            "ExpressionAttributeNames": {"#namespace": PARTITION_KEY},
            "ExpressionAttributeValues": {":namespace": {"S": namespace}},
            "ConsistentRead": True,
            **extra,
        }
        if "ExpressionAttributeNames" in extra:
            request["ExpressionAttributeNames"] = {
                "#namespace": PARTITION_KEY,
                **extra["ExpressionAttributeNames"],
            }

        items: list[dict[str, Any]] = []
        while True:
            response = await self._call("query", **request)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            request["ExclusiveStartKey"] = last_key

    async def close(self) -> None:
        if self._owns_client and self._exit_stack is not None:
            await self._exit_stack.aclose()
            self._exit_stack = None
            self._client = None


class DynamoDBDataStore(DynamoDBClientMixin, DataStore):
    """
    DynamoDB data store. The table must already exist with a string
    partition key "namespace" and a string sort key "key".

    Usage:
        store = DynamoDBDataStore(table_name="flags", prefix="prod")
        await store.init(all_data)
        await store.close()
    """

    def __init__(
        self,
        table_name: str,
        prefix: str = DEFAULT_PREFIX,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        client: Any | None = None,
    ):
        self._setup_client(table_name, prefix, region, endpoint_url, access_key, secret_key, client)
        logger.info(
            "Using DynamoDB data store",
            table=table_name,
            prefix=self.prefix,
            endpoint=self.endpoint,
        )

    def _namespace(self, kind: DataKind) -> str:
        return kind_key(self.prefix, kind)

    def _marshal(self, kind: DataKind, key: str, item: ItemDescriptor) -> dict[str, Any]:
        encoded = make_keys(self._namespace(kind), key)
        encoded[VERSION_ATTR] = {"N": str(item.version)}
        encoded[ITEM_ATTR] = {
            "S": DELETED_ITEM_PLACEHOLDER if item.deleted else kind.serialize(key, item)
        }
        return encoded

    def _unmarshal(self, kind: DataKind, encoded: dict[str, Any] | None) -> ItemDescriptor | None:
        if not encoded:
            return None

        serialized = encoded.get(ITEM_ATTR, {}).get("S")
        if serialized is None:
            raise InvalidStoreDataError("Invalid data in DynamoDB: missing item attribute")
        raw_version = encoded.get(VERSION_ATTR, {}).get("N")
        if raw_version is None:
            raise InvalidStoreDataError("Invalid data in DynamoDB: missing version attribute")
        try:
            version = int(raw_version)
        except ValueError as e:
            raise InvalidStoreDataError("Invalid data in DynamoDB: non-numeric version") from e

        if serialized == DELETED_ITEM_PLACEHOLDER:
            return ItemDescriptor.tombstone(version)
        try:
            decoded = kind.deserialize(serialized)
        except ValidationError as e:
            raise InvalidStoreDataError(f"Invalid data in DynamoDB: {e}") from e
        return ItemDescriptor(version=version, item=decoded.item)

    def _check_size_limit(self, encoded: dict[str, Any]) -> bool:
        # fixed overhead for index data, then attribute names and values
        size = 100
        for name, value in encoded.items():
            size += len(name.encode("utf-8"))
            raw = value.get("S", value.get("N", ""))
            size += len(raw.encode("utf-8"))
        if size <= DYNAMODB_MAX_ITEM_SIZE:
            return True
        logger.error(
            "Item too large to store in DynamoDB, dropped",
            namespace=encoded[PARTITION_KEY]["S"],
            key=encoded[SORT_KEY]["S"],
            size=size,
        )
        return False

    async def is_initialized(self) -> bool:
        marker = inited_key(self.prefix)
        return await self._get_item(marker, marker) is not None

    async def init(self, all_data: FullDataSet) -> None:
        # Read existing keys first; whatever is not in all_data is deleted afterwards
        unused_old_keys: set[tuple[str, str]] = set()
        for kind in dict.fromkeys([*all_data, *ALL_KINDS]):
            found = await self._query(
                self._namespace(kind),
                ProjectionExpression="#namespace, #key",
                ExpressionAttributeNames={"#key": SORT_KEY},
            )
            unused_old_keys.update(
                (item[PARTITION_KEY]["S"], item[SORT_KEY]["S"]) for item in found
            )

        requests: list[dict[str, Any]] = []
        num_items = 0

        for kind, items in all_data.items():
            for key, item in items.items():
                encoded = self._marshal(kind, key, item)
                if not self._check_size_limit(encoded):
                    continue
                requests.append({"PutRequest": {"Item": encoded}})
                unused_old_keys.discard((self._namespace(kind), key))
                num_items += 1

        for namespace, key in sorted(unused_old_keys):
            requests.append({"DeleteRequest": {"Key": make_keys(namespace, key)}})

        marker = inited_key(self.prefix)
        requests.append({"PutRequest": {"Item": make_keys(marker, marker)}})

        await self._batch_write(requests)

        logger.info(
            "Initialized data store",
            backend="dynamodb",
            items=num_items,
            deleted=len(unused_old_keys),
        )

    async def _batch_write(self, requests: list[dict[str, Any]]) -> None:
        for start in range(0, len(requests), DYNAMODB_BATCH_LIMIT):
            pending = {self.table_name: requests[start:start + DYNAMODB_BATCH_LIMIT]}
            while pending:
                response = await self._call("batch_write_item", RequestItems=pending)
                pending = response.get("UnprocessedItems") or {}

    async def get(self, kind: DataKind, key: str) -> ItemDescriptor | None:
        return self._unmarshal(kind, await self._get_item(self._namespace(kind), key))

    async def get_all(self, kind: DataKind) -> dict[str, ItemDescriptor]:
        items = {}
        for encoded in await self._query(self._namespace(kind)):
            items[encoded[SORT_KEY]["S"]] = self._unmarshal(kind, encoded)
        return items

    async def upsert(self, kind: DataKind, key: str, item: ItemDescriptor) -> bool:
        encoded = self._marshal(kind, key, item)
        if not self._check_size_limit(encoded):
            return False

        # The condition is evaluated atomically against the stored version,
        # so a concurrent writer can never slip in between compare and write.
        try:
            await self._call(
                "put_item",
                TableName=self.table_name,
                Item=encoded,
                ConditionExpression=(
                    "attribute_not_exists(#namespace) or "
                    "attribute_not_exists(#key) or "
                    ":version > #version"
                ),
                ExpressionAttributeNames={
                    "#namespace": PARTITION_KEY,
                    "#key": SORT_KEY,
                    "#version": VERSION_ATTR,
                },
                ExpressionAttributeValues={":version": {"N": str(item.version)}},
            )
        except ClientError as e:
            if is_conditional_check_failure(e):
                return False
            raise
        return True

    async def is_available(self) -> bool:
        try:
            await self.is_initialized()
            return True
        except Exception:
            return False

    def describe(self) -> str:
        return "dynamodb"
