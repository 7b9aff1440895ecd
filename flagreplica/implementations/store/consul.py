"""
Consul data store backend over the Consul KV HTTP API.

Layout:
- Items are stored as individual keys "{prefix}/{kind}/{key}" holding the
  serialized item (tombstones included).
- "{prefix}/$inited" marks that a complete data set has been written.

Consul transactions cannot hold more than 64 operations, so `init` is not
atomic. To keep the race with concurrent upserts small it never starts by
deleting everything: it writes every new item, then deletes keys that are no
longer present, then sets $inited. If another process upserts in between,
that update may be lost; the process running `init` is normally the one
receiving updates and will re-apply them shortly.
"""

from __future__ import annotations

import base64
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from pydantic import ValidationError

from ...core.errors import InvalidStoreDataError, StoreUnavailableError
from ...core.interfaces.store import DataStore
from ...core.keys import DEFAULT_PREFIX, inited_key, item_key, kind_key, normalize_prefix
from ...core.models import DataKind, FullDataSet, ItemDescriptor

logger = structlog.get_logger()

# Consul rejects transactions with more operations than this
CONSUL_TXN_LIMIT = 64


def _encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _decode(value: str | None) -> str:
    if not value:
        return ""
    return base64.b64decode(value).decode("utf-8")


class ConsulDataStore(DataStore):
    """
    Consul KV data store.

    Usage:
        store = ConsulDataStore(url="http://localhost:8500", prefix="prod")
        await store.init(all_data)
        flag = await store.get(FEATURES, "my-flag")
        await store.close()

        # Sharing an existing client: close() leaves it open
        store = ConsulDataStore(client=my_async_client)
    """

    def __init__(
        self,
        url: str = "http://localhost:8500",
        prefix: str = DEFAULT_PREFIX,
        token: str | None = None,
        datacenter: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.prefix = normalize_prefix(prefix)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=url, timeout=timeout)
        self.url = str(self._client.base_url) or url

        self._headers = {"X-Consul-Token": token} if token else {}
        self._params = {"dc": datacenter} if datacenter else {}

        logger.info("Using Consul data store", url=self.url, prefix=self.prefix)

    # ============================================================
    # HTTP HELPERS
    # ============================================================

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue a request; 404 is returned to the caller, other errors raise."""
        try:
            response = await self._client.request(
                method,
                path,
                params={**self._params, **(params or {})},
                headers=self._headers,
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise StoreUnavailableError("consul", str(e)) from e

        if response.status_code != 404 and response.is_error:
            raise StoreUnavailableError(
                "consul",
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}",
            )
        return response

    @staticmethod
    def _kv_path(key: str) -> str:
        return "/v1/kv/" + quote(key, safe="/")

    async def _get_pair(self, key: str) -> dict[str, Any] | None:
        response = await self._request("GET", self._kv_path(key))
        if response.status_code == 404:
            return None
        pairs = response.json()
        return pairs[0] if pairs else None

    async def _list_keys(self, prefix: str) -> list[str]:
        response = await self._request("GET", self._kv_path(prefix), params={"keys": ""})
        if response.status_code == 404:
            return []
        return response.json()

    def _deserialize(self, kind: DataKind, pair: dict[str, Any]) -> ItemDescriptor:
        try:
            return kind.deserialize(_decode(pair.get("Value")))
        except ValidationError as e:
            raise InvalidStoreDataError(
                f"Invalid data in Consul at {pair.get('Key')}: {e}"
            ) from e

    # ============================================================
    # DATA STORE OPERATIONS
    # ============================================================

    async def is_initialized(self) -> bool:
        return await self._get_pair(inited_key(self.prefix)) is not None

    async def init(self, all_data: FullDataSet) -> None:
        # Read existing keys first; whatever is not in all_data is deleted afterwards
        marker = inited_key(self.prefix)
        unused_old_keys = set(await self._list_keys(self.prefix + "/"))
        unused_old_keys.discard(marker)

        ops: list[dict[str, Any]] = []
        num_items = 0

        for kind, items in all_data.items():
            for key, item in items.items():
                full_key = item_key(self.prefix, kind, key)
                ops.append({
                    "KV": {
                        "Verb": "set",
                        "Key": full_key,
                        "Value": _encode(kind.serialize(key, item)),
                    }
                })
                unused_old_keys.discard(full_key)
                num_items += 1

        for old_key in sorted(unused_old_keys):
            ops.append({"KV": {"Verb": "delete", "Key": old_key}})

        ops.append({"KV": {"Verb": "set", "Key": marker, "Value": ""}})

        await self._batch_operations(ops)

        logger.info(
            "Initialized data store",
            backend="consul",
            items=num_items,
            deleted=len(unused_old_keys),
        )

    async def _batch_operations(self, ops: list[dict[str, Any]]) -> None:
        for start in range(0, len(ops), CONSUL_TXN_LIMIT):
            batch = ops[start:start + CONSUL_TXN_LIMIT]
            response = await self._request("PUT", "/v1/txn", json=batch)
            if response.status_code == 404:
                raise StoreUnavailableError("consul", "transaction endpoint not found")

    async def get(self, kind: DataKind, key: str) -> ItemDescriptor | None:
        pair = await self._get_pair(item_key(self.prefix, kind, key))
        if pair is None:
            return None
        return self._deserialize(kind, pair)

    async def get_all(self, kind: DataKind) -> dict[str, ItemDescriptor]:
        base = kind_key(self.prefix, kind) + "/"
        response = await self._request("GET", self._kv_path(base), params={"recurse": ""})
        if response.status_code == 404:
            return {}

        items = {}
        for pair in response.json():
            items[pair["Key"][len(base):]] = self._deserialize(kind, pair)
        return items

    async def upsert(self, kind: DataKind, key: str, item: ItemDescriptor) -> bool:
        full_key = item_key(self.prefix, kind, key)
        serialized = kind.serialize(key, item)

        # Retry until either our write lands or the stored version wins
        while True:
            old_pair = await self._get_pair(full_key)
            if old_pair is not None:
                old_item = self._deserialize(kind, old_pair)
                if old_item.version >= item.version:
                    return False

            # ModifyIndex 0 means "only if the key still does not exist"
            modify_index = old_pair["ModifyIndex"] if old_pair is not None else 0
            response = await self._request(
                "PUT",
                self._kv_path(full_key),
                params={"cas": modify_index},
                content=serialized.encode("utf-8"),
            )
            if response.json() is True:
                return True

            logger.debug("Concurrent modification detected, retrying", key=full_key)

    async def is_available(self) -> bool:
        try:
            await self.is_initialized()
            return True
        except Exception:
            return False

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def describe(self) -> str:
        return "consul"
