"""
DynamoDB Big Segment store.

Layout (same table conventions as the data store):
- Membership: ("{prefix}/big_segments_user", <context hash>) with string-set
  attributes "included" and "excluded".
- Metadata: ("{prefix}/big_segments_metadata", same) with numeric attribute
  "synchronizedOn" in Unix epoch milliseconds.
"""

from __future__ import annotations

from typing import Any

import structlog

from ...core.errors import InvalidStoreDataError
from ...core.interfaces.big_segments import BigSegmentStore, BigSegmentStoreMetadata, Membership
from ...core.keys import DEFAULT_PREFIX, prefixed
from ..store.dynamodb import DynamoDBClientMixin

logger = structlog.get_logger()

MEMBERSHIP_KEY = "big_segments_user"
INCLUDED_ATTR = "included"
EXCLUDED_ATTR = "excluded"

METADATA_KEY = "big_segments_metadata"
SYNC_TIME_ATTR = "synchronizedOn"


class DynamoDBBigSegmentStore(DynamoDBClientMixin, BigSegmentStore):
    """
    Usage:
        store = DynamoDBBigSegmentStore(table_name="big-segments")
        membership = await store.get_membership(hash_context_key("user-key"))
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
            "Using DynamoDB Big Segment store",
            table=table_name,
            prefix=self.prefix,
            endpoint=self.endpoint,
        )

    async def get_membership(self, context_hash: str) -> Membership | None:
        item = await self._get_item(prefixed(self.prefix, MEMBERSHIP_KEY), context_hash)
        if item is None:
            return None
        return Membership.from_refs(
            included=item.get(INCLUDED_ATTR, {}).get("SS"),
            excluded=item.get(EXCLUDED_ATTR, {}).get("SS"),
        )

    async def get_metadata(self) -> BigSegmentStoreMetadata | None:
        key = prefixed(self.prefix, METADATA_KEY)
        item = await self._get_item(key, key)
        if item is None:
            return None

        raw = item.get(SYNC_TIME_ATTR, {}).get("N")
        if not raw:
            return BigSegmentStoreMetadata(last_up_to_date=None)
        try:
            return BigSegmentStoreMetadata(last_up_to_date=int(raw))
        except ValueError as e:
            raise InvalidStoreDataError("Invalid data in DynamoDB: non-numeric timestamp") from e
