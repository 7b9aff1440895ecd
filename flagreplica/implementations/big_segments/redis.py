"""
Redis Big Segment store.

Layout:
- "{prefix}/big_segment_include/{hash}" and
  "{prefix}/big_segment_exclude/{hash}": sets of segment references
- "{prefix}/big_segments_synchronized_on": Unix epoch milliseconds
"""

from __future__ import annotations

import redis.asyncio as redis
import structlog

from ...core.errors import InvalidStoreDataError
from ...core.interfaces.big_segments import BigSegmentStore, BigSegmentStoreMetadata, Membership
from ...core.keys import DEFAULT_PREFIX, prefixed
from ..store.redis import RedisConnectionMixin

logger = structlog.get_logger()

INCLUDE_KEY = "big_segment_include"
EXCLUDE_KEY = "big_segment_exclude"
SYNC_TIME_KEY = "big_segments_synchronized_on"


def _text(value: str | bytes) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisBigSegmentStore(RedisConnectionMixin, BigSegmentStore):
    """
    Usage:
        store = RedisBigSegmentStore(url="redis://localhost:6379/0")
        metadata = await store.get_metadata()
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = DEFAULT_PREFIX,
        max_connections: int = 10,
        client: redis.Redis | None = None,
    ):
        self._setup_client(url, prefix, max_connections, client)
        logger.info("Using Redis Big Segment store", url=self.target, prefix=self.prefix)

    async def get_membership(self, context_hash: str) -> Membership | None:
        async with self._translate_errors():
            included = await self._client.smembers(prefixed(self.prefix, f"{INCLUDE_KEY}/{context_hash}"))
            excluded = await self._client.smembers(prefixed(self.prefix, f"{EXCLUDE_KEY}/{context_hash}"))

        # Redis has no empty sets, so both missing means nothing is stored
        if not included and not excluded:
            return None
        return Membership.from_refs(
            included=(_text(ref) for ref in included),
            excluded=(_text(ref) for ref in excluded),
        )

    async def get_metadata(self) -> BigSegmentStoreMetadata | None:
        async with self._translate_errors():
            raw = await self._client.get(prefixed(self.prefix, SYNC_TIME_KEY))

        if raw is None:
            return None
        raw = _text(raw)
        if raw == "":
            return BigSegmentStoreMetadata(last_up_to_date=None)
        try:
            return BigSegmentStoreMetadata(last_up_to_date=int(raw))
        except ValueError as e:
            raise InvalidStoreDataError("Invalid data in Redis: non-numeric timestamp") from e
