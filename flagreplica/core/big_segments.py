"""
Big Segment membership lookups and freshness.

Context keys are hashed before they reach the store, so the store never
holds raw identifiers in queryable form. Freshness policy (how old is too
old) belongs to the caller; stores only report the last sync timestamp.
"""

from __future__ import annotations

import base64
import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

import structlog

from .errors import StoreError
from .interfaces.big_segments import BigSegmentStore, BigSegmentStoreMetadata, Membership
from .models import Segment

logger = structlog.get_logger()


class BigSegmentsStatus(str, Enum):
    """Outcome attached to every membership query."""

    HEALTHY = "healthy"
    STALE = "stale"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class BigSegmentsQueryResult:
    membership: Membership | None
    status: BigSegmentsStatus


def hash_context_key(key: str) -> str:
    """Base64-encoded SHA-256 of the UTF-8 context key."""
    return base64.b64encode(hashlib.sha256(key.encode("utf-8")).digest()).decode("ascii")


def make_segment_ref(segment: Segment) -> str:
    """Reference string naming a segment generation: "{key}.g{generation}"."""
    return f"{segment.key}.g{segment.generation}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_stale(
    metadata: BigSegmentStoreMetadata | None,
    stale_after: timedelta,
    now: datetime | None = None,
) -> bool:
    """
    Whether membership data should be treated as stale.

    Missing metadata or a missing timestamp counts as infinitely stale.
    """
    if metadata is None or metadata.last_up_to_date is None:
        return True
    now = now or _utcnow()
    threshold_ms = (now - stale_after).timestamp() * 1000
    return metadata.last_up_to_date < threshold_ms


@dataclass
class _CachedMembership:
    membership: Membership | None
    expires_at: float

    @property
    def is_expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class BigSegmentStoreWrapper:
    """
    Caller-side access to a BigSegmentStore for the evaluation engine.

    Caches membership per context key (bounded, LRU) and metadata status for
    a short interval. Store failures are reported as STORE_ERROR rather than
    raised, so evaluation can fall back.

    Usage:
        wrapper = BigSegmentStoreWrapper(store, stale_after=timedelta(minutes=2))
        result = await wrapper.get_membership("user-key")
        if result.membership is not None:
            included = result.membership.check_membership(make_segment_ref(segment))
    """

    def __init__(
        self,
        store: BigSegmentStore,
        stale_after: timedelta = timedelta(minutes=2),
        context_cache_size: int = 1000,
        context_cache_time: timedelta = timedelta(seconds=5),
        status_poll_interval: timedelta = timedelta(seconds=5),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.stale_after = stale_after
        self.context_cache_size = context_cache_size
        self._cache_seconds = context_cache_time.total_seconds()
        self._status_seconds = status_poll_interval.total_seconds()
        self._clock = clock
        self._cache: OrderedDict[str, _CachedMembership] = OrderedDict()
        self._status: BigSegmentsStatus | None = None
        self._status_checked_at = 0.0

    def _cache_get(self, context_key: str) -> _CachedMembership | None:
        entry = self._cache.get(context_key)
        if entry is None:
            return None
        if entry.is_expired:
            del self._cache[context_key]
            return None
        self._cache.move_to_end(context_key)
        return entry

    def _cache_put(self, context_key: str, membership: Membership | None) -> None:
        if self.context_cache_size <= 0 or self._cache_seconds <= 0:
            return
        self._cache[context_key] = _CachedMembership(
            membership=membership,
            expires_at=time.monotonic() + self._cache_seconds,
        )
        self._cache.move_to_end(context_key)
        while len(self._cache) > self.context_cache_size:
            self._cache.popitem(last=False)

    async def get_membership(self, context_key: str) -> BigSegmentsQueryResult:
        entry = self._cache_get(context_key)
        if entry is None:
            try:
                membership = await self.store.get_membership(hash_context_key(context_key))
            except StoreError as e:
                logger.error("Big Segment store membership query failed", error=str(e))
                return BigSegmentsQueryResult(membership=None, status=BigSegmentsStatus.STORE_ERROR)
            self._cache_put(context_key, membership)
        else:
            membership = entry.membership

        return BigSegmentsQueryResult(membership=membership, status=await self.get_status())

    async def get_status(self) -> BigSegmentsStatus:
        """Current store status, re-read at most once per poll interval."""
        now = time.monotonic()
        if self._status is not None and now - self._status_checked_at < self._status_seconds:
            return self._status

        try:
            metadata = await self.store.get_metadata()
        except StoreError as e:
            logger.error("Big Segment store metadata query failed", error=str(e))
            status = BigSegmentsStatus.STORE_ERROR
        else:
            stale = is_stale(metadata, self.stale_after, self._clock())
            status = BigSegmentsStatus.STALE if stale else BigSegmentsStatus.HEALTHY

        if status != self._status:
            logger.info("Big Segment store status changed", status=status.value)
        self._status = status
        self._status_checked_at = now
        return status

    def clear_cache(self) -> None:
        self._cache.clear()
        self._status = None

    async def close(self) -> None:
        self.clear_cache()
        await self.store.close()
