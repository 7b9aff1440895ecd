"""
Big Segment store contract.

Big Segment membership is computed by an external process and written to a
persistent store; from this package it is read-only.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Membership:
    """
    Segment references a single context hash is included in or excluded from.

    A reference is "{segment_key}.g{generation}".
    """
    included: frozenset[str] = field(default_factory=frozenset)
    excluded: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_refs(cls, included=None, excluded=None) -> "Membership":
        return cls(
            included=frozenset(included or ()),
            excluded=frozenset(excluded or ()),
        )

    def check_membership(self, segment_ref: str) -> bool | None:
        """True if included, False if excluded, None if neither. Inclusion wins."""
        if segment_ref in self.included:
            return True
        if segment_ref in self.excluded:
            return False
        return None


@dataclass(frozen=True)
class BigSegmentStoreMetadata:
    """
    Store metadata.

    last_up_to_date is Unix epoch milliseconds, or None if the external
    process has never recorded a synchronization time.
    """
    last_up_to_date: int | None = None


class BigSegmentStore(ABC):
    """
    Read-only membership store.

    Implementations:
    - DynamoDBBigSegmentStore
    - RedisBigSegmentStore
    """

    @abstractmethod
    async def get_membership(self, context_hash: str) -> Membership | None:
        """
        Membership for a hashed context key.

        None means nothing is stored for that hash.
        """
        pass

    @abstractmethod
    async def get_metadata(self) -> BigSegmentStoreMetadata | None:
        """
        Store metadata.

        None means the metadata record was never written, which is distinct
        from metadata with no timestamp.
        """
        pass

    async def close(self) -> None:
        """Release resources the store created itself."""
        pass
