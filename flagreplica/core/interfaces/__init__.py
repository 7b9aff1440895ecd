"""
Core interfaces for extensibility.
All backends must implement these to be swappable.
"""

from .store import DataStore
from .big_segments import BigSegmentStore, BigSegmentStoreMetadata, Membership

__all__ = [
    "DataStore",
    "BigSegmentStore",
    "BigSegmentStoreMetadata",
    "Membership",
]
