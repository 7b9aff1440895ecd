"""
Feature flag replica.

Keeps a process-local replica of flags and segments in sync with a remote
source, over interchangeable persistent stores shared by many writers.

Usage:

Level 1 - In-memory replica fed by a stream driver:
    from flagreplica import DataSourceUpdates, InMemoryDataStore, FEATURES

    store = InMemoryDataStore()
    updates = DataSourceUpdates(store)
    await updates.apply_event("put", body)
    flag = await store.get(FEATURES, "new-dashboard")

Level 2 - Persistent store from settings (REPLICA_STORE_BACKEND=redis):
    from flagreplica import create_data_store, register_backends

    register_backends()
    store = create_data_store()

Level 3 - Big Segments:
    from flagreplica import create_big_segment_store, make_segment_ref

    big_segments = create_big_segment_store()
    result = await big_segments.get_membership("user-key")
    if result.membership is not None:
        included = result.membership.check_membership(make_segment_ref(segment))
"""

from .core.big_segments import (
    BigSegmentStoreWrapper,
    BigSegmentsQueryResult,
    BigSegmentsStatus,
    hash_context_key,
    is_stale,
    make_segment_ref,
)
from .core.errors import (
    InvalidStoreDataError,
    ReplicaError,
    StoreError,
    StoreUnavailableError,
    StreamProtocolError,
)
from .core.interfaces import BigSegmentStore, BigSegmentStoreMetadata, DataStore, Membership
from .core.keys import DEFAULT_PREFIX
from .core.models import (
    ALL_KINDS,
    FEATURES,
    SEGMENTS,
    DataKind,
    FeatureFlag,
    FullDataSet,
    ItemDescriptor,
    Prerequisite,
    Segment,
)
from .core.protocol import parse_delete_data, parse_patch_data, parse_put_data
from .core.sorter import sort_all_collections
from .core.updates import DataSourceUpdates
from .implementations.register import (
    create_big_segment_store,
    create_data_store,
    register_backends,
)
from .implementations.store.memory import InMemoryDataStore
from .utils.caching import CachingStoreWrapper, DataStoreStatus

__all__ = [
    # Model
    "ALL_KINDS",
    "FEATURES",
    "SEGMENTS",
    "DataKind",
    "FeatureFlag",
    "FullDataSet",
    "ItemDescriptor",
    "Prerequisite",
    "Segment",
    "DEFAULT_PREFIX",
    # Stores
    "DataStore",
    "InMemoryDataStore",
    "CachingStoreWrapper",
    "DataStoreStatus",
    "create_data_store",
    "register_backends",
    # Updates
    "DataSourceUpdates",
    "parse_put_data",
    "parse_patch_data",
    "parse_delete_data",
    "sort_all_collections",
    # Big Segments
    "BigSegmentStore",
    "BigSegmentStoreMetadata",
    "BigSegmentStoreWrapper",
    "BigSegmentsQueryResult",
    "BigSegmentsStatus",
    "Membership",
    "create_big_segment_store",
    "hash_context_key",
    "is_stale",
    "make_segment_ref",
    # Errors
    "ReplicaError",
    "StoreError",
    "StoreUnavailableError",
    "InvalidStoreDataError",
    "StreamProtocolError",
]
