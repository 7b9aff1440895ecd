"""
Applies parsed update messages to a data store.

This is the seam between the synchronization driver (transport, reconnects,
backoff) and the replica: the driver hands over raw message bodies, this
module parses them and performs the matching store operation.
"""

import structlog

from .interfaces.store import DataStore
from .models import ItemDescriptor
from .protocol import parse_delete_data, parse_patch_data, parse_put_data
from .sorter import sort_all_collections

logger = structlog.get_logger()


class DataSourceUpdates:
    """
    Usage:
        updates = DataSourceUpdates(store)
        await updates.apply_event("put", body)
        await updates.apply_event("patch", body)
    """

    def __init__(self, store: DataStore):
        self.store = store

    async def apply_put(self, raw: str | bytes) -> None:
        """Replace the replica contents with a full data set."""
        put = parse_put_data(raw)
        await self.store.init(sort_all_collections(put.data))
        logger.info(
            "Applied full data set",
            **{kind.name: len(items) for kind, items in put.data.items()},
        )

    async def apply_patch(self, raw: str | bytes) -> bool:
        """Upsert one item. Returns whether the store accepted it."""
        patch = parse_patch_data(raw)
        if patch.kind is None:
            logger.debug("Ignoring patch for unrecognized path")
            return False

        applied = await self.store.upsert(patch.kind, patch.key, patch.item)
        if not applied:
            logger.debug(
                "Patch was stale",
                kind=patch.kind.name,
                key=patch.key,
                version=patch.item.version,
            )
        return applied

    async def apply_delete(self, raw: str | bytes) -> bool:
        """Write a tombstone. Returns whether the store accepted it."""
        delete = parse_delete_data(raw)
        if delete.kind is None:
            logger.debug("Ignoring delete for unrecognized path")
            return False

        applied = await self.store.upsert(
            delete.kind,
            delete.key,
            ItemDescriptor.tombstone(delete.version),
        )
        if not applied:
            logger.debug(
                "Delete was stale",
                kind=delete.kind.name,
                key=delete.key,
                version=delete.version,
            )
        return applied

    async def apply_event(self, event_type: str, raw: str | bytes) -> bool:
        """
        Dispatch a stream event by type.

        Returns False for unknown event types, which are ignored.
        """
        if event_type == "put":
            await self.apply_put(raw)
            return True
        if event_type == "patch":
            return await self.apply_patch(raw)
        if event_type == "delete":
            return await self.apply_delete(raw)

        logger.warning("Ignoring unknown stream event", event_type=event_type)
        return False
