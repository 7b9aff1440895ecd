"""
Record model for replicated configuration data.

Records are versioned. The version is the only basis for conflict resolution:
a write for a key is applied only if its version is strictly greater than the
version already stored for that same key.

Attributes:
    FEATURES: feature flags; may reference other flags as prerequisites
    SEGMENTS: targeting segments; no intra-kind references
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from pydantic import BaseModel, ConfigDict, Field


class Prerequisite(BaseModel):
    """A flag that must evaluate to a given variation before another flag."""

    model_config = ConfigDict(extra="allow")

    key: str
    variation: int = 0


class FeatureFlag(BaseModel):
    """
    Feature flag record.

    Only the fields the replica acts on are typed. Targeting fields (rules,
    variations, fallthrough, salt...) are kept as-is so the record round-trips.
    """

    model_config = ConfigDict(extra="allow")

    key: str
    version: int = Field(ge=0)
    deleted: bool = False
    on: bool = False
    prerequisites: list[Prerequisite] = Field(default_factory=list)


class Segment(BaseModel):
    """
    Targeting segment record.

    Unbounded segments keep their membership out of band; the generation
    number identifies which computed membership set applies.
    """

    model_config = ConfigDict(extra="allow")

    key: str
    version: int = Field(ge=0)
    deleted: bool = False
    included: list[str] = Field(default_factory=list)
    excluded: list[str] = Field(default_factory=list)
    unbounded: bool = False
    generation: int | None = None


@dataclass(frozen=True)
class ItemDescriptor:
    """
    Versioned, possibly deleted, value for one key.

    A tombstone has item=None and still occupies its version slot.
    """
    version: int
    item: Any | None = None

    @property
    def deleted(self) -> bool:
        return self.item is None

    @classmethod
    def tombstone(cls, version: int) -> "ItemDescriptor":
        return cls(version=version, item=None)


def _no_dependencies(item: Any) -> Iterable[str]:
    return ()


def _flag_prerequisites(flag: FeatureFlag) -> Iterable[str]:
    return [p.key for p in flag.prerequisites]


@dataclass(frozen=True)
class DataKind:
    """
    Category of stored entity.

    Attributes:
        name: Storage namespace component (e.g. "features")
        stream_name: Name used by the update protocol (e.g. "flags")
        priority: Bulk-replace order, lower kinds are written first
        model: Pydantic model used to decode payloads
        dependencies: Returns the keys of same-kind items an item depends on
    """
    name: str
    stream_name: str
    priority: int
    model: type[BaseModel]
    dependencies: Callable[[Any], Iterable[str]] = _no_dependencies

    def __str__(self) -> str:
        return self.name

    def _describe(self, item: BaseModel) -> ItemDescriptor:
        if item.deleted:
            return ItemDescriptor.tombstone(item.version)
        return ItemDescriptor(version=item.version, item=item)

    def decode(self, data: dict[str, Any]) -> ItemDescriptor:
        """Decode an already-parsed JSON object. Raises pydantic.ValidationError."""
        return self._describe(self.model.model_validate(data))

    def deserialize(self, serialized: str | bytes) -> ItemDescriptor:
        """Decode a serialized JSON payload. Raises pydantic.ValidationError."""
        return self._describe(self.model.model_validate_json(serialized))

    def to_dict(self, key: str, descriptor: ItemDescriptor) -> dict[str, Any]:
        if descriptor.deleted:
            return {"key": key, "version": descriptor.version, "deleted": True}
        return descriptor.item.model_dump(mode="json", exclude_none=True)

    def serialize(self, key: str, descriptor: ItemDescriptor) -> str:
        """Serialize for storage; tombstones keep their key and version."""
        if descriptor.deleted:
            return json.dumps(self.to_dict(key, descriptor))
        return descriptor.item.model_dump_json(exclude_none=True)

    def get_dependency_keys(self, descriptor: ItemDescriptor) -> list[str]:
        if descriptor.deleted:
            return []
        return list(self.dependencies(descriptor.item))


SEGMENTS = DataKind(name="segments", stream_name="segments", priority=0, model=Segment)

FEATURES = DataKind(
    name="features",
    stream_name="flags",
    priority=1,
    model=FeatureFlag,
    dependencies=_flag_prerequisites,
)

ALL_KINDS: tuple[DataKind, ...] = (SEGMENTS, FEATURES)


def kind_for_stream_name(stream_name: str) -> DataKind | None:
    """Map an update-protocol collection name to its kind, or None if unknown."""
    for kind in ALL_KINDS:
        if kind.stream_name == stream_name:
            return kind
    return None


# Kind -> item key -> descriptor. Order within a kind only matters after sorting.
FullDataSet = dict[DataKind, dict[str, ItemDescriptor]]
