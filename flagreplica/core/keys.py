"""
Store key layout shared by all persistent backends.

    {prefix}/{kind}/{key}   one stored item
    {prefix}/$inited        set once a complete data set has been written

The prefix lets independent replicas share one physical store.
"""

from .models import DataKind

DEFAULT_PREFIX = "launchdarkly"

INITED_NAME = "$inited"


def normalize_prefix(prefix: str | None) -> str:
    """Strip trailing separators; an empty prefix means the default."""
    prefix = (prefix or "").rstrip("/")
    return prefix or DEFAULT_PREFIX


def prefixed(prefix: str, name: str) -> str:
    return f"{normalize_prefix(prefix)}/{name}"


def kind_key(prefix: str, kind: DataKind) -> str:
    return prefixed(prefix, kind.name)


def item_key(prefix: str, kind: DataKind, key: str) -> str:
    return f"{kind_key(prefix, kind)}/{key}"


def inited_key(prefix: str) -> str:
    return prefixed(prefix, INITED_NAME)
