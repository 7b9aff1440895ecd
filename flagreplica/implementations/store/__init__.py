"""Data store implementations."""

from .memory import InMemoryDataStore
from .consul import ConsulDataStore
from .dynamodb import DynamoDBDataStore
from .redis import RedisDataStore

__all__ = [
    "InMemoryDataStore",
    "ConsulDataStore",
    "DynamoDBDataStore",
    "RedisDataStore",
]
