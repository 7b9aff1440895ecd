"""Big Segment store implementations."""

from .dynamodb import DynamoDBBigSegmentStore
from .redis import RedisBigSegmentStore

__all__ = ["DynamoDBBigSegmentStore", "RedisBigSegmentStore"]
