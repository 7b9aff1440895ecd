"""
Replica error hierarchy.

Absence of a record is never an error: stores return None for keys that were
never written. These exceptions are for the cases where the store could not
be asked, or where what it returned cannot be trusted.
"""


class ReplicaError(Exception):
    """Base class for all replica errors."""
    pass


class StoreError(ReplicaError):
    """Raised by data store and Big Segment store adapters."""
    pass


class StoreUnavailableError(StoreError):
    """
    The backend could not be reached or rejected the request.

    Recoverable: callers may retry later. The original transport exception is
    chained as __cause__.
    """

    def __init__(self, backend: str, message: str):
        self.backend = backend
        super().__init__(f"{backend} store unavailable: {message}")


class InvalidStoreDataError(StoreError):
    """Stored state exists but is corrupt (missing or non-numeric fields)."""
    pass


class StreamProtocolError(ReplicaError, ValueError):
    """An update message was malformed or missing a required field."""

    def __init__(self, message_type: str, detail: str):
        self.message_type = message_type
        self.detail = detail
        super().__init__(f"Malformed {message_type} message: {detail}")
