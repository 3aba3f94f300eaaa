"""
Error taxonomy for the ingestion pipeline.

- SourceUnavailable: the snapshot fetch failed; the cycle is aborted
- MalformedSnapshot / MissingFieldError: a required field is absent
- StorageUnavailable: the store cannot be reached at startup (fatal)
- WriteError: an insert or commit failed mid-batch
"""

from __future__ import annotations

from typing import Optional


class NodeError(Exception):
    """Base exception for ingestion errors."""
    pass


class SourceUnavailable(NodeError):
    """Raised when the parkings source cannot be fetched."""
    pass


class MalformedSnapshot(NodeError):
    """Raised when a snapshot cannot be turned into a record."""
    pass


class MissingFieldError(MalformedSnapshot):
    """Raised when a snapshot lacks a required field."""

    def __init__(self, field: str, parking_id: Optional[str] = None):
        self.field = field
        self.parking_id = parking_id
        where = f" (parking {parking_id})" if parking_id else ""
        super().__init__(f"Snapshot missing required field '{field}'{where}")


class StorageUnavailable(NodeError):
    """Raised when the warehouse cannot be opened or pinged."""
    pass


class WriteError(NodeError):
    """
    Raised when a batch insert or commit fails.

    Attributes:
        cause: The underlying storage exception
        committed: Rows made durable by earlier batches before the failure
    """

    def __init__(self, cause: BaseException, committed: int):
        self.cause = cause
        self.committed = committed
        super().__init__(f"Batch write failed after {committed} committed rows: {cause}")
