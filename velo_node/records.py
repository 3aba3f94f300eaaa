"""Builds the enriched rows written to the warehouse."""

from __future__ import annotations

from datetime import datetime

from velo_layer.schemas import OutputRecord, ParkingSnapshot


def build_record(snapshot: ParkingSnapshot, timestamp: datetime, state_seconds: float) -> OutputRecord:
    """
    Combine a snapshot, the cycle timestamp and its seconds in state.

    Raises:
        MissingFieldError: if the snapshot lacks a required field
    """
    snapshot.require_fields()
    return OutputRecord(snapshot=snapshot, timestamp=timestamp, state_seconds=float(state_seconds))
