"""
One ingestion cycle: fetch -> track -> build -> sink.

The whole snapshot list is validated before any tracker state changes, so a
malformed snapshot aborts the cycle without leaving half-updated state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from loguru import logger

from velo_layer.errors import MalformedSnapshot, SourceUnavailable
from velo_layer.schemas import OutputRecord, ParkingSnapshot

from .records import build_record
from .tracker import StateTracker


class ParkingSource(Protocol):
    def list_parkings(self) -> list[ParkingSnapshot]: ...


class RecordSink(Protocol):
    def put(self, record: OutputRecord) -> None: ...


def fetch_snapshots(source: ParkingSource) -> list[ParkingSnapshot]:
    """
    Fetch one snapshot list from the source.

    Raises:
        SourceUnavailable: on any fetch failure (network, HTTP, timeout, payload)
        MalformedSnapshot: if the source reported an unparseable item
    """
    try:
        return source.list_parkings()
    except (MalformedSnapshot, SourceUnavailable):
        raise
    except Exception as e:
        raise SourceUnavailable(f"Parkings fetch failed: {e}") from e


def run_cycle(
    source: ParkingSource,
    tracker: StateTracker,
    sink: RecordSink,
    timestamp: datetime,
    default_increment: float,
) -> int:
    """
    Run one fetch-and-build cycle.

    Args:
        source: Provides list_parkings()
        tracker: Shared state tracker (mutated)
        sink: Receives one OutputRecord per parking, in source order
        timestamp: Cycle timestamp
        default_increment: Seconds credited to first-seen parkings

    Returns:
        Number of records handed to the sink

    Raises:
        SourceUnavailable: fetch failed
        MalformedSnapshot: a snapshot lacks a required field (tracker untouched)
        WriteError: the sink failed
    """
    parkings = fetch_snapshots(source)

    for parking in parkings:
        parking.require_fields()

    count = 0
    for parking in parkings:
        state_seconds = tracker.observe(parking.id, parking.free_places, timestamp, default_increment)
        sink.put(build_record(parking, timestamp, state_seconds))
        count += 1

    logger.debug(f"Cycle {timestamp.isoformat()}: {count} records")
    return count
