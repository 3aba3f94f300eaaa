"""
Drives ingestion cycles in bulk (archive replay) or live (polling) mode.

Bulk mode feeds every archived snapshot through one long-lived record
stream, so batch commits span snapshots. Live mode runs one cycle
immediately, then one per interval; each tick gets its own stream and
transaction lifecycle. Ticks run on a single worker, so they never overlap
and the tracker has one writer at a time.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from loguru import logger

from velo_layer.connectors.archive import StaticSource
from velo_layer.schemas import ParkingSnapshot
from velo_layer.storage.warehouse import ParkingWarehouse

from .batch_writer import BatchWriter, RecordStream
from .config import NodeConfig
from .pipeline import ParkingSource, run_cycle
from .tracker import StateTracker


@dataclass
class NodeContext:
    """Per-process state threaded through every cycle."""
    config: NodeConfig
    warehouse: ParkingWarehouse
    tracker: StateTracker = field(default_factory=StateTracker)
    source: Optional[ParkingSource] = None

    def new_stream(self, name: str = "record-stream") -> RecordStream:
        writer = BatchWriter(self.warehouse, batch_size=self.config.batch_size)
        return RecordStream(writer, maxsize=self.config.queue_size, name=name)


def run_bulk(
    context: NodeContext,
    archive: Iterable[tuple[datetime, list[ParkingSnapshot]]],
) -> int:
    """
    Replay an archive of snapshots in order.

    Args:
        context: Node context (tracker and warehouse are used)
        archive: (timestamp, parkings) pairs, oldest first

    Returns:
        Total rows committed

    Raises:
        MalformedSnapshot, WriteError: the first error aborts the replay
    """
    cycles = 0
    records = 0
    started = time.time()

    with context.new_stream(name="bulk-writer") as stream:
        for ts, parkings in archive:
            records += run_cycle(
                StaticSource(parkings),
                context.tracker,
                stream,
                ts,
                context.config.default_increment,
            )
            cycles += 1

    total = stream.committed
    logger.info(
        f"Bulk load done: {cycles} snapshots, {records} records, {total} committed "
        f"in {time.time() - started:.1f}s ({len(context.tracker)} parkings tracked)"
    )
    return total


def run_tick(context: NodeContext, timestamp: Optional[datetime] = None) -> int:
    """
    Run one live cycle in its own transaction lifecycle.

    Returns:
        Rows committed by this tick

    Raises:
        SourceUnavailable, MalformedSnapshot, WriteError
    """
    if context.source is None:
        raise RuntimeError("Live mode requires a parkings source")

    ts = timestamp or datetime.now(timezone.utc)

    with context.new_stream(name="live-writer") as stream:
        run_cycle(context.source, context.tracker, stream, ts, context.config.default_increment)

    max_idle = context.config.state_max_idle_seconds
    if max_idle:
        evicted = context.tracker.evict_idle(ts, max_idle)
        if evicted:
            logger.info(f"Evicted {evicted} idle parkings from state")

    return stream.committed


class LiveLoop:
    """
    Fixed-interval polling loop.

    Can be run in a thread or as the main loop. Tick failures are logged
    and the loop carries on; the next tick is the retry.
    """

    def __init__(
        self,
        context: NodeContext,
        interval: Optional[float] = None,
        max_ticks: Optional[int] = None,
        on_tick_complete: Optional[Callable[[int, Optional[Exception]], None]] = None,
    ):
        """
        Initialize the live loop.

        Args:
            context: Node context with a source
            interval: Seconds between tick starts (default: config.interval_seconds)
            max_ticks: Stop after this many ticks (default: run until stopped)
            on_tick_complete: Optional callback(rows, error) after each tick
        """
        self.context = context
        self.interval = interval if interval is not None else context.config.interval_seconds
        self.max_ticks = max_ticks
        self.on_tick_complete = on_tick_complete

        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.ticks = 0
        self.failures = 0

    def start(self, threaded: bool = True) -> None:
        """
        Start the loop.

        Args:
            threaded: If True, run in a background thread
        """
        self._running = True
        self._stop_event.clear()

        if threaded:
            self._thread = threading.Thread(target=self._run_loop, name="live-loop", daemon=True)
            self._thread.start()
            logger.info("LiveLoop started in background thread")
        else:
            self._run_loop()

    def stop(self) -> None:
        """Stop the loop; an in-flight tick is allowed to finish."""
        self._running = False
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=max(10.0, self.context.config.request_timeout))
            self._thread = None
        logger.info("LiveLoop stopped")

    def _tick(self) -> None:
        error: Optional[Exception] = None
        rows = 0
        try:
            rows = run_tick(self.context)
            logger.info(f"Tick {self.ticks + 1}: {rows} records committed")
        except Exception as e:
            error = e
            self.failures += 1
            logger.exception(f"Tick {self.ticks + 1} failed: {e}")
        finally:
            self.ticks += 1

        if self.on_tick_complete:
            self.on_tick_complete(rows, error)

    def _run_loop(self) -> None:
        """Main loop: tick, then wait for the next wall-clock slot."""
        logger.info(f"LiveLoop running every {self.interval:.0f}s")
        next_run = time.monotonic()

        while self._running:
            try:
                self._tick()
            except KeyboardInterrupt:
                logger.info("LiveLoop interrupted")
                break

            if self.max_ticks is not None and self.ticks >= self.max_ticks:
                break

            next_run += self.interval
            delay = next_run - time.monotonic()
            if delay < 0:
                # Tick overran one or more slots; realign instead of bursting
                missed = int(-delay // self.interval) + 1
                logger.warning(f"Tick overran the interval, skipping {missed} slot(s)")
                next_run += missed * self.interval
                delay = next_run - time.monotonic()

            if self._stop_event.wait(max(0.0, delay)):
                break

        self._running = False
        logger.info("LiveLoop exiting")

    @property
    def is_running(self) -> bool:
        """Check if the loop is running."""
        return self._running
