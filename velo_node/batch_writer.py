"""
Batched transactional writes of enriched parkings records.

BatchWriter groups a stream of OutputRecords into transactions of at most
batch_size rows:
1. Open a transaction and insert rows one by one
2. Every batch_size rows: commit, report progress, open a new transaction
3. At the end of the stream: commit the partial batch, if any

Any insert or commit failure rolls back the open batch and raises
WriteError carrying the number of rows committed by earlier batches.
Rows of the failed batch are lost; re-running the cycle re-ingests them.

RecordStream runs a BatchWriter on a consumer thread behind a bounded
queue, so slow commits apply backpressure to snapshot processing.
"""

from __future__ import annotations

import queue
import threading
from typing import Callable, Iterable, Iterator, Optional

from loguru import logger

from velo_layer.errors import WriteError
from velo_layer.schemas import OutputRecord
from velo_layer.storage.warehouse import ParkingWarehouse, WarehouseBatch


DEFAULT_BATCH_SIZE = 50_000
DEFAULT_QUEUE_SIZE = 500


def log_progress(total: int) -> None:
    logger.info(f"{total} records have been imported")


class BatchWriter:
    """Writes records to the warehouse in size-bounded transactions."""

    def __init__(
        self,
        warehouse: ParkingWarehouse,
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_progress: Optional[Callable[[int], None]] = log_progress,
    ):
        """
        Args:
            warehouse: Storage supporting begin_batch()
            batch_size: Rows per transaction
            on_progress: Called with the running committed total after each commit
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.warehouse = warehouse
        self.batch_size = batch_size
        self.on_progress = on_progress

    def _begin(self, committed: int) -> WarehouseBatch:
        try:
            return self.warehouse.begin_batch()
        except Exception as e:
            raise WriteError(e, committed) from e

    def _commit(self, batch: WarehouseBatch, committed: int) -> None:
        try:
            batch.commit()
        except Exception as e:
            raise WriteError(e, committed) from e

    def _notify(self, total: int) -> None:
        if self.on_progress is not None:
            self.on_progress(total)

    def write(self, records: Iterable[OutputRecord]) -> int:
        """
        Insert all records, committing every batch_size rows.

        Args:
            records: Any iterable of OutputRecord (consumed once)

        Returns:
            Total number of rows committed

        Raises:
            WriteError: on insert/commit failure; .committed holds rows durable so far
        """
        committed = 0
        pending = 0
        batch = self._begin(committed)

        try:
            for record in records:
                try:
                    batch.insert(record.as_row())
                except Exception as e:
                    raise WriteError(e, committed) from e
                pending += 1

                if pending == self.batch_size:
                    self._commit(batch, committed)
                    committed += pending
                    pending = 0
                    self._notify(committed)
                    batch = self._begin(committed)

            if pending:
                self._commit(batch, committed)
                committed += pending
                self._notify(committed)
            else:
                batch.rollback()

        except WriteError as e:
            batch.rollback()
            logger.error(f"Batch aborted after {e.committed} committed rows: {e.cause}")
            raise
        except BaseException:
            batch.rollback()
            raise

        return committed


class StreamAborted(Exception):
    """Raised inside the consumer when the producer abandons the stream."""
    pass


_END = object()
_ABORT = object()


class RecordStream:
    """
    Bounded producer/consumer channel in front of a BatchWriter.

    The producer calls put() for each record and close() at the end.
    If the writer fails, the next put() raises its WriteError; the consumer
    keeps draining so the producer never blocks on a dead stream.

    Usable as a context manager: a clean exit closes the stream, an
    exception aborts it and rolls back the open batch.
    """

    def __init__(
        self,
        writer: BatchWriter,
        maxsize: int = DEFAULT_QUEUE_SIZE,
        name: str = "record-stream",
    ):
        self.writer = writer
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._error: Optional[BaseException] = None
        self._ended = False
        self._closed = False
        self._committed = 0
        self._thread = threading.Thread(target=self._consume, name=name, daemon=True)
        self._thread.start()

    def _records(self) -> Iterator[OutputRecord]:
        while True:
            item = self._queue.get()
            if item is _END:
                self._ended = True
                return
            if item is _ABORT:
                self._ended = True
                raise StreamAborted("Producer aborted the stream")
            yield item

    def _discard_remaining(self) -> None:
        while not self._ended:
            item = self._queue.get()
            if item is _END or item is _ABORT:
                self._ended = True

    def _consume(self) -> None:
        try:
            self._committed = self.writer.write(self._records())
        except StreamAborted:
            logger.warning("Record stream aborted; open batch rolled back")
        except BaseException as e:
            self._error = e
            self._discard_remaining()

    def put(self, record: OutputRecord) -> None:
        """
        Enqueue a record, blocking while the queue is full.

        Raises:
            WriteError: if the writer has already failed
        """
        if self._closed:
            raise RuntimeError("Record stream is closed")
        if self._error is not None:
            raise self._error
        self._queue.put(record)

    def close(self) -> int:
        """
        Flush the stream and wait for the final commit.

        Returns:
            Total rows committed by the writer

        Raises:
            WriteError: if the writer failed
        """
        if not self._closed:
            self._closed = True
            self._queue.put(_END)
            self._thread.join()
        if self._error is not None:
            raise self._error
        return self._committed

    def abort(self) -> None:
        """Stop the consumer and roll back the uncommitted batch."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_ABORT)
        self._thread.join()

    @property
    def committed(self) -> int:
        return self._committed

    @property
    def failed(self) -> bool:
        return self._error is not None

    def __enter__(self) -> "RecordStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()
