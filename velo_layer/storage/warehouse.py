"""
DuckDB warehouse for parkings time series.

Manages:
- velobike_parkings: append-only table, one row per (id, timestamp)
- WarehouseBatch: one open transaction with a prepared INSERT, guarded by a
  watchdog that interrupts the connection once the transaction outlives
  its timeout
"""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

import duckdb
from loguru import logger

from ..errors import StorageUnavailable
from ..schemas import INSERT_COLUMNS


TABLE_NAME = "velobike_parkings"

CREATE_STMT = f"""
    CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
        address VARCHAR,
        free_electric_places INTEGER,
        free_ordinary_places INTEGER,
        free_places INTEGER,
        has_terminal BOOLEAN,
        id VARCHAR,
        is_favourite BOOLEAN,
        is_locked BOOLEAN,
        name VARCHAR,
        station_types VARCHAR[],
        total_electric_places INTEGER,
        total_ordinary_places INTEGER,
        total_places INTEGER,
        latitude DOUBLE,
        longitude DOUBLE,
        "date" DATE DEFAULT current_date,
        "timestamp" TIMESTAMP,
        state_seconds DOUBLE
    )
"""

_PLACEHOLDERS = ", ".join("?::VARCHAR[]" if col == "station_types" else "?" for col in INSERT_COLUMNS)
_COLUMNS = ", ".join(f'"{col}"' for col in INSERT_COLUMNS)

INSERT_STMT = f"INSERT INTO {TABLE_NAME} ({_COLUMNS}) VALUES ({_PLACEHOLDERS})"

# Default store location (under DATA_ROOT)
DEFAULT_DB_NAME = "velobike.duckdb"


def resolve_db_path(db_url: Optional[str] = None) -> str:
    """
    Turn a connection string into a DuckDB database path.

    Accepts a plain path, "duckdb:///abs/path.duckdb", "duckdb://rel.duckdb"
    or ":memory:". Defaults to <DATA_ROOT>/velobike.duckdb.
    """
    if not db_url:
        data_root = os.environ.get("DATA_ROOT", ".")
        return str(Path(data_root) / DEFAULT_DB_NAME)
    if db_url.startswith("duckdb://"):
        db_url = db_url[len("duckdb://"):] or ":memory:"
    return db_url


class WarehouseBatch:
    """
    One storage transaction bound to a dedicated cursor.

    Rows are inserted immediately; nothing is durable until commit().
    After commit() or rollback() the batch is closed and cannot be reused.
    """

    def __init__(self, cursor: duckdb.DuckDBPyConnection, timeout: Optional[float] = None):
        self._cursor = cursor
        self._closed = False
        self._expired = threading.Event()
        self.rows = 0

        self._cursor.begin()

        self._watchdog: Optional[threading.Timer] = None
        if timeout:
            self._timeout = timeout
            self._watchdog = threading.Timer(timeout, self._expire)
            self._watchdog.daemon = True
            self._watchdog.start()

    def _expire(self) -> None:
        self._expired.set()
        logger.warning(f"Transaction exceeded {self._timeout:.0f}s, interrupting")
        try:
            self._cursor.interrupt()
        except duckdb.Error as e:
            logger.debug(f"Interrupt failed: {e}")

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Batch already committed or rolled back")
        if self._expired.is_set():
            raise TimeoutError(f"Transaction exceeded {self._timeout:.0f}s")

    def insert(self, row: tuple) -> None:
        """Execute the prepared INSERT for one row inside the transaction."""
        self._check_open()
        self._cursor.execute(INSERT_STMT, row)
        self.rows += 1

    def commit(self) -> None:
        """Commit the transaction and release the cursor."""
        self._check_open()
        try:
            self._cursor.commit()
        finally:
            self._finish()

    def rollback(self) -> None:
        """Abort the transaction. Safe to call on an already failed batch."""
        if self._closed:
            return
        try:
            self._cursor.rollback()
        except duckdb.Error as e:
            # The engine may already have aborted the transaction
            logger.debug(f"Rollback after failure: {e}")
        finally:
            self._finish()

    def _finish(self) -> None:
        self._closed = True
        if self._watchdog:
            self._watchdog.cancel()
        try:
            self._cursor.close()
        except duckdb.Error as e:
            logger.debug(f"Cursor close failed: {e}")


class ParkingWarehouse:
    """
    DuckDB store for enriched parkings records.

    Every batch runs on its own cursor (a DuckDB connection sharing the
    database), so a writer thread never shares transaction state with the
    thread that opened the warehouse.
    """

    def __init__(self, db_url: Optional[str] = None, timeout: Optional[float] = 300.0):
        """
        Initialize the warehouse (does not connect).

        Args:
            db_url: Path or duckdb:// URL. Defaults to <DATA_ROOT>/velobike.duckdb
            timeout: Max seconds a single transaction may stay open (None disables)
        """
        self.db_path = resolve_db_path(db_url)
        self.timeout = timeout
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    def connect(self) -> "ParkingWarehouse":
        """
        Open the database and verify it answers.

        Raises:
            StorageUnavailable: if the file cannot be opened or queried
        """
        with self._lock:
            if self._conn is None:
                try:
                    if self.db_path != ":memory:":
                        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                    self._conn = duckdb.connect(self.db_path)
                except (duckdb.Error, OSError) as e:
                    raise StorageUnavailable(f"Cannot open warehouse {self.db_path}: {e}") from e
        self.ping()
        logger.info(f"Connected to warehouse {self.db_path}")
        return self

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            self.connect()
        return self._conn

    def ping(self) -> None:
        """
        Run a trivial query.

        Raises:
            StorageUnavailable: if the query fails
        """
        try:
            with self._lock:
                self._conn.execute("SELECT 1").fetchone()
        except (duckdb.Error, AttributeError) as e:
            raise StorageUnavailable(f"Warehouse ping failed for {self.db_path}: {e}") from e

    @contextmanager
    def transaction(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """Context manager for a short transaction on a fresh cursor."""
        cursor = self._connection().cursor()
        cursor.begin()
        try:
            yield cursor
            cursor.commit()
        except Exception:
            cursor.rollback()
            raise
        finally:
            cursor.close()

    def init_db(self) -> None:
        """
        Create the parkings table if it doesn't exist.

        Raises:
            StorageUnavailable: if the DDL fails
        """
        try:
            with self.transaction() as cur:
                cur.execute(CREATE_STMT)
        except duckdb.Error as e:
            raise StorageUnavailable(f"Cannot create {TABLE_NAME}: {e}") from e
        logger.debug(f"Table {TABLE_NAME} ready")

    def begin_batch(self) -> WarehouseBatch:
        """Open a new transaction for a batch of inserts."""
        return WarehouseBatch(self._connection().cursor(), timeout=self.timeout)

    def count_rows(self, parking_id: Optional[str] = None) -> int:
        """Count stored rows, optionally for a single parking."""
        cur = self._connection().cursor()
        try:
            if parking_id is None:
                row = cur.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()
            else:
                row = cur.execute(f"SELECT COUNT(*) FROM {TABLE_NAME} WHERE id = ?", [parking_id]).fetchone()
        finally:
            cur.close()
        return row[0] if row else 0

    def fetch_state_series(self, parking_id: str) -> list[tuple]:
        """Return (timestamp, free_places, state_seconds) rows for one parking, oldest first."""
        cur = self._connection().cursor()
        try:
            return cur.execute(
                f'SELECT "timestamp", free_places, state_seconds FROM {TABLE_NAME} '
                f'WHERE id = ? ORDER BY "timestamp"',
                [parking_id],
            ).fetchall()
        finally:
            cur.close()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
