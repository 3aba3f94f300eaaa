#!/usr/bin/env python3
"""
Entry point for the Velobike parkings node.

Two modes:
- Live: poll the API once immediately, then every --interval seconds
- Bulk: replay a recorded parkings-<ts>.json archive and exit

Usage:
  python -m velo_node                          # Live polling
  python -m velo_node -f parkings.tar.bz2      # Bulk import an archive
  python -m velo_node -c duckdb:///data/v.duckdb --interval 30
  python -m velo_node --selfcheck              # Run self-checks and exit
"""

from __future__ import annotations

import argparse
import os
import signal
import sys
import time
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

from velo_layer.connectors import ParkingArchive, VelobikeConnector
from velo_layer.errors import NodeError, StorageUnavailable
from velo_layer.storage import ParkingWarehouse

from .config import NodeConfig, load_config
from .scheduler import LiveLoop, NodeContext, run_bulk


def configure_logging(log_file: bool = True, verbose: bool = False) -> None:
    """Configure loguru logging."""
    logger.remove()

    # Console output
    level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level:<8}</level> | <cyan>{name}</cyan> - {message}",
        level=level,
        colorize=True,
    )

    # File output
    if log_file:
        log_dir = Path(os.environ.get("DATA_ROOT", ".")) / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "velo_node.log"

        logger.add(
            log_path,
            rotation="10 MB",
            retention="7 days",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {name} - {message}",
            level="DEBUG",
        )
        logger.info(f"Logging to {log_path}")


def open_warehouse(config: NodeConfig) -> ParkingWarehouse:
    """
    Connect to the warehouse and make sure the table exists.

    Raises:
        StorageUnavailable: if the store cannot be opened or initialized
    """
    warehouse = ParkingWarehouse(config.db_url, timeout=config.storage_timeout)
    warehouse.connect()
    warehouse.init_db()
    return warehouse


def selfcheck(config: NodeConfig) -> bool:
    """
    Run self-checks and report status.

    Returns:
        True if all checks pass
    """
    logger.info("Running self-checks...")
    errors = []
    warnings = []

    # Check DATA_ROOT
    data_root = Path(os.environ.get("DATA_ROOT", "."))
    if not data_root.exists():
        errors.append(f"DATA_ROOT does not exist: {data_root}")
    elif not os.access(data_root, os.W_OK):
        errors.append(f"DATA_ROOT is not writable: {data_root}")
    else:
        logger.info(f"DATA_ROOT: {data_root}")

    # Check warehouse
    try:
        warehouse = open_warehouse(config)
        try:
            logger.info(f"Warehouse OK: {warehouse.count_rows()} rows in {warehouse.db_path}")
        finally:
            warehouse.close()
    except Exception as e:
        errors.append(f"Warehouse error: {e}")

    # Check API (not fatal: live ticks retry on their own)
    connector = VelobikeConnector(base_url=config.api_url, timeout=config.request_timeout, max_retries=0)
    try:
        if connector.ping():
            logger.info(f"API OK: {connector.parkings_url}")
        else:
            warnings.append(f"API unreachable: {connector.parkings_url}")
    finally:
        connector.close()

    # Report
    for warning in warnings:
        logger.warning(warning)

    if errors:
        for error in errors:
            logger.error(error)
        logger.error("Self-check FAILED")
        return False

    logger.info("Self-check PASSED")
    return True


def run_bulk_import(config: NodeConfig, archive_path: Path) -> int:
    """
    Import an archive into the warehouse.

    Returns:
        Process exit code
    """
    if not archive_path.exists():
        logger.error(f"Archive not found: {archive_path}")
        return 1

    try:
        warehouse = open_warehouse(config)
    except StorageUnavailable as e:
        logger.error(f"Cannot start: {e}")
        return 1

    context = NodeContext(config=config, warehouse=warehouse)
    try:
        total = run_bulk(context, ParkingArchive(archive_path))
        logger.info(f"Imported {total} records from {archive_path}")
        return 0
    except NodeError as e:
        logger.error(f"Bulk import failed: {e}")
        return 1
    finally:
        warehouse.close()


def run_live(config: NodeConfig) -> int:
    """
    Poll the API until SIGINT/SIGTERM.

    Returns:
        Process exit code
    """
    try:
        warehouse = open_warehouse(config)
    except StorageUnavailable as e:
        logger.error(f"Cannot start: {e}")
        return 1

    connector = VelobikeConnector(base_url=config.api_url, timeout=config.request_timeout)
    context = NodeContext(config=config, warehouse=warehouse, source=connector)
    loop = LiveLoop(context)

    # Shutdown handler
    shutdown_requested = False

    def handle_shutdown(signum, frame):
        nonlocal shutdown_requested
        if shutdown_requested:
            logger.warning("Force shutdown requested")
            sys.exit(1)
        logger.info("Shutdown requested, finishing current tick...")
        shutdown_requested = True

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    loop.start(threaded=True)
    logger.info("Velobike node running. Press Ctrl-C to stop.")

    try:
        while not shutdown_requested and loop.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass

    loop.stop()
    connector.close()
    warehouse.close()

    logger.info(f"Velobike node stopped after {loop.ticks} ticks ({loop.failures} failed)")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Velobike parkings ingestion node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-f", "--archive",
        type=Path,
        help="Import a parkings-<ts>.json tarball instead of polling",
    )
    parser.add_argument(
        "-c", "--db",
        default=None,
        help="Warehouse path or duckdb:// URL (env: VELO_DB_URL)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Polling interval in seconds (env: RUN_INTERVAL_SECONDS)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to node.yml (default: configs/node.yml)",
    )
    parser.add_argument(
        "--selfcheck",
        action="store_true",
        help="Run self-checks and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    configure_logging(log_file=not args.selfcheck, verbose=args.verbose)

    try:
        config = load_config(args.config)
        if args.db:
            config.db_url = args.db
        if args.interval is not None:
            config.interval_seconds = args.interval
        config.validate()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    if args.selfcheck:
        return 0 if selfcheck(config) else 1

    if args.archive:
        return run_bulk_import(config, args.archive)

    return run_live(config)


if __name__ == "__main__":
    sys.exit(main())
