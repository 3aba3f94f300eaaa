"""
Tests for the python -m velo_node entry point.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

import pytest

import velo_node.__main__ as cli
from velo_layer.connectors import VelobikeConnector
from velo_layer.storage import ParkingWarehouse


T0 = 1714564800


@pytest.fixture()
def quiet_cli(monkeypatch, temp_data_root):
    """Keep main() from touching loguru sinks or a developer .env."""
    monkeypatch.setattr(cli, "configure_logging", lambda log_file=True, verbose=False: None)
    monkeypatch.setattr(cli, "load_dotenv", lambda *a, **k: False)
    return temp_data_root


def count_rows(db_path: Path) -> int:
    wh = ParkingWarehouse(str(db_path)).connect()
    try:
        return wh.count_rows()
    finally:
        wh.close()


def test_bulk_import(quiet_cli, write_archive, parking_payload):
    db_path = quiet_cli / "cli.duckdb"
    archive = write_archive({T0: [parking_payload], T0 + 60: [parking_payload]})

    code = cli.main(["-f", str(archive), "-c", str(db_path), "--config", str(quiet_cli / "none.yml")])

    assert code == 0
    assert count_rows(db_path) == 2


def test_bulk_import_error_exits_nonzero(quiet_cli, write_archive, parking_payload):
    broken = dict(parking_payload)
    del broken["FreePlaces"]
    archive = write_archive({T0: [broken]})

    code = cli.main(["-f", str(archive), "-c", str(quiet_cli / "cli.duckdb"), "--config", str(quiet_cli / "none.yml")])

    assert code == 1


def test_corrupt_archive_is_reported_not_raised(quiet_cli):
    archive = quiet_cli / "bad.tar.bz2"
    archive.write_bytes(b"not a tarball at all")

    code = cli.main(["-f", str(archive), "-c", str(quiet_cli / "cli.duckdb"), "--config", str(quiet_cli / "none.yml")])

    assert code == 1


def test_missing_archive(quiet_cli):
    assert cli.main(["-f", str(quiet_cli / "nope.tar.bz2"), "--config", str(quiet_cli / "none.yml")]) == 1


def test_db_flag_overrides_env(quiet_cli, monkeypatch, write_archive, parking_payload):
    monkeypatch.setenv("VELO_DB_URL", str(quiet_cli / "env.duckdb"))
    archive = write_archive({T0: [parking_payload]})

    cli.main(["-f", str(archive), "-c", str(quiet_cli / "flag.duckdb"), "--config", str(quiet_cli / "none.yml")])

    assert (quiet_cli / "flag.duckdb").exists()
    assert not (quiet_cli / "env.duckdb").exists()


def test_invalid_interval(quiet_cli):
    assert cli.main(["--interval", "0", "--config", str(quiet_cli / "none.yml")]) == 1


def test_selfcheck_tolerates_unreachable_api(quiet_cli, monkeypatch):
    monkeypatch.setattr(VelobikeConnector, "ping", lambda self: False)

    code = cli.main(["--selfcheck", "-c", str(quiet_cli / "check.duckdb"), "--config", str(quiet_cli / "none.yml")])

    assert code == 0


def test_selfcheck_fails_on_bad_store(quiet_cli, monkeypatch):
    monkeypatch.setattr(VelobikeConnector, "ping", lambda self: True)

    # A directory is not a database file
    code = cli.main(["--selfcheck", "-c", str(quiet_cli), "--config", str(quiet_cli / "none.yml")])

    assert code == 1
