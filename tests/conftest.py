from __future__ import annotations

import io
import json
import shutil
import sys
import tarfile
from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) in sys.path:
    sys.path.remove(str(_REPO_ROOT))
sys.path.insert(0, str(_REPO_ROOT))

import pytest

from velo_layer.schemas import ParkingSnapshot
from velo_layer.storage import ParkingWarehouse


_ENV_KEYS = [
    "VELO_DB_URL",
    "VELOBIKE_API_URL",
    "RUN_INTERVAL_SECONDS",
    "VELO_DEFAULT_INCREMENT",
    "VELO_BATCH_SIZE",
    "VELO_QUEUE_SIZE",
    "VELO_REQUEST_TIMEOUT",
    "VELO_STORAGE_TIMEOUT",
    "VELO_STATE_MAX_IDLE",
]


@pytest.fixture()
def temp_data_root(tmp_path, monkeypatch):
    """
    Isolated DATA_ROOT for tests (keeps duckdb files and logs away from the repo).
    Node env overrides are cleared so a developer's .env cannot leak in.
    """
    data_root = tmp_path / "data_root"
    data_root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("DATA_ROOT", str(data_root))
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield data_root
    shutil.rmtree(data_root, ignore_errors=True)


@pytest.fixture()
def warehouse(temp_data_root):
    """
    Fresh ParkingWarehouse backed by a throwaway duckdb file, table created.
    """
    wh = ParkingWarehouse(str(temp_data_root / "velobike_test.duckdb"), timeout=None)
    wh.connect()
    wh.init_db()
    yield wh
    wh.close()


@pytest.fixture()
def make_parking():
    """
    Factory for complete ParkingSnapshot objects; keyword overrides win.
    """

    def _make(parking_id: str = "0001", free_places: int = 5, **overrides) -> ParkingSnapshot:
        fields = {
            "id": parking_id,
            "free_places": free_places,
            "name": f"Station {parking_id}",
            "address": f"Tverskaya {parking_id}",
            "latitude": 55.7558,
            "longitude": 37.6173,
            "free_electric_places": 1,
            "free_ordinary_places": free_places - 1 if free_places else 0,
            "total_places": 12,
            "total_electric_places": 2,
            "total_ordinary_places": 10,
            "has_terminal": True,
            "is_favourite": False,
            "is_locked": False,
            "station_types": ("ordinary", "electric"),
        }
        fields.update(overrides)
        return ParkingSnapshot(**fields)

    return _make


@pytest.fixture()
def parking_payload():
    """
    One raw item as returned under "Items" by the parkings endpoint.
    """
    return {
        "Id": "0105",
        "Address": "ul. Tverskaya, 13",
        "FreeElectricPlaces": 2,
        "FreeOrdinaryPlaces": 7,
        "FreePlaces": 9,
        "HasTerminal": True,
        "IsFavourite": False,
        "IsLocked": False,
        "Name": "Tverskaya 13",
        "Position": {"Lat": 55.761, "Lon": 37.609},
        "StationTypes": ["ordinary", "electric"],
        "TotalElectricPlaces": 4,
        "TotalOrdinaryPlaces": 16,
        "TotalPlaces": 20,
    }


@pytest.fixture()
def write_archive(tmp_path):
    """
    Writes a parkings .tar.bz2 from {unix_ts: [item, ...]}.
    extra_members maps raw member names to raw bytes.
    """

    def _write(snapshots: dict, name: str = "parkings.tar.bz2", extra_members: dict = None) -> Path:
        path = tmp_path / name
        members = {
            f"parkings/parkings-{ts}.json": json.dumps({"Items": items}).encode()
            for ts, items in snapshots.items()
        }
        members.update(extra_members or {})
        with tarfile.open(path, "w:bz2") as tar:
            for member_name, data in members.items():
                info = tarfile.TarInfo(member_name)
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
        return path

    return _write
