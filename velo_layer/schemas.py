"""
Record definitions for Velobike parkings.

A ParkingSnapshot is one station as reported by the source in a single
polling cycle. An OutputRecord is that snapshot enriched with the cycle
timestamp and the seconds the station has spent in its current occupancy
state; it maps 1:1 to a row of the velobike_parkings table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional

from .errors import MalformedSnapshot, MissingFieldError


# Column order of velobike_parkings; OutputRecord.as_row() follows it
INSERT_COLUMNS = (
    "address",
    "free_electric_places",
    "free_ordinary_places",
    "free_places",
    "has_terminal",
    "id",
    "is_favourite",
    "is_locked",
    "name",
    "station_types",
    "total_electric_places",
    "total_ordinary_places",
    "total_places",
    "latitude",
    "longitude",
    "date",
    "timestamp",
    "state_seconds",
)

# Fields a snapshot must carry to be written
REQUIRED_FIELDS = (
    "id",
    "free_places",
    "name",
    "address",
    "latitude",
    "longitude",
    "total_places",
)


def _as_int(payload: dict, key: str) -> Optional[int]:
    val = payload.get(key)
    if val is None:
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        raise MalformedSnapshot(f"Field {key} is not an integer: {val!r}")


def _as_float(payload: dict, key: str) -> Optional[float]:
    val = payload.get(key)
    if val is None:
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        raise MalformedSnapshot(f"Field {key} is not a number: {val!r}")


def _as_bool(payload: dict, key: str) -> Optional[bool]:
    val = payload.get(key)
    if val is None:
        return None
    if isinstance(val, str):
        return val.strip().lower() in ("1", "true", "yes")
    return bool(val)


@dataclass(frozen=True)
class ParkingSnapshot:
    """A single parking station as observed in one polling cycle."""
    id: Optional[str]
    free_places: Optional[int]
    name: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    free_electric_places: Optional[int] = None
    free_ordinary_places: Optional[int] = None
    total_places: Optional[int] = None
    total_electric_places: Optional[int] = None
    total_ordinary_places: Optional[int] = None
    has_terminal: Optional[bool] = None
    is_favourite: Optional[bool] = None
    is_locked: Optional[bool] = None
    station_types: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ParkingSnapshot":
        """
        Parse one item of the Velobike parkings response.

        Absent keys become None; required fields are checked later by
        missing_fields() so that a whole cycle can be validated up front.

        Args:
            payload: Item dict as returned under "Items" by the API

        Returns:
            ParkingSnapshot

        Raises:
            MalformedSnapshot: if the item is not a dict or a value has the wrong type
        """
        if not isinstance(payload, dict):
            raise MalformedSnapshot(f"Parking item is not an object: {type(payload).__name__}")

        position = payload.get("Position") or {}
        if not isinstance(position, dict):
            raise MalformedSnapshot(f"Position is not an object: {position!r}")

        parking_id = payload.get("Id")
        station_types = payload.get("StationTypes") or []

        return cls(
            id=str(parking_id) if parking_id is not None else None,
            free_places=_as_int(payload, "FreePlaces"),
            name=payload.get("Name"),
            address=payload.get("Address"),
            latitude=_as_float(position, "Lat"),
            longitude=_as_float(position, "Lon"),
            free_electric_places=_as_int(payload, "FreeElectricPlaces"),
            free_ordinary_places=_as_int(payload, "FreeOrdinaryPlaces"),
            total_places=_as_int(payload, "TotalPlaces"),
            total_electric_places=_as_int(payload, "TotalElectricPlaces"),
            total_ordinary_places=_as_int(payload, "TotalOrdinaryPlaces"),
            has_terminal=_as_bool(payload, "HasTerminal"),
            is_favourite=_as_bool(payload, "IsFavourite"),
            is_locked=_as_bool(payload, "IsLocked"),
            station_types=tuple(str(t) for t in station_types),
        )

    def missing_fields(self) -> list[str]:
        """Return the names of required fields that are None."""
        return [name for name in REQUIRED_FIELDS if getattr(self, name) is None]

    def require_fields(self) -> None:
        """Raise MissingFieldError for the first absent required field."""
        missing = self.missing_fields()
        if missing:
            raise MissingFieldError(missing[0], parking_id=self.id)


@dataclass(frozen=True)
class OutputRecord:
    """A snapshot enriched with the cycle timestamp and time-in-state."""
    snapshot: ParkingSnapshot
    timestamp: datetime
    state_seconds: float

    @property
    def parking_id(self) -> str:
        return self.snapshot.id

    @property
    def timestamp_utc(self) -> datetime:
        """Naive UTC timestamp as stored in the TIMESTAMP column."""
        if self.timestamp.tzinfo is None:
            return self.timestamp
        return self.timestamp.astimezone(timezone.utc).replace(tzinfo=None)

    @property
    def date(self) -> date:
        return self.timestamp_utc.date()

    def as_row(self) -> tuple:
        """Positional parameters for the INSERT statement (see INSERT_COLUMNS)."""
        s = self.snapshot
        return (
            s.address,
            s.free_electric_places or 0,
            s.free_ordinary_places or 0,
            s.free_places,
            bool(s.has_terminal),
            s.id,
            bool(s.is_favourite),
            bool(s.is_locked),
            s.name,
            list(s.station_types),
            s.total_electric_places or 0,
            s.total_ordinary_places or 0,
            s.total_places,
            s.latitude,
            s.longitude,
            self.date,
            self.timestamp_utc,
            self.state_seconds,
        )
