"""
Reader for recorded parkings archives used by the bulk loader.

An archive is a tarball (usually .tar.bz2) of raw API responses named
parkings-<unix_ts>.json. Members are replayed in timestamp order.
"""

from __future__ import annotations

import json
import re
import tarfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Union

from loguru import logger

from ..errors import MalformedSnapshot
from ..schemas import ParkingSnapshot


MEMBER_RE = re.compile(r"parkings-(\d+)\.json$")


def parse_member_timestamp(name: str) -> datetime:
    """
    Extract the embedded Unix timestamp from an archive member name.

    Raises:
        MalformedSnapshot: if the name does not follow parkings-<ts>.json
    """
    match = MEMBER_RE.search(Path(name).name)
    if not match:
        raise MalformedSnapshot(f"Archive member has no timestamp: {name}")
    return datetime.fromtimestamp(int(match.group(1)), tz=timezone.utc)


class StaticSource:
    """A source that always returns the same pre-recorded snapshot list."""

    def __init__(self, parkings: list[ParkingSnapshot]):
        self.parkings = parkings

    def list_parkings(self) -> list[ParkingSnapshot]:
        return list(self.parkings)


class ParkingArchive:
    """Iterates (timestamp, parkings) pairs from a recorded archive."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _index(self, tar: tarfile.TarFile) -> list[tuple[datetime, tarfile.TarInfo]]:
        members = []
        for member in tar.getmembers():
            if not member.isfile() or member.size == 0:
                continue
            members.append((parse_member_timestamp(member.name), member))
        members.sort(key=lambda pair: pair[0])
        return members

    def _read_member(self, tar: tarfile.TarFile, member: tarfile.TarInfo) -> list[ParkingSnapshot]:
        fh = tar.extractfile(member)
        if fh is None:
            return []
        with fh:
            try:
                payload = json.load(fh)
            except ValueError as e:
                raise MalformedSnapshot(f"Invalid JSON in {member.name}: {e}") from e

        items = payload.get("Items") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise MalformedSnapshot(f"No 'Items' list in {member.name}")
        return [ParkingSnapshot.from_payload(item) for item in items]

    def __iter__(self) -> Iterator[tuple[datetime, list[ParkingSnapshot]]]:
        """
        Yield (timestamp, parkings) oldest first.

        Members are indexed and sorted before extraction. On a compressed
        tarball every backwards seek decompresses the stream again from the
        start, so an archive written out of timestamp order costs quadratic
        decompression time; one written in order costs a single extra pass.

        Raises:
            MalformedSnapshot: unreadable or corrupt archive, a member name
                without a timestamp, invalid JSON, or no 'Items' list
        """
        try:
            with tarfile.open(self.path, mode="r:*") as tar:
                members = self._index(tar)
                logger.info(f"Archive {self.path.name}: {len(members)} snapshots")

                for ts, member in members:
                    yield ts, self._read_member(tar, member)
        except (tarfile.TarError, EOFError, OSError) as e:
            raise MalformedSnapshot(f"Cannot read archive {self.path}: {e}") from e
