"""
Velobike (Moscow bike share) parkings connector.

The public endpoint returns every station in one response:

    {"Items": [{"Id": "0001", "FreePlaces": 5, "Position": {"Lat": .., "Lon": ..}, ...}]}

One request per polling cycle; no authentication.
"""

from __future__ import annotations

import os
from typing import Any, Optional

from loguru import logger

from ..schemas import ParkingSnapshot
from .base import BaseConnector, ConnectorError


DEFAULT_API_URL = "https://apivelobike.velobike.ru"
PARKINGS_PATH = "/ride/parkings"


class VelobikeConnector(BaseConnector):
    """Fetches the current state of all Velobike parkings."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        base_url = base_url or os.getenv("VELOBIKE_API_URL", DEFAULT_API_URL)
        super().__init__(
            source_name="velobike",
            base_url=base_url,
            rate_limit_per_sec=1.0,
            max_retries=max_retries,
            timeout=timeout,
        )

    @property
    def parkings_url(self) -> str:
        return f"{self.base_url}{PARKINGS_PATH}"

    def _fetch_raw(self, **kwargs) -> dict:
        response = self._get(self.parkings_url)
        return self.validate_response(response, expected_keys=["Items"])

    def _transform(self, raw_data: Any, **kwargs) -> list[ParkingSnapshot]:
        items = raw_data.get("Items")
        if not isinstance(items, list):
            raise ConnectorError(f"'Items' is not a list: {type(items).__name__}")
        return [ParkingSnapshot.from_payload(item) for item in items]

    def list_parkings(self) -> list[ParkingSnapshot]:
        """
        Fetch one snapshot of every parking.

        Returns:
            Parkings in the order the API reports them

        Raises:
            ConnectorError: on network, HTTP or payload errors
            MalformedSnapshot: if an item carries a value of the wrong type
        """
        parkings = self.fetch_and_transform()
        logger.info(f"Fetched {len(parkings)} parkings from {self.parkings_url}")
        return parkings

    def ping(self) -> bool:
        """Best-effort reachability check used by the self-check."""
        try:
            self._get(self.parkings_url)
            return True
        except Exception as e:
            logger.warning(f"Velobike API unreachable at {self.parkings_url}: {e}")
            return False
