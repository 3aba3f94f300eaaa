"""
Base connector class with retry logic and request pacing.

All HTTP connectors inherit from BaseConnector and implement:
- _fetch_raw(): fetch the payload from the vendor API
- _transform(): turn the payload into ParkingSnapshot objects
"""

import random
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests
from loguru import logger
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas import ParkingSnapshot


class BaseConnector(ABC):
    """
    Base class for parkings connectors.

    Provides:
    - HTTP retry with exponential backoff
    - Bounded request duration (timeout)
    - Minimum spacing between requests
    """

    def __init__(
        self,
        source_name: str,
        base_url: Optional[str] = None,
        rate_limit_per_sec: float = 1.0,
        max_retries: int = 3,
        timeout: float = 30.0,
    ):
        """
        Initialize connector.

        Args:
            source_name: Name of data source (e.g., 'velobike')
            base_url: Base URL for API
            rate_limit_per_sec: Max requests per second
            max_retries: Max retry attempts on failure
            timeout: Seconds before a single request is abandoned
        """
        self.source_name = source_name
        self.base_url = base_url.rstrip("/") if base_url else base_url
        self.rate_limit_per_sec = rate_limit_per_sec
        self.max_retries = max_retries
        self.timeout = timeout

        self._last_request_time = 0.0
        self._min_request_interval = 1.0 / rate_limit_per_sec

        self.session = self._create_session()

        logger.info(f"Initialized {source_name} connector")

    def _create_session(self) -> requests.Session:
        """Create requests session with retry strategy."""
        session = requests.Session()

        # Retry on 429, 500, 502, 503, 504
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,  # 1s, 2s, 4s
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def reset_session(self):
        """Rebuild the HTTP session after network faults to force new connections."""
        try:
            self.session.close()
        except Exception as e:
            logger.debug(f"{self.source_name}: error closing session: {e}")
        self.session = self._create_session()
        logger.warning(f"{self.source_name}: HTTP session reset after network failure")

    def _rate_limit(self):
        """Enforce minimum spacing between requests."""
        now = time.time()
        elapsed = now - self._last_request_time
        if elapsed < self._min_request_interval:
            time.sleep(self._min_request_interval - elapsed)
        self._last_request_time = time.time()

    def _get(self, url: str, params: Optional[Dict] = None, headers: Optional[Dict] = None) -> requests.Response:
        """
        Make GET request with rate limiting and retry.

        Args:
            url: Request URL
            params: Query parameters
            headers: Request headers

        Returns:
            Response object

        Raises:
            requests.exceptions.RequestException: on failure after retries
        """
        self._rate_limit()

        logger.debug(f"HTTP GET begin: {url} params={params}")
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            logger.debug(f"HTTP GET status: {response.status_code} for {url}")

            # Handle rate limiting (429) once more after the adapter gave up
            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After")
                try:
                    sleep_s = min(60.0, float(retry_after)) if retry_after else None
                except ValueError:
                    sleep_s = None
                if sleep_s is None:
                    sleep_s = min(60.0, self._min_request_interval * (2 + random.random()))
                logger.warning(f"429 rate limited for {url}; sleeping {sleep_s:.2f}s")
                time.sleep(sleep_s)
                response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
                logger.debug(f"HTTP GET retry status: {response.status_code} for {url}")

            response.raise_for_status()
            return response
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.error(f"Request failed for {url}: {e}")
            self.reset_session()
            raise
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed for {url}: {e}")
            raise

    @abstractmethod
    def _fetch_raw(self, **kwargs) -> Any:
        """
        Fetch raw data from vendor API.

        Returns:
            Raw response data (usually decoded JSON)
        """
        pass

    @abstractmethod
    def _transform(self, raw_data: Any, **kwargs) -> list[ParkingSnapshot]:
        """
        Transform raw vendor data to snapshots.

        Args:
            raw_data: Output from _fetch_raw()

        Returns:
            List of ParkingSnapshot in source order
        """
        pass

    def fetch_and_transform(self, **kwargs) -> list[ParkingSnapshot]:
        """
        Fetch raw data and transform to snapshots (template method).

        Raises:
            ConnectorError: if the request or the payload is unusable
        """
        logger.debug(f"Fetching data from {self.source_name}...")

        try:
            raw_data = self._fetch_raw(**kwargs)
        except requests.exceptions.RequestException as e:
            raise ConnectorError(f"{self.source_name} request failed: {e}") from e

        snapshots = self._transform(raw_data, **kwargs)

        logger.debug(f"Fetched {len(snapshots)} parkings from {self.source_name}")
        return snapshots

    def validate_response(self, response: requests.Response, expected_keys: Optional[list] = None):
        """
        Validate JSON response contains expected keys.

        Args:
            response: Response object
            expected_keys: List of required keys in JSON

        Raises:
            ConnectorError: if validation fails
        """
        try:
            data = response.json()
        except ValueError as e:
            raise ConnectorError(f"Invalid JSON response: {e}")

        if not isinstance(data, dict):
            raise ConnectorError(f"Unexpected JSON payload type: {type(data).__name__}")

        if expected_keys:
            missing = set(expected_keys) - set(data.keys())
            if missing:
                raise ConnectorError(f"Response missing required keys: {missing}")

        return data

    def close(self) -> None:
        self.session.close()


class ConnectorError(Exception):
    """Base exception for connector errors."""
    pass
