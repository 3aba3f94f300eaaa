"""Parkings sources: the live Velobike API and recorded archives."""

from .base import BaseConnector, ConnectorError
from .velobike_connector import VelobikeConnector
from .archive import ParkingArchive, StaticSource

__all__ = ["BaseConnector", "ConnectorError", "VelobikeConnector", "ParkingArchive", "StaticSource"]
