"""
Storage layer: DuckDB warehouse with batched transactions.
"""

from .warehouse import ParkingWarehouse, WarehouseBatch, CREATE_STMT, INSERT_STMT, TABLE_NAME

__all__ = ["ParkingWarehouse", "WarehouseBatch", "CREATE_STMT", "INSERT_STMT", "TABLE_NAME"]
