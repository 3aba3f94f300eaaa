"""
Data layer for the Velobike parkings tracker.

Provides:
- schemas: parking snapshots and the enriched rows written to the store
- connectors: the live HTTP source and the bulk archive reader
- storage: the DuckDB warehouse with batched transactions
"""
