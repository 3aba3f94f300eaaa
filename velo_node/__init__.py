"""
Velobike parkings ingestion node.

Polls the parkings endpoint (or replays a recorded archive), tracks how
long each station has held its current occupancy and appends enriched
rows to the DuckDB warehouse.

Components:
- tracker: per-parking time-in-state
- pipeline: one fetch -> track -> build -> sink cycle
- batch_writer: batched transactional writes behind a bounded queue
- scheduler: bulk replay and the live polling loop
"""

__version__ = "0.1.0"
