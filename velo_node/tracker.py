"""
Per-parking state tracking across polling cycles.

For each parking id the tracker remembers the last seen occupancy
(free places) and how long, in seconds, that occupancy has been held:

- first sighting: seeded with the nominal polling interval
- same occupancy: elapsed time since the previous observation is added
- changed occupancy: reset to the elapsed time since the previous observation

The map grows with every new parking id and is never pruned unless
evict_idle() is called explicitly.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class EntityState:
    """Tracked state of a single parking."""
    last_occupancy: int
    seconds_in_state: float
    last_seen: datetime


class StateTracker:
    """
    Thread-safe map of parking id -> EntityState.

    observe() is serialized by an internal lock, so overlapping callers
    cannot interleave their read-modify-write of the same entry.
    """

    def __init__(self) -> None:
        self._states: dict[str, EntityState] = {}
        self._lock = threading.Lock()

    def observe(
        self,
        identity: str,
        occupancy: int,
        timestamp: datetime,
        default_increment: float,
    ) -> float:
        """
        Advance the state of one parking and return its seconds in state.

        Args:
            identity: Parking id
            occupancy: Free places reported in this cycle
            timestamp: Cycle timestamp
            default_increment: Seconds credited on the very first sighting

        Returns:
            Seconds the current occupancy has been held as of timestamp
        """
        with self._lock:
            state = self._states.get(identity)

            if state is None:
                self._states[identity] = EntityState(
                    last_occupancy=occupancy,
                    seconds_in_state=float(default_increment),
                    last_seen=timestamp,
                )
                return float(default_increment)

            # Clamp: a non-monotonic source clock must not shrink the total
            elapsed = max(0.0, (timestamp - state.last_seen).total_seconds())

            if occupancy == state.last_occupancy:
                state.seconds_in_state += elapsed
            else:
                state.seconds_in_state = elapsed

            state.last_occupancy = occupancy
            state.last_seen = timestamp
            return state.seconds_in_state

    def get(self, identity: str) -> Optional[EntityState]:
        """Return a copy of the tracked state for a parking, if any."""
        with self._lock:
            state = self._states.get(identity)
            if state is None:
                return None
            return EntityState(state.last_occupancy, state.seconds_in_state, state.last_seen)

    def evict_idle(self, now: datetime, max_idle_seconds: float) -> int:
        """
        Drop parkings not seen for longer than max_idle_seconds.

        A parking that reappears after eviction is treated as a first sighting.

        Returns:
            Number of entries evicted
        """
        with self._lock:
            stale = [
                identity
                for identity, state in self._states.items()
                if (now - state.last_seen).total_seconds() > max_idle_seconds
            ]
            for identity in stale:
                del self._states[identity]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, identity: str) -> bool:
        with self._lock:
            return identity in self._states
