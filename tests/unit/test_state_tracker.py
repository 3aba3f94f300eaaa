"""
Tests for velo_node.tracker.

Tests:
- First sighting is seeded with the default increment
- Unchanged occupancy accumulates the gap since the last observation
- Changed occupancy resets to the gap
- Idle eviction
- Concurrent observers
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

import threading
from datetime import datetime, timedelta, timezone

import pytest

from velo_node.tracker import StateTracker


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


class TestObserve:
    """Tests for StateTracker.observe."""

    def test_station_a_scenario(self):
        """Occupancy 5,5,3,3 at t=0,60,90,150 gives 60,120,30,90."""
        tracker = StateTracker()

        assert tracker.observe("A", 5, at(0), 60) == 60
        assert tracker.observe("A", 5, at(60), 60) == 120
        assert tracker.observe("A", 3, at(90), 60) == 30
        assert tracker.observe("A", 3, at(150), 60) == 90

    @pytest.mark.parametrize("occupancy", [0, 1, 17])
    def test_first_observation_uses_default_increment(self, occupancy):
        """First sighting yields the default increment whatever the occupancy."""
        tracker = StateTracker()
        assert tracker.observe("B", occupancy, at(0), 45) == 45

    def test_unchanged_accumulates_gap_since_last_observation(self):
        """A delayed cycle adds the full gap, not the nominal interval."""
        tracker = StateTracker()
        tracker.observe("A", 4, at(0), 60)
        tracker.observe("A", 4, at(60), 60)

        assert tracker.observe("A", 4, at(300), 60) == 60 + 60 + 240

    def test_change_resets_to_gap_not_total(self):
        tracker = StateTracker()
        tracker.observe("A", 4, at(0), 60)
        tracker.observe("A", 4, at(600), 60)

        assert tracker.observe("A", 2, at(660), 60) == 60

    def test_non_monotonic_clock_never_shrinks(self):
        """A timestamp earlier than the last one counts as zero elapsed."""
        tracker = StateTracker()
        tracker.observe("A", 4, at(100), 60)

        assert tracker.observe("A", 4, at(40), 60) == 60
        assert tracker.observe("A", 1, at(40), 60) == 0

    def test_same_timestamp_twice(self):
        tracker = StateTracker()
        tracker.observe("A", 4, at(0), 60)
        assert tracker.observe("A", 4, at(0), 60) == 60

    def test_identities_are_independent(self):
        tracker = StateTracker()
        tracker.observe("A", 4, at(0), 60)
        tracker.observe("B", 9, at(0), 60)

        assert tracker.observe("A", 3, at(60), 60) == 60
        assert tracker.observe("B", 9, at(60), 60) == 120
        assert len(tracker) == 2

    def test_get_returns_copy(self):
        tracker = StateTracker()
        tracker.observe("A", 4, at(0), 60)

        state = tracker.get("A")
        state.seconds_in_state = 9999

        assert tracker.get("A").seconds_in_state == 60
        assert tracker.get("missing") is None


class TestEviction:
    """Tests for StateTracker.evict_idle."""

    def test_evicts_only_idle_entries(self):
        tracker = StateTracker()
        tracker.observe("old", 1, at(0), 60)
        tracker.observe("fresh", 1, at(500), 60)

        evicted = tracker.evict_idle(at(600), max_idle_seconds=300)

        assert evicted == 1
        assert "old" not in tracker
        assert "fresh" in tracker

    def test_reappearing_entry_is_first_sighting(self):
        tracker = StateTracker()
        tracker.observe("A", 1, at(0), 60)
        tracker.evict_idle(at(1000), max_idle_seconds=300)

        assert tracker.observe("A", 1, at(1000), 60) == 60


class TestConcurrency:
    """observe() is safe under concurrent callers."""

    def test_concurrent_observers_do_not_lose_updates(self):
        tracker = StateTracker()
        tracker.observe("A", 1, at(0), 0)
        barrier = threading.Barrier(8)

        def worker(offset: int):
            barrier.wait()
            for i in range(100):
                # Same timestamp: every call adds zero, none may corrupt state
                tracker.observe("A", 1, at(10), 0)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert tracker.get("A").seconds_in_state == 10
        assert tracker.get("A").last_seen == at(10)
