"""Tests for the bounded applied-event tracker."""

import pytest

from dex_rollup.ingestion.dedup import AppliedEventTracker


class TestAppliedEventTracker:
    def test_record_and_lookup(self) -> None:
        tracker = AppliedEventTracker()
        tracker.record("1-0", 1)
        assert tracker.is_applied("1-0")
        assert "1-0" in tracker
        assert not tracker.is_applied("1-1")

    def test_window_evicts_old_blocks(self) -> None:
        tracker = AppliedEventTracker(window_blocks=10)
        tracker.record("1-0", 1)
        tracker.record("5-0", 5)
        tracker.record("12-0", 12)
        assert "1-0" not in tracker
        assert "5-0" in tracker
        assert len(tracker) == 2

    def test_hard_cap_evicts_oldest(self) -> None:
        tracker = AppliedEventTracker(window_blocks=1_000, max_entries=3)
        for i in range(5):
            tracker.record(f"1-{i}", 1)
        assert len(tracker) == 3
        assert "1-0" not in tracker
        assert "1-4" in tracker

    def test_rerecord_moves_to_end(self) -> None:
        tracker = AppliedEventTracker(window_blocks=1_000, max_entries=2)
        tracker.record("a", 1)
        tracker.record("b", 1)
        tracker.record("a", 1)
        tracker.record("c", 1)
        assert "a" in tracker
        assert "b" not in tracker

    @pytest.mark.parametrize("kwargs", [{"window_blocks": -1}, {"max_entries": 0}])
    def test_invalid_bounds(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            AppliedEventTracker(**kwargs)
