"""Bounded memory of applied event ids.

The event harness delivers at least once, so the same event id can arrive
again after a reconnect or a replayed block range. The volume store adds
every contribution it is given; exactly-once application is enforced here.

Memory is bounded two ways: ids older than ``window_blocks`` behind the
newest recorded block are forgotten, and the total never exceeds
``max_entries`` (oldest first). A redelivery older than the window is
stopped one level up, by skipping blocks at or below the last committed
block height.
"""

from __future__ import annotations

from collections import OrderedDict

import structlog

logger = structlog.get_logger(__name__)


class AppliedEventTracker:
    """Insertion-ordered set of applied event ids with block recency.

    Args:
        window_blocks: How many blocks behind the newest one an id is kept.
        max_entries: Hard cap on remembered ids.
    """

    def __init__(self, window_blocks: int = 10_000, max_entries: int = 200_000) -> None:
        if window_blocks < 0:
            raise ValueError("window_blocks must be non-negative")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.window_blocks = window_blocks
        self.max_entries = max_entries
        self._applied: OrderedDict[str, int] = OrderedDict()
        self._newest_block = -1

    def __len__(self) -> int:
        return len(self._applied)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._applied

    def is_applied(self, event_id: str) -> bool:
        return event_id in self._applied

    def record(self, event_id: str, block_number: int) -> None:
        """Remember *event_id* as applied in *block_number* and evict."""
        self._applied[event_id] = block_number
        self._applied.move_to_end(event_id)
        if block_number > self._newest_block:
            self._newest_block = block_number
        self._evict()

    def _evict(self) -> None:
        horizon = self._newest_block - self.window_blocks
        # Ids are recorded in block order, so stale ones sit at the front
        while self._applied:
            oldest_id, oldest_block = next(iter(self._applied.items()))
            if oldest_block >= horizon and len(self._applied) <= self.max_entries:
                break
            del self._applied[oldest_id]
