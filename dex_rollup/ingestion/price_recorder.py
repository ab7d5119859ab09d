"""Token price snapshots at block or hourly cadence.

Prices move on every trade, but snapshots are written at a coarser cadence
to bound write volume: at most one per token per block (``block``) or per
UTC hour (``hourly``). Each snapshot carries the percentage change against
the nearest earlier snapshot at the 1h/24h/7d/30d horizons, looked up among
snapshots recorded this session (committed or not) and in the repository.
"""

from __future__ import annotations

import bisect
from datetime import datetime
from typing import Optional

import structlog

from dex_rollup.core.enums import PriceSnapshotCadence
from dex_rollup.core.records import PriceChanges, Token, TokenPriceSnapshot
from dex_rollup.core.utils.time_buckets import (
    HOUR,
    PRICE_CHANGE_WINDOWS,
    ensure_utc,
    get_time_periods,
    is_same_hour,
)
from dex_rollup.persistence.ports import SnapshotRepository, TransientPersistenceError
from dex_rollup.pricing.value_math import Number, percent_change

logger = structlog.get_logger(__name__)

# Longest change horizon plus one bucket of slack
_RECENT_SPAN = max(w.span for w in PRICE_CHANGE_WINDOWS) + HOUR

_CHANGE_FIELDS = {
    "1h": "change_1h",
    "24h": "change_24h",
    "7d": "change_7d",
    "30d": "change_30d",
}


def price_snapshot_id(token_id: str, block_number: int) -> str:
    return f"{token_id}:{block_number}"


def _sort_key(snap: TokenPriceSnapshot) -> tuple[datetime, int]:
    return (snap.timestamp, snap.block_number)


class PriceSnapshotRecorder:
    """Records append-only :class:`TokenPriceSnapshot` rows.

    Args:
        repository: Source of committed snapshots for change baselines.
            Optional; without it only this session's snapshots are used.
        cadence: ``block`` or ``hourly``.
    """

    def __init__(
        self,
        repository: Optional[SnapshotRepository] = None,
        cadence: PriceSnapshotCadence | str = PriceSnapshotCadence.BLOCK,
    ) -> None:
        self.repository = repository
        self.cadence = PriceSnapshotCadence(cadence)
        self._recent: dict[str, list[TokenPriceSnapshot]] = {}
        self._pending: list[TokenPriceSnapshot] = []

    def record(
        self, token: Token, block_number: int, timestamp: datetime
    ) -> Optional[TokenPriceSnapshot]:
        """Snapshot *token*'s current price unless the cadence says skip.

        Returns:
            The new snapshot, or None when the token has no price yet or a
            snapshot already exists for this block/hour.
        """
        if token.price_usd is None:
            return None
        at = ensure_utc(timestamp)
        latest = self.latest(token.id)
        if latest is not None:
            if latest.block_number == block_number:
                return None
            if self.cadence is PriceSnapshotCadence.HOURLY and is_same_hour(latest.timestamp, at):
                return None

        changes = self.compute_changes(token.id, token.price_usd, at)
        snapshot = TokenPriceSnapshot(
            id=price_snapshot_id(token.id, block_number),
            token_id=token.id,
            price_usd=token.price_usd,
            timestamp=at,
            block_number=block_number,
            fdv=token.fdv,
            change_1h=changes.change_1h,
            change_24h=changes.change_24h,
            change_7d=changes.change_7d,
            change_30d=changes.change_30d,
        )
        history = self._recent.setdefault(token.id, [])
        bisect.insort(history, snapshot, key=_sort_key)
        self._pending.append(snapshot)

        logger.debug(
            "price_snapshot_recorded",
            snapshot_id=snapshot.id,
            price_usd=str(snapshot.price_usd),
            change_24h=str(snapshot.change_24h) if snapshot.change_24h is not None else None,
        )
        return snapshot

    def compute_changes(self, token_id: str, current_price: Number, at: datetime) -> PriceChanges:
        """Percent change of *current_price* against each horizon's baseline."""
        values = {}
        for name, lookback in get_time_periods(at, PRICE_CHANGE_WINDOWS).items():
            baseline = self.find_at_or_before(token_id, lookback)
            previous = baseline.price_usd if baseline is not None else None
            values[_CHANGE_FIELDS[name]] = percent_change(current_price, previous)
        return PriceChanges(**values)

    def find_at_or_before(
        self, token_id: str, at: datetime
    ) -> Optional[TokenPriceSnapshot]:
        """Latest snapshot of *token_id* not after *at*, local or persisted."""
        limit = ensure_utc(at)
        local = None
        history = self._recent.get(token_id, [])
        idx = bisect.bisect_right([s.timestamp for s in history], limit)
        if idx:
            local = history[idx - 1]

        persisted = None
        if self.repository is not None:
            try:
                persisted = self.repository.find_price_at_or_before(token_id, limit)
            except TransientPersistenceError as exc:
                logger.warning(
                    "price_baseline_unavailable",
                    token_id=token_id,
                    at=limit.isoformat(),
                    error=str(exc),
                )

        candidates = [s for s in (local, persisted) if s is not None]
        if not candidates:
            return None
        return max(candidates, key=_sort_key)

    def latest(self, token_id: str) -> Optional[TokenPriceSnapshot]:
        history = self._recent.get(token_id)
        if history:
            return history[-1]
        return None

    def price_changes(self, token_id: str) -> PriceChanges:
        """Changes carried by the newest snapshot of *token_id*."""
        snap = self.latest(token_id)
        if snap is None:
            return PriceChanges()
        return PriceChanges(
            change_1h=snap.change_1h,
            change_24h=snap.change_24h,
            change_7d=snap.change_7d,
            change_30d=snap.change_30d,
        )

    def drain_pending(self) -> list[TokenPriceSnapshot]:
        """Snapshots recorded since the last drain, oldest first."""
        pending, self._pending = self._pending, []
        return pending

    def prune(self, now: datetime) -> int:
        """Forget session snapshots no change horizon can reach any more.

        The newest snapshot before the cutoff is kept as a baseline.
        """
        cutoff = ensure_utc(now) - _RECENT_SPAN
        removed = 0
        for history in self._recent.values():
            idx = bisect.bisect_left([s.timestamp for s in history], cutoff)
            # Keep one snapshot at or before the cutoff
            drop = max(idx - 1, 0)
            if drop:
                del history[:drop]
                removed += drop
        return removed
