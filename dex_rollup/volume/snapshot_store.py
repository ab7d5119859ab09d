"""Hot in-memory set of hourly pair volume snapshots.

The store owns the running aggregate of every bucket that is still within
the hot retention horizon. Durable history belongs to the persistence port,
keyed by the same composite snapshot id; on a cache miss the store asks its
loader for the persisted row before opening a fresh zero bucket, so a
restart never overwrites a committed total with a smaller one.

Concurrency: ingestion is single-threaded, but rolling-window reads may run
on another thread. One lock guards the map, and every read hands out copies
rather than live objects.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

import structlog

from dex_rollup.core.records import PairVolumeSnapshot, volume_snapshot_id
from dex_rollup.core.utils.time_buckets import ensure_utc, floor_to_hour
from dex_rollup.pricing.value_math import Number, to_decimal

logger = structlog.get_logger(__name__)

SnapshotLoader = Callable[[str], Optional[PairVolumeSnapshot]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VolumeSnapshotStore:
    """Idempotent mapping from bucket id to its running volume aggregate.

    Args:
        retention: Hot horizon; older buckets are pruned.
        loader: Optional lookup of a persisted snapshot by id.
        clock: Source of ``created_at`` for new buckets (default: UTC now).
    """

    def __init__(
        self,
        retention: timedelta = timedelta(hours=24),
        loader: SnapshotLoader | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.retention = retention
        self._loader = loader
        self._clock = clock or _utcnow
        self._snapshots: dict[str, PairVolumeSnapshot] = {}
        self._dirty: set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)

    def __contains__(self, snapshot_id: object) -> bool:
        with self._lock:
            return snapshot_id in self._snapshots

    # ------------------------------------------------------------------
    # Write path (ingestion thread only)
    # ------------------------------------------------------------------
    def get_or_create_bucket(
        self, pair_id: str, event_timestamp: datetime
    ) -> PairVolumeSnapshot:
        """Return the hourly bucket covering *event_timestamp* for *pair_id*.

        Resolution order: hot set, persisted row (via loader), new zero row.
        The returned object is the live entry and must only be changed
        through :meth:`apply_contribution`.
        """
        bucket_start = floor_to_hour(event_timestamp)
        snapshot_id = volume_snapshot_id(pair_id, bucket_start)

        with self._lock:
            existing = self._snapshots.get(snapshot_id)
        if existing is not None:
            return existing

        # Loader may hit the database; keep it outside the lock
        persisted = self._loader(snapshot_id) if self._loader else None

        with self._lock:
            existing = self._snapshots.get(snapshot_id)
            if existing is not None:
                return existing
            if persisted is not None:
                snapshot = replace(persisted)
                source = "persisted"
            else:
                snapshot = PairVolumeSnapshot(
                    id=snapshot_id,
                    pair_id=pair_id,
                    timestamp=bucket_start,
                    created_at=self._clock(),
                )
                source = "new"
            self._snapshots[snapshot_id] = snapshot

        logger.debug(
            "volume_bucket_opened",
            snapshot_id=snapshot_id,
            pair_id=pair_id,
            bucket_start=bucket_start.isoformat(),
            source=source,
        )
        return snapshot

    def apply_contribution(
        self, snapshot: PairVolumeSnapshot, usd_value: Number
    ) -> PairVolumeSnapshot:
        """Add one transaction worth *usd_value* to *snapshot*.

        This is the only mutator of ``volume_usd`` and ``transaction_count``.

        Raises:
            ValueError: If *usd_value* is negative, or *snapshot* is not the
                live entry held by this store (e.g. a copy from a reader).
        """
        value = to_decimal(usd_value)
        if value < 0:
            raise ValueError(f"Volume contribution must be non-negative, got {value}")

        with self._lock:
            live = self._snapshots.get(snapshot.id)
            if live is not snapshot:
                raise ValueError(
                    f"Snapshot {snapshot.id} is not a live entry of this store"
                )
            live.volume_usd += value
            live.transaction_count += 1
            self._dirty.add(live.id)
        return live

    def prune(self, now: datetime) -> int:
        """Drop every bucket that started before ``now - retention``.

        Age is the only criterion. Callers that need unflushed totals to
        survive must prune only after a successful flush.

        Returns:
            Number of snapshots removed.
        """
        cutoff = ensure_utc(now) - self.retention
        with self._lock:
            expired = [
                sid
                for sid, snap in self._snapshots.items()
                if snap.timestamp < cutoff
            ]
            for sid in expired:
                del self._snapshots[sid]
                self._dirty.discard(sid)

        if expired:
            logger.debug(
                "volume_buckets_pruned",
                removed=len(expired),
                cutoff=cutoff.isoformat(),
            )
        return len(expired)

    # ------------------------------------------------------------------
    # Flush bookkeeping
    # ------------------------------------------------------------------
    def dirty_snapshots(self) -> list[PairVolumeSnapshot]:
        """Copies of every bucket changed since it was last flushed."""
        with self._lock:
            return [replace(self._snapshots[sid]) for sid in sorted(self._dirty)]

    def mark_clean(self, flushed: Iterable[PairVolumeSnapshot]) -> None:
        """Clear the dirty flag of buckets whose totals were persisted.

        A bucket that changed after the copy was taken stays dirty.
        """
        with self._lock:
            for snap in flushed:
                live = self._snapshots.get(snap.id)
                if (
                    live is not None
                    and live.volume_usd == snap.volume_usd
                    and live.transaction_count == snap.transaction_count
                ):
                    self._dirty.discard(snap.id)

    @property
    def dirty_count(self) -> int:
        with self._lock:
            return len(self._dirty)

    # ------------------------------------------------------------------
    # Read path (any thread)
    # ------------------------------------------------------------------
    def get(self, snapshot_id: str) -> Optional[PairVolumeSnapshot]:
        """Copy of the hot snapshot with *snapshot_id*, if resident."""
        with self._lock:
            snap = self._snapshots.get(snapshot_id)
            return replace(snap) if snap is not None else None

    def snapshots_for_pair(self, pair_id: str) -> list[PairVolumeSnapshot]:
        """Copies of all hot buckets of *pair_id*, oldest first."""
        with self._lock:
            snaps = [replace(s) for s in self._snapshots.values() if s.pair_id == pair_id]
        return sorted(snaps, key=lambda s: s.timestamp)
