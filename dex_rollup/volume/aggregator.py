"""Rolling-window volume totals over hourly snapshots.

Pure computation module -- no I/O and no mutation of its inputs, so it is
safe to call from any reader thread as long as it is handed a consistent
set of snapshots (the store returns copies for exactly this reason).

A bucket counts toward a window when any part of its hour overlaps the
window ``(anchor - hours, anchor]``: with bucket start ``ts`` and width
``1h`` that is ``ts + 1h > anchor - hours``. A bucket starting exactly at
the window start is therefore always included, and the bucket straddling
the window start contributes its full volume.

This is wider than a plain start-time rule (``ts >= anchor - hours``):
at anchor 12:30 the 11:00 bucket counts toward the 1h window here, where a
start-time rule would leave it out.

Example: anchor ``T``, buckets at ``T-90min``, ``T-30min``, ``T-2h`` worth
10, 20 and 30 USD give a 1h total of 30 (the first two overlap the last
hour) and a 24h total of 60.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

from dex_rollup.core.records import PairVolumeSnapshot, VolumePeriods
from dex_rollup.core.utils.time_buckets import (
    HOUR,
    VOLUME_WINDOWS,
    WindowDefinition,
    ensure_utc,
    get_time_periods,
)

# VolumePeriods field for each named window of the closed window contract
_PERIOD_FIELDS = {
    "1h": "volume_1h",
    "24h": "volume_24h",
    "7d": "volume_7d",
    "30d": "volume_30d",
    "1y": "volume_1y",
}


def aggregate_volume(
    snapshots: Iterable[PairVolumeSnapshot],
    anchor: datetime,
    windows: tuple[WindowDefinition, ...] = VOLUME_WINDOWS,
    bucket_width: timedelta = HOUR,
) -> dict[str, Decimal]:
    """Sum ``volume_usd`` per named trailing window ending at *anchor*.

    Args:
        snapshots: Buckets of a single pair (hot set and/or persisted).
        anchor: Instant the windows are measured back from.
        windows: Window definitions; defaults to 1h/24h/7d/30d/1y.
        bucket_width: Width of each bucket (one hour for HOURLY).

    Returns:
        Ordered dict of window name to total. Empty windows are
        ``Decimal(0)``: no trades is a valid zero volume.
    """
    starts = get_time_periods(anchor, windows)
    totals: dict[str, Decimal] = {name: Decimal(0) for name in starts}

    for snap in snapshots:
        bucket_end = ensure_utc(snap.timestamp) + bucket_width
        for name, start in starts.items():
            if bucket_end > start:
                totals[name] += snap.volume_usd
    return totals


def compute_volume_periods(
    snapshots: Iterable[PairVolumeSnapshot],
    anchor: datetime,
) -> VolumePeriods:
    """Rolling totals for the standard windows as a :class:`VolumePeriods`."""
    totals = aggregate_volume(snapshots, anchor, VOLUME_WINDOWS)
    return VolumePeriods(**{_PERIOD_FIELDS[name]: value for name, value in totals.items()})


def merge_snapshot_sources(
    persisted: Iterable[PairVolumeSnapshot],
    hot: Iterable[PairVolumeSnapshot],
) -> list[PairVolumeSnapshot]:
    """Union persisted history with the hot set, de-duplicated by id.

    The hot copy wins: until a flush succeeds it is the source of truth and
    may hold contributions the persisted row has not seen yet.
    """
    merged = {snap.id: snap for snap in persisted}
    for snap in hot:
        merged[snap.id] = snap
    return sorted(merged.values(), key=lambda s: s.timestamp)
