"""Volume rollups -- hot hourly snapshot store and rolling-window totals."""

from dex_rollup.volume.aggregator import (
    aggregate_volume,
    compute_volume_periods,
    merge_snapshot_sources,
)
from dex_rollup.volume.snapshot_store import VolumeSnapshotStore

__all__ = [
    "VolumeSnapshotStore",
    "aggregate_volume",
    "compute_volume_periods",
    "merge_snapshot_sources",
]
