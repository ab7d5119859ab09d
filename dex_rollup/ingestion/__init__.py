"""Event application layer -- validation, dedup, valuation and price snapshots."""

from dex_rollup.ingestion.dedup import AppliedEventTracker
from dex_rollup.ingestion.event_applier import EventApplier, EventValuation
from dex_rollup.ingestion.events import (
    EventError,
    MalformedEventError,
    PairEvent,
    UnknownPairError,
    parse_event,
)
from dex_rollup.ingestion.price_recorder import PriceSnapshotRecorder, price_snapshot_id

__all__ = [
    "AppliedEventTracker",
    "EventApplier",
    "EventError",
    "EventValuation",
    "MalformedEventError",
    "PairEvent",
    "PriceSnapshotRecorder",
    "UnknownPairError",
    "parse_event",
    "price_snapshot_id",
]
