"""Block-level orchestration of the rollup engine.

BlockProcessor owns one explicitly constructed set of collaborators (volume
store, dedup tracker, event applier, price recorder, flusher) with a
start/shutdown lifecycle. Per block it runs:

    apply events -> recompute rolling volumes -> record prices
    -> commit batch -> prune hot state

Rejected events are collected in the BlockResult and logged; they never
stop the block. A failed commit leaves everything dirty in memory and is
retried with the next block. Once ``max_unflushed_blocks`` blocks are
waiting, the commit becomes blocking under the longer backlog deadline and
PersistenceBacklogError is raised if it still fails. Corruption errors from
the persistence layer propagate.

On start the last durably committed block is read back; blocks at or below
it are skipped, which keeps redelivery after a restart from double counting.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

from dex_rollup.core.config import Settings, settings as default_settings
from dex_rollup.core.records import (
    CommitBatch,
    Pair,
    PairVolumeSnapshot,
    PriceChanges,
    Token,
    TokenPriceSnapshot,
    Transaction,
    VolumePeriods,
)
from dex_rollup.core.utils.logging_config import get_logger
from dex_rollup.core.utils.time_buckets import HOUR, ensure_utc
from dex_rollup.ingestion.dedup import AppliedEventTracker
from dex_rollup.ingestion.event_applier import EventApplier
from dex_rollup.ingestion.events import EventError, PairEvent
from dex_rollup.ingestion.price_recorder import PriceSnapshotRecorder
from dex_rollup.persistence.flusher import FlushOutcome, SnapshotFlusher
from dex_rollup.persistence.ports import (
    PersistenceBacklogError,
    SnapshotRepository,
    TransientPersistenceError,
)
from dex_rollup.volume.aggregator import compute_volume_periods, merge_snapshot_sources
from dex_rollup.volume.snapshot_store import VolumeSnapshotStore

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Block / result dataclasses
# ---------------------------------------------------------------------------
@dataclass
class Block:
    """One block as delivered by the event harness.

    Events without their own ``block_number``/``timestamp`` inherit the
    block's.
    """

    number: int
    timestamp: datetime
    events: list[Mapping[str, Any] | PairEvent] = field(default_factory=list)


@dataclass
class RejectedEvent:
    """An event that could not be applied, and why."""

    event_id: Optional[str]
    error_type: str
    message: str


@dataclass
class BlockResult:
    """Outcome of processing one block.

    Attributes:
        block_number: The block processed.
        skipped: True if the block was already committed before a restart.
        applied: Events applied to the rollups.
        duplicates: Redelivered events dropped by id.
        rejected: Malformed or unroutable events.
        flush: Commit outcome, None when skipped.
        pruned: Hot volume buckets pruned after a successful commit.
        unflushed_blocks: Blocks still waiting for a successful commit.
    """

    block_number: int
    skipped: bool = False
    applied: int = 0
    duplicates: int = 0
    rejected: list[RejectedEvent] = field(default_factory=list)
    flush: Optional[FlushOutcome] = None
    pruned: int = 0
    unflushed_blocks: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# BlockProcessor
# ---------------------------------------------------------------------------
class BlockProcessor:
    """Sequential block ingestion with per-block atomic commits.

    Args:
        repository: Persistence adapter (SQL in production, in-memory for
            tests and dry runs).
        config: Settings instance (defaults to the module singleton).
        sleep: Sleep used between commit retries (injectable for tests).
        clock: Source of ``created_at`` for new buckets.
    """

    def __init__(
        self,
        repository: SnapshotRepository,
        config: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or default_settings
        self.repository = repository
        self.flusher = SnapshotFlusher(
            repository,
            max_attempts=self.config.flush_max_attempts,
            deadline_seconds=self.config.flush_deadline_seconds,
            backoff_initial=self.config.flush_backoff_initial_seconds,
            backoff_max=self.config.flush_backoff_max_seconds,
            backoff_jitter=self.config.flush_backoff_jitter_seconds,
            sleep=sleep,
        )
        self.store = VolumeSnapshotStore(
            retention=timedelta(hours=self.config.hot_retention_hours),
            loader=self._load_volume_snapshot,
            clock=clock or _utcnow,
        )
        self.tracker = AppliedEventTracker(
            window_blocks=self.config.applied_event_window_blocks,
            max_entries=self.config.applied_event_max_entries,
        )
        self.applier = EventApplier(self.store, self.tracker)
        self.recorder = PriceSnapshotRecorder(
            repository, cadence=self.config.price_snapshot_cadence
        )

        self._started = False
        self._last_block: Optional[int] = None
        self._last_timestamp: Optional[datetime] = None
        self._unflushed_blocks = 0
        self._pending_pairs: dict[str, Pair] = {}
        self._pending_tokens: dict[str, Token] = {}
        self._pending_prices: list[TokenPriceSnapshot] = []
        self._pending_transactions: list[Transaction] = []

    @property
    def committed_block(self) -> Optional[int]:
        return self.flusher.committed_block

    @property
    def unflushed_blocks(self) -> int:
        return self._unflushed_blocks

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> Optional[int]:
        """Load the resume point. Returns the last committed block."""
        committed = self.flusher.load_committed_block()
        self._started = True
        logger.info("processor_started", committed_block=committed)
        return committed

    def shutdown(self) -> Optional[FlushOutcome]:
        """Blocking final flush of everything not yet committed.

        Raises:
            PersistenceBacklogError: If the final flush misses its deadline.
        """
        outcome = None
        if self._unflushed_blocks and self._last_block is not None:
            outcome = self._flush(self._last_block, blocking=True)
            if not outcome.success:
                raise PersistenceBacklogError(
                    f"Final flush of {self._unflushed_blocks} block(s) failed: {outcome.error}"
                )
        logger.info(
            "processor_shutdown",
            committed_block=self.committed_block,
            hot_buckets=len(self.store),
        )
        return outcome

    # ------------------------------------------------------------------
    # Pair registry
    # ------------------------------------------------------------------
    def register_pair(self, pair: Pair, token0: Token, token1: Token) -> Pair:
        """Track *pair*, preferring persisted state over the given one.

        A pair or token already in the repository keeps its accumulated
        reserves, volumes and prices across restarts.
        """
        stored_pair = self.flusher.read(self.repository.get_pair, pair.id)
        stored_tokens = [
            self.flusher.read(self.repository.get_token, token.id) or token
            for token in (token0, token1)
        ]
        if stored_pair is not None:
            logger.info(
                "pair_loaded_from_store",
                pair_id=pair.id,
                volume_usd=str(stored_pair.volume_usd),
                tvl_usd=str(stored_pair.tvl_usd),
            )
        self.applier.register_pair(stored_pair or pair, *stored_tokens)
        return self.applier.get_pair(pair.id)

    def deactivate_pair(self, pair_id: str) -> Pair:
        return self.applier.deactivate_pair(pair_id)

    # ------------------------------------------------------------------
    # Block processing
    # ------------------------------------------------------------------
    def process_blocks(self, blocks: Iterable[Block]) -> list[BlockResult]:
        return [self.process_block(block) for block in blocks]

    def process_block(self, block: Block) -> BlockResult:
        """Apply, roll up, commit and prune one block.

        Raises:
            PersistenceBacklogError: The backlog could not be drained.
            PersistenceCorruptionError: Propagated from the repository.
            TransientPersistenceError: A history read failed after retries;
                redelivering the block is safe.
        """
        if not self._started:
            self.start()

        result = BlockResult(block_number=block.number)
        committed = self.committed_block
        if committed is not None and block.number <= committed:
            logger.info(
                "block_already_committed",
                block_number=block.number,
                committed_block=committed,
            )
            result.skipped = True
            return result

        timestamp = ensure_utc(block.timestamp)
        touched_pairs: set[str] = set()

        for raw in block.events:
            try:
                tx = self.applier.apply(self._with_block_context(raw, block))
            except EventError as exc:
                logger.error(
                    "event_rejected",
                    block_number=block.number,
                    event_id=exc.event_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                result.rejected.append(
                    RejectedEvent(
                        event_id=exc.event_id,
                        error_type=type(exc).__name__,
                        message=str(exc),
                    )
                )
                continue
            if tx is None:
                result.duplicates += 1
                continue
            result.applied += 1
            touched_pairs.add(tx.pair_id)
            self._pending_transactions.append(tx)

        self._last_block = block.number
        self._last_timestamp = timestamp
        self._roll_up(touched_pairs, block.number, timestamp)

        self._unflushed_blocks += 1
        blocking = self._unflushed_blocks >= self.config.max_unflushed_blocks
        outcome = self._flush(block.number, blocking=blocking)
        result.flush = outcome

        if outcome.success:
            result.pruned = self.store.prune(timestamp)
            self.recorder.prune(timestamp)
        elif blocking:
            raise PersistenceBacklogError(
                f"{self._unflushed_blocks} block(s) unflushed after blocking flush "
                f"of block {block.number}: {outcome.error}"
            )
        else:
            logger.warning(
                "flush_deferred",
                block_number=block.number,
                unflushed_blocks=self._unflushed_blocks,
                dirty_buckets=self.store.dirty_count,
            )

        result.unflushed_blocks = self._unflushed_blocks
        logger.info(
            "block_processed",
            block_number=block.number,
            applied=result.applied,
            duplicates=result.duplicates,
            rejected=len(result.rejected),
            committed=outcome.success,
        )
        return result

    @staticmethod
    def _with_block_context(
        raw: Mapping[str, Any] | PairEvent, block: Block
    ) -> Mapping[str, Any] | PairEvent:
        if not isinstance(raw, Mapping):
            return raw
        merged = dict(raw)
        if "block_number" not in merged and "blockNumber" not in merged:
            merged["block_number"] = block.number
        if "timestamp" not in merged:
            merged["timestamp"] = block.timestamp
        return merged

    def _roll_up(self, pair_ids: set[str], block_number: int, timestamp: datetime) -> None:
        token_ids: set[str] = set()
        for pair_id in sorted(pair_ids):
            periods = self.volume_periods(pair_id, timestamp)
            self.applier.update_pair_volumes(pair_id, **asdict(periods))
            pair = self.applier.get_pair(pair_id)
            token_ids.update((pair.token0, pair.token1))

        for token_id in sorted(token_ids):
            self.recorder.record(self.applier.get_token(token_id), block_number, timestamp)

    def _flush(self, block_number: int, blocking: bool) -> FlushOutcome:
        pairs, tokens = self.applier.take_touched()
        self._pending_pairs.update((p.id, p) for p in pairs)
        self._pending_tokens.update((t.id, t) for t in tokens)
        self._pending_prices.extend(self.recorder.drain_pending())

        dirty = self.store.dirty_snapshots()
        batch = CommitBatch(
            block_number=block_number,
            volume_snapshots=dirty,
            price_snapshots=list(self._pending_prices),
            transactions=list(self._pending_transactions),
            pairs=list(self._pending_pairs.values()),
            tokens=list(self._pending_tokens.values()),
        )
        if blocking:
            logger.warning(
                "blocking_flush",
                block_number=block_number,
                unflushed_blocks=self._unflushed_blocks,
            )
            outcome = self.flusher.flush(
                batch,
                deadline_seconds=self.config.backlog_flush_deadline_seconds,
                blocking=True,
            )
        else:
            outcome = self.flusher.flush(batch)

        if outcome.success:
            self.store.mark_clean(dirty)
            self._pending_pairs.clear()
            self._pending_tokens.clear()
            self._pending_prices.clear()
            self._pending_transactions.clear()
            self._unflushed_blocks = 0
        return outcome

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _load_volume_snapshot(self, snapshot_id: str) -> Optional[PairVolumeSnapshot]:
        return self.flusher.read(self.repository.get_volume_snapshot, snapshot_id)

    def volume_periods(self, pair_id: str, anchor: Optional[datetime] = None) -> VolumePeriods:
        """Rolling 1h/24h/7d/30d/1y volume of *pair_id* at *anchor*.

        Hot buckets are merged with persisted history back to the longest
        window; the hot copy of a bucket wins over its persisted row.
        """
        at = ensure_utc(anchor or self._last_timestamp or _utcnow())
        hot = [s for s in self.store.snapshots_for_pair(pair_id) if s.timestamp <= at]
        start = at - timedelta(hours=self.config.history_lookback_hours) - HOUR
        try:
            persisted = self.flusher.read(self.repository.query_volume_range, pair_id, start, at)
        except TransientPersistenceError as exc:
            logger.warning(
                "volume_history_unavailable",
                pair_id=pair_id,
                error=str(exc),
                hot_buckets=len(hot),
            )
            persisted = []
        return compute_volume_periods(merge_snapshot_sources(persisted, hot), at)

    def price_changes(self, token_id: str) -> PriceChanges:
        """Changes carried by the newest price snapshot of *token_id*."""
        if self.recorder.latest(token_id) is not None:
            return self.recorder.price_changes(token_id)
        at = self._last_timestamp or _utcnow()
        snap = self.flusher.read(self.repository.find_price_at_or_before, token_id, at)
        if snap is None:
            return PriceChanges()
        return PriceChanges(
            change_1h=snap.change_1h,
            change_24h=snap.change_24h,
            change_7d=snap.change_7d,
            change_30d=snap.change_30d,
        )
