"""Dict-backed SnapshotRepository for tests, replays and dry runs.

Commits are applied under a lock, so readers never see half a batch.
Volume rows follow the same guard as the SQL adapter: a row with a lower
transaction count than the stored one is ignored. ``fail_next_commits``
injects transient failures for retry tests.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Optional

import structlog

from dex_rollup.core.records import (
    CommitBatch,
    Pair,
    PairVolumeSnapshot,
    Token,
    TokenPriceSnapshot,
    Transaction,
)
from dex_rollup.core.utils.time_buckets import ensure_utc
from dex_rollup.persistence.ports import (
    SnapshotRepository,
    TransientPersistenceError,
)

logger = structlog.get_logger(__name__)


class InMemorySnapshotRepository(SnapshotRepository):
    """In-process implementation of :class:`SnapshotRepository`."""

    def __init__(self) -> None:
        self.volume_snapshots: dict[str, PairVolumeSnapshot] = {}
        self.price_snapshots: dict[str, TokenPriceSnapshot] = {}
        self.transactions: dict[str, Transaction] = {}
        self.pairs: dict[str, Pair] = {}
        self.tokens: dict[str, Token] = {}
        self.last_committed_block: Optional[int] = None
        self.commit_count = 0
        self.fail_next_commits = 0
        self._lock = threading.Lock()

    def commit(self, batch: CommitBatch) -> None:
        with self._lock:
            if self.fail_next_commits > 0:
                self.fail_next_commits -= 1
                raise TransientPersistenceError("injected transient commit failure")

            for snap in batch.volume_snapshots:
                existing = self.volume_snapshots.get(snap.id)
                # Totals only grow; an older copy never overwrites a newer one
                if existing is not None and snap.transaction_count < existing.transaction_count:
                    logger.warning(
                        "stale_volume_snapshot_ignored",
                        snapshot_id=snap.id,
                        stored_count=existing.transaction_count,
                        batch_count=snap.transaction_count,
                    )
                    continue
                self.volume_snapshots[snap.id] = replace(snap)
            for price in batch.price_snapshots:
                self.price_snapshots.setdefault(price.id, price)
            for tx in batch.transactions:
                self.transactions.setdefault(tx.id, tx)
            for pair in batch.pairs:
                self.pairs[pair.id] = replace(pair)
            for token in batch.tokens:
                self.tokens[token.id] = replace(token)
            if self.last_committed_block is None or batch.block_number > self.last_committed_block:
                self.last_committed_block = batch.block_number
            self.commit_count += 1

    def get_volume_snapshot(self, snapshot_id: str) -> Optional[PairVolumeSnapshot]:
        with self._lock:
            snap = self.volume_snapshots.get(snapshot_id)
            return replace(snap) if snap is not None else None

    def query_volume_range(
        self, pair_id: str, start: datetime, end: datetime
    ) -> list[PairVolumeSnapshot]:
        lo, hi = ensure_utc(start), ensure_utc(end)
        with self._lock:
            rows = [
                replace(s)
                for s in self.volume_snapshots.values()
                if s.pair_id == pair_id and lo <= s.timestamp <= hi
            ]
        return sorted(rows, key=lambda s: s.timestamp)

    def find_price_at_or_before(
        self, token_id: str, at: datetime
    ) -> Optional[TokenPriceSnapshot]:
        limit = ensure_utc(at)
        with self._lock:
            candidates = [
                p
                for p in self.price_snapshots.values()
                if p.token_id == token_id and p.timestamp <= limit
            ]
        if not candidates:
            return None
        return max(candidates, key=lambda p: (p.timestamp, p.block_number))

    def get_pair(self, pair_id: str) -> Optional[Pair]:
        with self._lock:
            pair = self.pairs.get(pair_id)
            return replace(pair) if pair is not None else None

    def get_token(self, token_id: str) -> Optional[Token]:
        with self._lock:
            token = self.tokens.get(token_id)
            return replace(token) if token is not None else None

    def get_last_committed_block(self) -> Optional[int]:
        with self._lock:
            return self.last_committed_block
