"""Persistence port for the rollup engine.

The aggregation code depends only on this interface; storage technology
lives behind adapters (``memory``, ``sql``). Writes go through one atomic
:meth:`SnapshotRepository.commit` per block so a volume snapshot's
``volume_usd`` and ``transaction_count`` are always persisted together, and
the committed block height only advances with the data it covers.

Exception hierarchy:
- PersistenceError: base for all persistence errors
- TransientPersistenceError: retryable (connection drop, timeout, lock)
- PersistenceCorruptionError: unrecoverable; must stop ingestion loudly
- PersistenceBacklogError: unflushed backlog could not be drained in time
"""

import abc
from datetime import datetime
from typing import Optional

from dex_rollup.core.records import (
    CommitBatch,
    Pair,
    PairVolumeSnapshot,
    Token,
    TokenPriceSnapshot,
)


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------
class PersistenceError(Exception):
    """Base exception for all persistence errors."""


class TransientPersistenceError(PersistenceError):
    """Raised for write/read failures that are expected to succeed on retry."""


class PersistenceCorruptionError(PersistenceError):
    """Raised when stored state is inconsistent and retrying cannot help."""


class PersistenceBacklogError(PersistenceError):
    """Raised when the bounded backlog of unflushed blocks cannot drain."""


# ---------------------------------------------------------------------------
# SnapshotRepository ABC
# ---------------------------------------------------------------------------
class SnapshotRepository(abc.ABC):
    """Durable store of pairs, tokens, snapshots and the transaction log.

    Implementations MUST make :meth:`commit` atomic and idempotent: replaying
    the same batch leaves the store unchanged. Volume snapshots are upserted
    by id with their full totals; price snapshots and transactions are
    append-only and ignore ids that already exist.
    """

    @abc.abstractmethod
    def commit(self, batch: CommitBatch) -> None:
        """Persist *batch* and its block height as a single transaction."""
        ...

    @abc.abstractmethod
    def get_volume_snapshot(self, snapshot_id: str) -> Optional[PairVolumeSnapshot]:
        """Return the persisted volume snapshot with *snapshot_id*, if any."""
        ...

    @abc.abstractmethod
    def query_volume_range(
        self, pair_id: str, start: datetime, end: datetime
    ) -> list[PairVolumeSnapshot]:
        """Return snapshots of *pair_id* with ``start <= timestamp <= end``,
        oldest first."""
        ...

    @abc.abstractmethod
    def find_price_at_or_before(
        self, token_id: str, at: datetime
    ) -> Optional[TokenPriceSnapshot]:
        """Return the latest price snapshot of *token_id* not after *at*."""
        ...

    @abc.abstractmethod
    def get_pair(self, pair_id: str) -> Optional[Pair]:
        ...

    @abc.abstractmethod
    def get_token(self, token_id: str) -> Optional[Token]:
        ...

    @abc.abstractmethod
    def get_last_committed_block(self) -> Optional[int]:
        """Highest block whose batch was durably committed, or None."""
        ...
