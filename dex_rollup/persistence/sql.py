"""SQLAlchemy implementation of the snapshot repository.

One :meth:`SqlSnapshotRepository.commit` is one database transaction:
tokens, pairs, volume snapshots, price snapshots, transactions and the
indexer block height are written together or not at all.

Idempotent writes use the dialect's ``INSERT ... ON CONFLICT``:
- DO UPDATE for tokens, pairs, volume snapshots and indexer state (full-row
  upsert; volume rows only when the stored transaction count is not higher)
- DO NOTHING for the append-only price snapshots and transactions

Driver errors are classified at this boundary: connection/operational
problems become TransientPersistenceError (retried by the flusher),
integrity and data errors become PersistenceCorruptionError.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import (
    DataError,
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
)
from sqlalchemy.orm import Session, sessionmaker

from dex_rollup.core.enums import TransactionType, VolumeInterval
from dex_rollup.core.models import (
    IndexerStateRecord,
    PairRecord,
    PairVolumeSnapshotRecord,
    TokenPriceSnapshotRecord,
    TokenRecord,
    TransactionRecord,
)
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
    PersistenceCorruptionError,
    PersistenceError,
    SnapshotRepository,
    TransientPersistenceError,
)

logger = structlog.get_logger(__name__)

DEFAULT_INDEXER_ID = "rollup"

# Rows per INSERT statement; keeps SQLite under its bound-parameter limit
_CHUNK_SIZE = 200

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    return ensure_utc(value) if value is not None else None


def _chunks(rows: list[dict[str, Any]]) -> Iterable[list[dict[str, Any]]]:
    for start in range(0, len(rows), _CHUNK_SIZE):
        yield rows[start:start + _CHUNK_SIZE]


# ---------------------------------------------------------------------------
# Record <-> row mapping
# ---------------------------------------------------------------------------
def _token_row(token: Token) -> dict[str, Any]:
    return asdict(token)


def _pair_row(pair: Pair) -> dict[str, Any]:
    return asdict(pair)


def _volume_row(snap: PairVolumeSnapshot) -> dict[str, Any]:
    row = asdict(snap)
    row["interval"] = snap.interval.value
    return row


def _price_row(snap: TokenPriceSnapshot) -> dict[str, Any]:
    return asdict(snap)


def _transaction_row(tx: Transaction) -> dict[str, Any]:
    row = asdict(tx)
    row["type"] = tx.type.value
    return row


def _to_volume_snapshot(rec: PairVolumeSnapshotRecord) -> PairVolumeSnapshot:
    return PairVolumeSnapshot(
        id=rec.id,
        pair_id=rec.pair_id,
        timestamp=_utc(rec.timestamp),
        created_at=_utc(rec.created_at),
        interval=VolumeInterval(rec.interval),
        volume_usd=rec.volume_usd,
        transaction_count=rec.transaction_count,
    )


def _to_price_snapshot(rec: TokenPriceSnapshotRecord) -> TokenPriceSnapshot:
    return TokenPriceSnapshot(
        id=rec.id,
        token_id=rec.token_id,
        price_usd=rec.price_usd,
        timestamp=_utc(rec.timestamp),
        block_number=rec.block_number,
        fdv=rec.fdv,
        change_1h=rec.change_1h,
        change_24h=rec.change_24h,
        change_7d=rec.change_7d,
        change_30d=rec.change_30d,
    )


def _to_pair(rec: PairRecord) -> Pair:
    return Pair(
        id=rec.id,
        token0=rec.token0,
        token1=rec.token1,
        reserve0=rec.reserve0,
        reserve1=rec.reserve1,
        total_supply=rec.total_supply,
        token0_symbol=rec.token0_symbol,
        token1_symbol=rec.token1_symbol,
        volume_usd=rec.volume_usd,
        volume_1h=rec.volume_1h,
        volume_24h=rec.volume_24h,
        volume_7d=rec.volume_7d,
        volume_30d=rec.volume_30d,
        volume_1y=rec.volume_1y,
        tvl_usd=rec.tvl_usd,
        created_at=_utc(rec.created_at),
        updated_at=_utc(rec.updated_at),
        is_active=rec.is_active,
    )


def _to_token(rec: TokenRecord) -> Token:
    return Token(
        id=rec.id,
        symbol=rec.symbol,
        decimals=rec.decimals,
        name=rec.name,
        total_supply=rec.total_supply,
        price_usd=rec.price_usd,
        fdv=rec.fdv,
        created_at=_utc(rec.created_at),
        updated_at=_utc(rec.updated_at),
    )


def to_transaction(rec: TransactionRecord) -> Transaction:
    """Map a stored transaction row back to its record."""
    return Transaction(
        id=rec.id,
        type=TransactionType(rec.type),
        pair_id=rec.pair_id,
        user=rec.user,
        block_number=rec.block_number,
        timestamp=_utc(rec.timestamp),
        amount_a=rec.amount_a,
        amount_b=rec.amount_b,
        liquidity=rec.liquidity,
        amount_in=rec.amount_in,
        amount_out=rec.amount_out,
        token_in=rec.token_in,
        token_out=rec.token_out,
        amount_a_usd=rec.amount_a_usd,
        amount_b_usd=rec.amount_b_usd,
        amount_in_usd=rec.amount_in_usd,
        amount_out_usd=rec.amount_out_usd,
        value_usd=rec.value_usd,
    )


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------
def classify_db_error(exc: DBAPIError) -> PersistenceError:
    """Map a SQLAlchemy driver error onto the persistence taxonomy."""
    if isinstance(exc, (OperationalError, InterfaceError)) or exc.connection_invalidated:
        return TransientPersistenceError(f"Transient database error: {exc.orig}")
    if isinstance(exc, (IntegrityError, DataError)):
        return PersistenceCorruptionError(f"Database rejected batch: {exc.orig}")
    return PersistenceError(f"Database error: {exc.orig}")


# ---------------------------------------------------------------------------
# SqlSnapshotRepository
# ---------------------------------------------------------------------------
class SqlSnapshotRepository(SnapshotRepository):
    """Snapshot repository over a SQLAlchemy session factory.

    Args:
        session_factory: Sync session factory. Defaults to the process-wide
            factory from ``dex_rollup.core.database``.
        indexer_id: Key of this indexer's row in ``indexer_state``.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        indexer_id: str = DEFAULT_INDEXER_ID,
    ) -> None:
        if session_factory is None:
            from dex_rollup.core.database import get_session_factory

            session_factory = get_session_factory()
        self._session_factory = session_factory
        self.indexer_id = indexer_id

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------
    def commit(self, batch: CommitBatch) -> None:
        try:
            with self._session_factory() as session, session.begin():
                # Parents before children for the foreign keys
                self._upsert(session, TokenRecord, [_token_row(t) for t in batch.tokens])
                self._upsert(session, PairRecord, [_pair_row(p) for p in batch.pairs])
                self._upsert_volume(session, [_volume_row(s) for s in batch.volume_snapshots])
                self._insert_new(
                    session, TokenPriceSnapshotRecord, [_price_row(s) for s in batch.price_snapshots]
                )
                self._insert_new(
                    session, TransactionRecord, [_transaction_row(t) for t in batch.transactions]
                )
                self._advance_block(session, batch.block_number)
        except DBAPIError as exc:
            error = classify_db_error(exc)
            logger.error(
                "sql_commit_failed",
                block_number=batch.block_number,
                error_type=type(error).__name__,
                error=str(exc.orig),
            )
            raise error from exc

    def _insert(self, session: Session, model: type):
        dialect = session.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise PersistenceError(f"Unsupported database dialect: {dialect}")
        return insert(model)

    def _upsert(self, session: Session, model: type, rows: list[dict[str, Any]]) -> None:
        for chunk in _chunks(rows):
            stmt = self._insert(session, model).values(chunk)
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={name: stmt.excluded[name] for name in chunk[0] if name != "id"},
            )
            session.execute(stmt)

    def _upsert_volume(self, session: Session, rows: list[dict[str, Any]]) -> None:
        table = PairVolumeSnapshotRecord.__table__
        for chunk in _chunks(rows):
            stmt = self._insert(session, PairVolumeSnapshotRecord).values(chunk)
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={
                    "volume_usd": stmt.excluded.volume_usd,
                    "transaction_count": stmt.excluded.transaction_count,
                },
                where=table.c.transaction_count <= stmt.excluded.transaction_count,
            )
            session.execute(stmt)

    def _insert_new(self, session: Session, model: type, rows: list[dict[str, Any]]) -> None:
        for chunk in _chunks(rows):
            stmt = self._insert(session, model).values(chunk)
            session.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))

    def _advance_block(self, session: Session, block_number: int) -> None:
        table = IndexerStateRecord.__table__
        stmt = self._insert(session, IndexerStateRecord).values(
            id=self.indexer_id,
            last_committed_block=block_number,
            updated_at=datetime.now(timezone.utc),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "last_committed_block": stmt.excluded.last_committed_block,
                "updated_at": stmt.excluded.updated_at,
            },
            where=table.c.last_committed_block < stmt.excluded.last_committed_block,
        )
        session.execute(stmt)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------
    def _read(self, fn):
        try:
            with self._session_factory() as session:
                return fn(session)
        except DBAPIError as exc:
            raise classify_db_error(exc) from exc

    def get_volume_snapshot(self, snapshot_id: str) -> Optional[PairVolumeSnapshot]:
        def query(session: Session) -> Optional[PairVolumeSnapshot]:
            rec = session.get(PairVolumeSnapshotRecord, snapshot_id)
            return _to_volume_snapshot(rec) if rec is not None else None

        return self._read(query)

    def query_volume_range(
        self, pair_id: str, start: datetime, end: datetime
    ) -> list[PairVolumeSnapshot]:
        def query(session: Session) -> list[PairVolumeSnapshot]:
            stmt = (
                select(PairVolumeSnapshotRecord)
                .where(
                    PairVolumeSnapshotRecord.pair_id == pair_id,
                    PairVolumeSnapshotRecord.timestamp >= ensure_utc(start),
                    PairVolumeSnapshotRecord.timestamp <= ensure_utc(end),
                )
                .order_by(PairVolumeSnapshotRecord.timestamp)
            )
            return [_to_volume_snapshot(rec) for rec in session.scalars(stmt)]

        return self._read(query)

    def find_price_at_or_before(
        self, token_id: str, at: datetime
    ) -> Optional[TokenPriceSnapshot]:
        def query(session: Session) -> Optional[TokenPriceSnapshot]:
            stmt = (
                select(TokenPriceSnapshotRecord)
                .where(
                    TokenPriceSnapshotRecord.token_id == token_id,
                    TokenPriceSnapshotRecord.timestamp <= ensure_utc(at),
                )
                .order_by(
                    TokenPriceSnapshotRecord.timestamp.desc(),
                    TokenPriceSnapshotRecord.block_number.desc(),
                )
                .limit(1)
            )
            rec = session.scalars(stmt).first()
            return _to_price_snapshot(rec) if rec is not None else None

        return self._read(query)

    def get_pair(self, pair_id: str) -> Optional[Pair]:
        def query(session: Session) -> Optional[Pair]:
            rec = session.get(PairRecord, pair_id)
            return _to_pair(rec) if rec is not None else None

        return self._read(query)

    def get_token(self, token_id: str) -> Optional[Token]:
        def query(session: Session) -> Optional[Token]:
            rec = session.get(TokenRecord, token_id)
            return _to_token(rec) if rec is not None else None

        return self._read(query)

    def get_last_committed_block(self) -> Optional[int]:
        def query(session: Session) -> Optional[int]:
            rec = session.get(IndexerStateRecord, self.indexer_id)
            return rec.last_committed_block if rec is not None else None

        return self._read(query)

    def get_transactions(self, pair_id: str) -> list[Transaction]:
        """Transaction log of *pair_id* in block order (audit reads)."""

        def query(session: Session) -> list[Transaction]:
            stmt = (
                select(TransactionRecord)
                .where(TransactionRecord.pair_id == pair_id)
                .order_by(TransactionRecord.block_number, TransactionRecord.id)
            )
            return [to_transaction(rec) for rec in session.scalars(stmt)]

        return self._read(query)
