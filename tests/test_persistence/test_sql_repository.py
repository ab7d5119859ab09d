"""Tests for the SQLAlchemy snapshot repository against in-memory SQLite."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DataError, IntegrityError, OperationalError, ProgrammingError

from dex_rollup.core.enums import TransactionType
from dex_rollup.core.models import PairVolumeSnapshotRecord, TokenPriceSnapshotRecord
from dex_rollup.core.records import (
    CommitBatch,
    Pair,
    PairVolumeSnapshot,
    Token,
    TokenPriceSnapshot,
    Transaction,
    volume_snapshot_id,
)
from dex_rollup.core.utils.parsing import UINT256_MAX
from dex_rollup.persistence.ports import (
    PersistenceCorruptionError,
    PersistenceError,
    TransientPersistenceError,
)
from dex_rollup.persistence.sql import SqlSnapshotRepository, classify_db_error

T = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
PAIR = "0xpair-vara-usdc"


@pytest.fixture
def repo(sqlite_session_factory) -> SqlSnapshotRepository:
    return SqlSnapshotRepository(sqlite_session_factory)


@pytest.fixture
def seeded(repo, vara_usdc_pair: Pair, vara_token: Token, usdc_token: Token) -> SqlSnapshotRepository:
    usdc_token.price_usd = Decimal(1)
    repo.commit(
        CommitBatch(block_number=1, pairs=[vara_usdc_pair], tokens=[vara_token, usdc_token])
    )
    return repo


def _volume(ts: datetime, volume, count: int) -> PairVolumeSnapshot:
    return PairVolumeSnapshot(
        id=volume_snapshot_id(PAIR, ts),
        pair_id=PAIR,
        timestamp=ts,
        created_at=ts,
        volume_usd=Decimal(volume),
        transaction_count=count,
    )


def _price(block: int, ts: datetime, price) -> TokenPriceSnapshot:
    return TokenPriceSnapshot(
        id=f"0xvara:{block}",
        token_id="0xvara",
        price_usd=Decimal(price),
        timestamp=ts,
        block_number=block,
        change_24h=Decimal("-12.5"),
    )


def _count(factory, model) -> int:
    with factory() as session:
        return session.scalar(select(func.count()).select_from(model))


class TestEntities:
    def test_pair_and_token_round_trip(self, seeded, vara_usdc_pair: Pair) -> None:
        pair = seeded.get_pair(PAIR)
        assert pair == vara_usdc_pair
        token = seeded.get_token("0xusdc")
        assert token.price_usd == 1
        assert token.decimals == 6

    def test_uint256_is_exact(self, repo, vara_token, usdc_token) -> None:
        pair = Pair(id=PAIR, token0="0xvara", token1="0xusdc", reserve0=UINT256_MAX, reserve1=1)
        repo.commit(CommitBatch(block_number=1, pairs=[pair], tokens=[vara_token, usdc_token]))
        assert repo.get_pair(PAIR).reserve0 == UINT256_MAX

    def test_pair_upsert_overwrites(self, seeded, vara_usdc_pair: Pair) -> None:
        vara_usdc_pair.volume_24h = Decimal("123.456")
        vara_usdc_pair.is_active = False
        seeded.commit(CommitBatch(block_number=2, pairs=[vara_usdc_pair]))
        pair = seeded.get_pair(PAIR)
        assert pair.volume_24h == Decimal("123.456")
        assert pair.is_active is False

    def test_missing(self, repo) -> None:
        assert repo.get_pair("nope") is None
        assert repo.get_token("nope") is None
        assert repo.get_volume_snapshot("nope") is None
        assert repo.get_last_committed_block() is None


class TestVolumeSnapshots:
    def test_upsert_and_read_back(self, seeded) -> None:
        seeded.commit(CommitBatch(block_number=2, volume_snapshots=[_volume(T, "10.5", 1)]))
        seeded.commit(CommitBatch(block_number=3, volume_snapshots=[_volume(T, "20.25", 2)]))
        snap = seeded.get_volume_snapshot(volume_snapshot_id(PAIR, T))
        assert snap.volume_usd == Decimal("20.25")
        assert snap.transaction_count == 2
        assert snap.timestamp == T
        assert snap.timestamp.tzinfo is not None

    def test_stale_row_does_not_overwrite(self, seeded) -> None:
        seeded.commit(CommitBatch(block_number=2, volume_snapshots=[_volume(T, 30, 3)]))
        seeded.commit(CommitBatch(block_number=3, volume_snapshots=[_volume(T, 10, 1)]))
        assert seeded.get_volume_snapshot(volume_snapshot_id(PAIR, T)).volume_usd == 30

    def test_replay_is_idempotent(self, seeded, sqlite_session_factory) -> None:
        batch = CommitBatch(block_number=2, volume_snapshots=[_volume(T, 5, 1)])
        seeded.commit(batch)
        seeded.commit(batch)
        assert _count(sqlite_session_factory, PairVolumeSnapshotRecord) == 1

    def test_query_range(self, seeded) -> None:
        snaps = [_volume(T - timedelta(hours=h), h + 1, 1) for h in range(5)]
        seeded.commit(CommitBatch(block_number=2, volume_snapshots=snaps))
        rows = seeded.query_volume_range(PAIR, T - timedelta(hours=2), T)
        assert [r.volume_usd for r in rows] == [Decimal(3), Decimal(2), Decimal(1)]


class TestAppendOnly:
    def test_price_snapshot_write_once(self, seeded, sqlite_session_factory) -> None:
        seeded.commit(CommitBatch(block_number=2, price_snapshots=[_price(2, T, 5)]))
        seeded.commit(CommitBatch(block_number=2, price_snapshots=[_price(2, T, 7)]))
        assert _count(sqlite_session_factory, TokenPriceSnapshotRecord) == 1
        snap = seeded.find_price_at_or_before("0xvara", T)
        assert snap.price_usd == 5
        assert snap.change_24h == Decimal("-12.5")

    def test_find_price_at_or_before(self, seeded) -> None:
        seeded.commit(
            CommitBatch(
                block_number=4,
                price_snapshots=[
                    _price(2, T - timedelta(hours=2), 1),
                    _price(3, T - timedelta(hours=1), 2),
                    _price(4, T, 3),
                ],
            )
        )
        assert seeded.find_price_at_or_before("0xvara", T - timedelta(minutes=1)).block_number == 3
        assert seeded.find_price_at_or_before("0xvara", T - timedelta(days=1)) is None

    def test_transactions(self, seeded) -> None:
        tx = Transaction(
            id="2-0",
            type=TransactionType.SWAP,
            pair_id=PAIR,
            user="0xtrader",
            block_number=2,
            timestamp=T,
            amount_in=UINT256_MAX,
            amount_out=1,
            token_in="0xvara",
            token_out="0xusdc",
            amount_out_usd=Decimal("0.000001"),
            value_usd=Decimal("0.000001"),
        )
        seeded.commit(CommitBatch(block_number=2, transactions=[tx]))
        seeded.commit(CommitBatch(block_number=2, transactions=[tx]))
        assert seeded.get_transactions(PAIR) == [tx]


class TestIndexerState:
    def test_block_height_only_advances(self, repo) -> None:
        repo.commit(CommitBatch(block_number=10))
        repo.commit(CommitBatch(block_number=8))
        assert repo.get_last_committed_block() == 10
        repo.commit(CommitBatch(block_number=11))
        assert repo.get_last_committed_block() == 11

    def test_indexers_are_independent(self, sqlite_session_factory) -> None:
        a = SqlSnapshotRepository(sqlite_session_factory, indexer_id="a")
        b = SqlSnapshotRepository(sqlite_session_factory, indexer_id="b")
        a.commit(CommitBatch(block_number=5))
        assert b.get_last_committed_block() is None


class TestErrorClassification:
    def test_operational_is_transient(self) -> None:
        err = classify_db_error(OperationalError("SELECT 1", {}, Exception("server closed")))
        assert isinstance(err, TransientPersistenceError)

    def test_integrity_is_corruption(self) -> None:
        err = classify_db_error(IntegrityError("INSERT", {}, Exception("fk violation")))
        assert isinstance(err, PersistenceCorruptionError)

    def test_data_error_is_corruption(self) -> None:
        err = classify_db_error(DataError("INSERT", {}, Exception("numeric overflow")))
        assert isinstance(err, PersistenceCorruptionError)

    def test_other_is_base_error(self) -> None:
        err = classify_db_error(ProgrammingError("SELECT", {}, Exception("syntax")))
        assert type(err) is PersistenceError

    def test_commit_failure_is_translated(self) -> None:
        factory = MagicMock(side_effect=OperationalError("BEGIN", {}, Exception("connection refused")))
        repo = SqlSnapshotRepository(factory)
        with pytest.raises(TransientPersistenceError, match="connection refused"):
            repo.commit(CommitBatch(block_number=1))

    def test_read_failure_is_translated(self) -> None:
        factory = MagicMock(side_effect=OperationalError("SELECT", {}, Exception("timeout")))
        repo = SqlSnapshotRepository(factory)
        with pytest.raises(TransientPersistenceError):
            repo.get_last_committed_block()
