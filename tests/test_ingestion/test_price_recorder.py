"""Tests for token price snapshots and change percentages."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from dex_rollup.core.records import CommitBatch, PriceChanges, Token, TokenPriceSnapshot
from dex_rollup.ingestion.price_recorder import PriceSnapshotRecorder, price_snapshot_id
from dex_rollup.persistence.memory import InMemorySnapshotRepository
from dex_rollup.persistence.ports import SnapshotRepository, TransientPersistenceError

T = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _token(price) -> Token:
    return Token(
        id="0xvara",
        symbol="WVARA",
        decimals=12,
        total_supply=10**12,
        price_usd=None if price is None else Decimal(price),
        fdv=None if price is None else Decimal(price),
    )


class TestRecord:
    def test_snapshot_fields(self) -> None:
        recorder = PriceSnapshotRecorder()
        snap = recorder.record(_token(5), 10, T)
        assert snap.id == price_snapshot_id("0xvara", 10) == "0xvara:10"
        assert snap.price_usd == 5
        assert snap.fdv == 5
        assert snap.block_number == 10
        assert snap.timestamp == T
        assert snap.change_1h is None

    def test_unpriced_token_skipped(self) -> None:
        assert PriceSnapshotRecorder().record(_token(None), 10, T) is None

    def test_one_per_block(self) -> None:
        recorder = PriceSnapshotRecorder()
        assert recorder.record(_token(5), 10, T) is not None
        assert recorder.record(_token(6), 10, T) is None
        assert recorder.record(_token(6), 11, T + timedelta(seconds=6)) is not None

    def test_hourly_cadence(self) -> None:
        recorder = PriceSnapshotRecorder(cadence="hourly")
        assert recorder.record(_token(5), 10, T) is not None
        assert recorder.record(_token(6), 11, T + timedelta(minutes=59)) is None
        assert recorder.record(_token(6), 12, T + timedelta(hours=1)) is not None

    def test_invalid_cadence(self) -> None:
        with pytest.raises(ValueError):
            PriceSnapshotRecorder(cadence="weekly")


class TestChanges:
    def test_change_against_nearest_earlier_snapshot(self) -> None:
        recorder = PriceSnapshotRecorder()
        recorder.record(_token(100), 1, T - timedelta(hours=24))
        snap = recorder.record(_token(110), 2, T)
        assert snap.change_24h == 10
        # No snapshot inside the last hour; the 24h-old one is the baseline
        assert snap.change_1h == 10
        assert snap.change_7d is None
        assert snap.change_30d is None

    def test_zero_baseline_gives_none(self) -> None:
        recorder = PriceSnapshotRecorder()
        recorder.record(_token(0), 1, T - timedelta(hours=2))
        snap = recorder.record(_token(3), 2, T)
        assert snap.change_1h is None

    def test_baseline_from_repository(self) -> None:
        repo = InMemorySnapshotRepository()
        old = TokenPriceSnapshot(
            id="0xvara:1",
            token_id="0xvara",
            price_usd=Decimal(50),
            timestamp=T - timedelta(days=8),
            block_number=1,
        )
        repo.commit(CommitBatch(block_number=1, price_snapshots=[old]))
        recorder = PriceSnapshotRecorder(repo)
        snap = recorder.record(_token(75), 2, T)
        assert snap.change_7d == 50
        assert snap.change_24h == 50

    def test_newer_local_snapshot_beats_repository(self) -> None:
        repo = InMemorySnapshotRepository()
        repo.commit(
            CommitBatch(
                block_number=1,
                price_snapshots=[
                    TokenPriceSnapshot(
                        id="0xvara:1",
                        token_id="0xvara",
                        price_usd=Decimal(50),
                        timestamp=T - timedelta(days=3),
                        block_number=1,
                    )
                ],
            )
        )
        recorder = PriceSnapshotRecorder(repo)
        recorder.record(_token(80), 2, T - timedelta(days=2))
        snap = recorder.record(_token(100), 3, T)
        assert snap.change_24h == 25

    def test_transient_repository_error_degrades_to_local(self) -> None:
        repo = MagicMock(spec=SnapshotRepository)
        repo.find_price_at_or_before.side_effect = TransientPersistenceError("timeout")
        recorder = PriceSnapshotRecorder(repo)
        recorder.record(_token(100), 1, T - timedelta(hours=2))
        snap = recorder.record(_token(120), 2, T)
        assert snap.change_1h == 20
        assert snap.change_30d is None

    def test_compute_changes_direct(self) -> None:
        recorder = PriceSnapshotRecorder()
        recorder.record(_token(200), 1, T - timedelta(days=31))
        changes = recorder.compute_changes("0xvara", Decimal(100), T)
        assert changes == PriceChanges(
            change_1h=Decimal(-50),
            change_24h=Decimal(-50),
            change_7d=Decimal(-50),
            change_30d=Decimal(-50),
        )


class TestBookkeeping:
    def test_drain_pending(self) -> None:
        recorder = PriceSnapshotRecorder()
        recorder.record(_token(1), 1, T)
        recorder.record(_token(2), 2, T + timedelta(seconds=6))
        assert [s.block_number for s in recorder.drain_pending()] == [1, 2]
        assert recorder.drain_pending() == []
        assert recorder.latest("0xvara").block_number == 2

    def test_price_changes_of_latest(self) -> None:
        recorder = PriceSnapshotRecorder()
        assert recorder.price_changes("0xvara") == PriceChanges()
        recorder.record(_token(100), 1, T - timedelta(hours=1))
        recorder.record(_token(90), 2, T)
        assert recorder.price_changes("0xvara").change_1h == -10

    def test_prune_keeps_one_baseline(self) -> None:
        recorder = PriceSnapshotRecorder()
        recorder.record(_token(1), 1, T - timedelta(days=40))
        recorder.record(_token(2), 2, T - timedelta(days=35))
        recorder.record(_token(3), 3, T - timedelta(days=1))
        assert recorder.prune(T) == 1
        baseline = recorder.find_at_or_before("0xvara", T - timedelta(days=30))
        assert baseline.block_number == 2
