"""Tests for event application: valuation, reserves, pricing and dedup."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from dex_rollup.core.enums import TransactionType
from dex_rollup.core.records import Pair, Token, volume_snapshot_id
from dex_rollup.ingestion.dedup import AppliedEventTracker
from dex_rollup.ingestion.event_applier import EventApplier
from dex_rollup.ingestion.events import MalformedEventError, UnknownPairError
from dex_rollup.persistence.ports import TransientPersistenceError
from dex_rollup.volume.snapshot_store import VolumeSnapshotStore


VARA = "0xvara"
USDC = "0xusdc"
FOO = "0xfoo"
PAIR = "0xpair-vara-usdc"
T = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
FOO_PAIR = "0xpair-foo-vara"


def swap(event_id: str, block: int = 100, ts: datetime = T, pair_id: str = PAIR, **fields) -> dict:
    return {
        "id": event_id,
        "pair_id": pair_id,
        "block_number": block,
        "timestamp": ts,
        "kind": "Swap",
        "user": "0xtrader",
        **fields,
    }


def liquidity(event_id: str, kind: str, block: int = 100, ts: datetime = T, **fields) -> dict:
    return {
        "id": event_id,
        "pair_id": PAIR,
        "block_number": block,
        "timestamp": ts,
        "kind": kind,
        **fields,
    }


@pytest.fixture
def store() -> VolumeSnapshotStore:
    return VolumeSnapshotStore()


@pytest.fixture
def applier(store, vara_usdc_pair: Pair, vara_token: Token, usdc_token: Token) -> EventApplier:
    applier = EventApplier(store, AppliedEventTracker())
    applier.register_pair(vara_usdc_pair, vara_token, usdc_token)
    return applier


def _bucket(store: VolumeSnapshotStore, pair_id: str = PAIR, ts: datetime = T):
    return store.get(volume_snapshot_id(pair_id, ts))


class TestRegistry:
    def test_stablecoin_registered_at_par(self, applier: EventApplier) -> None:
        assert applier.get_token(USDC).price_usd == 1
        assert applier.get_token(VARA).price_usd is None

    def test_symbols_filled_from_tokens(self, applier: EventApplier) -> None:
        pair = applier.get_pair(PAIR)
        assert (pair.token0_symbol, pair.token1_symbol) == ("WVARA", "USDC")

    def test_mismatched_tokens_rejected(self, store, vara_usdc_pair, vara_token, foo_token) -> None:
        applier = EventApplier(store, AppliedEventTracker())
        with pytest.raises(ValueError, match="do not match"):
            applier.register_pair(vara_usdc_pair, vara_token, foo_token)

    def test_registration_copies_inputs(self, store, vara_usdc_pair, vara_token, usdc_token) -> None:
        applier = EventApplier(store, AppliedEventTracker())
        applier.register_pair(vara_usdc_pair, vara_token, usdc_token)
        vara_usdc_pair.reserve0 = 0
        assert applier.get_pair(PAIR).reserve0 == 1_000 * 10**12

    def test_take_touched(self, applier: EventApplier) -> None:
        pairs, tokens = applier.take_touched()
        assert [p.id for p in pairs] == [PAIR]
        assert sorted(t.id for t in tokens) == sorted([USDC, VARA])
        assert applier.take_touched() == ([], [])

    def test_deactivate(self, applier: EventApplier) -> None:
        applier.take_touched()
        assert applier.deactivate_pair(PAIR).is_active is False
        pairs, _ = applier.take_touched()
        assert pairs[0].is_active is False

    def test_deactivate_unknown(self, applier: EventApplier) -> None:
        with pytest.raises(UnknownPairError):
            applier.deactivate_pair("0xnope")


class TestSwap:
    def test_unpriced_input_valued_by_output_leg(self, applier, store) -> None:
        # 250 WVARA in, 1,000 USDC out; WVARA has no price yet
        tx = applier.apply(
            swap("100-0", amount_in=250 * 10**12, amount_out=1_000 * 10**6, is_token0_to_token1=True)
        )
        assert tx.type is TransactionType.SWAP
        assert tx.token_in == VARA
        assert tx.token_out == USDC
        assert tx.amount_in_usd is None
        assert tx.amount_out_usd == 1_000
        assert tx.value_usd == 1_000
        assert tx.user == "0xtrader"

        bucket = _bucket(store)
        assert bucket.volume_usd == 1_000
        assert bucket.transaction_count == 1

    def test_reserves_and_price_after_swap(self, applier) -> None:
        applier.apply(
            swap("100-0", amount_in=250 * 10**12, amount_out=1_000 * 10**6, is_token0_to_token1=True)
        )
        pair = applier.get_pair(PAIR)
        assert pair.reserve0 == 1_250 * 10**12
        assert pair.reserve1 == 4_000 * 10**6
        assert pair.volume_usd == 1_000
        assert pair.updated_at == T
        # 4,000 USDC / 1,250 WVARA
        vara = applier.get_token(VARA)
        assert vara.price_usd == Decimal("3.2")
        assert vara.fdv == Decimal("3.2") * 10**9
        assert pair.tvl_usd == 8_000

    def test_priced_input_leg_wins(self, applier, store) -> None:
        tx = applier.apply(
            swap("100-0", amount_in=320 * 10**6, amount_out=100 * 10**12, token_in=USDC)
        )
        assert tx.token_in == USDC
        assert tx.value_usd == 320
        assert applier.get_pair(PAIR).reserve1 == 5_320 * 10**6

    def test_event_reserves_override_derivation(self, applier) -> None:
        applier.apply(
            swap(
                "100-0",
                amount_in=1,
                amount_out=1,
                is_token0_to_token1=False,
                reserve0=2_000 * 10**12,
                reserve1=4_000 * 10**6,
            )
        )
        pair = applier.get_pair(PAIR)
        assert (pair.reserve0, pair.reserve1) == (2_000 * 10**12, 4_000 * 10**6)
        assert applier.get_token(VARA).price_usd == 2

    def test_token_in_outside_pair(self, applier) -> None:
        with pytest.raises(MalformedEventError, match="not in pair"):
            applier.apply(swap("100-0", amount_in=1, amount_out=1, token_in=FOO))

    def test_output_beyond_reserve_is_rejected_untouched(self, applier, store) -> None:
        with pytest.raises(MalformedEventError, match="negative"):
            applier.apply(
                swap("100-0", amount_in=1, amount_out=6_000 * 10**6, is_token0_to_token1=True)
            )
        assert len(store) == 0
        assert not applier.tracker.is_applied("100-0")
        assert applier.get_pair(PAIR).reserve1 == 5_000 * 10**6


class TestLiquidity:
    @pytest.fixture
    def priced(self, store, vara_usdc_pair, vara_token, usdc_token) -> EventApplier:
        vara_token.price_usd = Decimal(5)
        applier = EventApplier(store, AppliedEventTracker())
        applier.register_pair(vara_usdc_pair, vara_token, usdc_token)
        return applier

    def test_add_liquidity_values_both_legs(self, priced, store) -> None:
        tx = priced.apply(
            liquidity(
                "100-0", "LiquidityAdded",
                amount_a=100 * 10**12, amount_b=500 * 10**6, liquidity=10**14,
            )
        )
        assert tx.type is TransactionType.ADD_LIQUIDITY
        assert tx.amount_a_usd == 500
        assert tx.amount_b_usd == 500
        assert tx.value_usd == 1_000
        pair = priced.get_pair(PAIR)
        assert pair.reserve0 == 1_100 * 10**12
        assert pair.reserve1 == 5_500 * 10**6
        assert pair.total_supply == 10**15 + 10**14
        assert pair.tvl_usd == 11_000
        assert _bucket(store).volume_usd == 1_000

    def test_remove_liquidity(self, priced) -> None:
        priced.apply(
            liquidity(
                "100-0", "RemoveLiquidity",
                amount_a=100 * 10**12, amount_b=500 * 10**6, liquidity=10**14,
            )
        )
        pair = priced.get_pair(PAIR)
        assert pair.reserve0 == 900 * 10**12
        assert pair.total_supply == 9 * 10**14

    def test_lp_underflow_clamped_to_zero(self, priced) -> None:
        tx = priced.apply(
            liquidity("100-0", "LiquidityRemoved", amount_a=1, amount_b=1, liquidity=10**16)
        )
        assert tx.liquidity == 10**16
        assert priced.get_pair(PAIR).total_supply == 0

    def test_remove_beyond_reserves_rejected(self, priced) -> None:
        with pytest.raises(MalformedEventError):
            priced.apply(
                liquidity(
                    "100-0", "RemoveLiquidity",
                    amount_a=2_000 * 10**12, amount_b=1, liquidity=1,
                )
            )


class TestExactlyOnce:
    def test_redelivery_is_dropped(self, applier, store) -> None:
        event = swap("100-0", amount_in=320 * 10**6, amount_out=100 * 10**12, token_in=USDC)
        assert applier.apply(event) is not None
        assert applier.apply(event) is None
        bucket = _bucket(store)
        assert bucket.transaction_count == 1
        assert bucket.volume_usd == 320
        assert applier.get_pair(PAIR).volume_usd == 320

    def test_same_bucket_sums_exactly(self, applier, store) -> None:
        for i, amount in enumerate([1, 2, 3]):
            applier.apply(
                swap(
                    f"100-{i}",
                    ts=T + timedelta(minutes=10 * i),
                    amount_in=amount * 10**6,
                    amount_out=1,
                    token_in=USDC,
                )
            )
        bucket = _bucket(store)
        assert bucket.volume_usd == 6
        assert bucket.transaction_count == 3

    def test_loader_failure_does_not_mark_applied(self, vara_usdc_pair, vara_token, usdc_token) -> None:
        def failing_loader(_snapshot_id):
            raise TransientPersistenceError("db down")

        applier = EventApplier(VolumeSnapshotStore(loader=failing_loader), AppliedEventTracker())
        applier.register_pair(vara_usdc_pair, vara_token, usdc_token)
        event = swap("100-0", amount_in=1, amount_out=1, token_in=USDC)
        with pytest.raises(TransientPersistenceError):
            applier.apply(event)
        assert not applier.tracker.is_applied("100-0")
        assert applier.get_pair(PAIR).reserve1 == 5_000 * 10**6


class TestEdgeCases:
    def test_unknown_pair(self, applier) -> None:
        with pytest.raises(UnknownPairError) as exc_info:
            applier.apply(swap("100-0", pair_id="0xnope", amount_in=1, amount_out=1, token_in=USDC))
        assert exc_info.value.event_id == "100-0"

    def test_zero_usd_event_still_counts(self, store, vara_token, foo_token) -> None:
        applier = EventApplier(store, AppliedEventTracker())
        pair = Pair(id=FOO_PAIR, token0=FOO, token1=VARA, reserve0=10**21, reserve1=10**15)
        applier.register_pair(pair, foo_token, vara_token)
        tx = applier.apply(
            swap("100-0", pair_id=FOO_PAIR, amount_in=10**18, amount_out=10**12, is_token0_to_token1=True)
        )
        assert tx.value_usd == 0
        bucket = _bucket(store, FOO_PAIR)
        assert bucket.transaction_count == 1
        assert bucket.volume_usd == 0
        assert applier.get_token(FOO).price_usd is None

    def test_one_hop_via_whitelisted_base(self, applier, foo_token) -> None:
        # Price WVARA at 3.2 through the USDC pool first
        applier.apply(
            swap("100-0", amount_in=250 * 10**12, amount_out=1_000 * 10**6, is_token0_to_token1=True)
        )
        vara = applier.get_token(VARA)
        pair = Pair(id=FOO_PAIR, token0=FOO, token1=VARA)
        applier.register_pair(pair, foo_token, vara)
        tx = applier.apply(
            swap(
                "101-0",
                block=101,
                pair_id=FOO_PAIR,
                amount_in=2 * 10**18,
                amount_out=10**12,
                is_token0_to_token1=True,
                reserve0=1_000 * 10**18,
                reserve1=500 * 10**12,
            )
        )
        assert tx.value_usd == Decimal("3.2")
        # 0.5 WVARA per FOO at 3.2 USD
        assert applier.get_token(FOO).price_usd == Decimal("1.6")
        assert applier.get_token(VARA).price_usd == Decimal("3.2")

    def test_out_of_order_is_still_applied(self, applier, store) -> None:
        applier.apply(swap("100-0", ts=T + timedelta(minutes=10), amount_in=1, amount_out=1, token_in=USDC))
        tx = applier.apply(
            swap("99-0", block=99, ts=T + timedelta(minutes=5), amount_in=1, amount_out=1, token_in=USDC)
        )
        assert tx is not None
        assert _bucket(store).transaction_count == 2

    def test_malformed_event(self, applier) -> None:
        with pytest.raises(MalformedEventError):
            applier.apply(swap("100-0", amount_in="abc", amount_out=1, token_in=USDC))
