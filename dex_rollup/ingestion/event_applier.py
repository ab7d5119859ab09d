"""Apply validated pair events to the volume store and pair/token state.

For each event the applier:

1. validates it (:func:`parse_event`) and resolves its pair;
2. drops it if its id was already applied (at-least-once delivery);
3. values it in USD at the token prices in force before the event -- a swap
   by its input leg (the output leg when the input token has no price yet),
   a liquidity change by the sum of both legs;
4. adds the value to the hourly bucket (one transaction per event, even
   when the value is 0 because neither token is priced yet);
5. moves reserves, LP supply and the all-time volume, reprices both tokens
   and recomputes the pair TVL;
6. returns the write-once :class:`Transaction` record.

Validation and valuation happen before anything is mutated, so a rejected
event leaves no trace in the store or the tracker.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

import structlog

from dex_rollup.core.enums import EventKind
from dex_rollup.core.records import ZERO, Pair, Token, Transaction
from dex_rollup.ingestion.dedup import AppliedEventTracker
from dex_rollup.ingestion.events import (
    MalformedEventError,
    PairEvent,
    UnknownPairError,
    parse_event,
)
from dex_rollup.pricing.value_math import (
    derived_price_usd,
    fdv,
    is_stablecoin,
    is_whitelisted_base_token,
    pair_tvl_usd,
    spot_price_from_reserves,
    usd_value,
)
from dex_rollup.volume.snapshot_store import VolumeSnapshotStore

logger = structlog.get_logger(__name__)

STABLECOIN_PAR = Decimal(1)


# ---------------------------------------------------------------------------
# Valuation result
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class EventValuation:
    """USD legs of one event and the value credited to volume."""

    value_usd: Decimal = ZERO
    amount_a_usd: Optional[Decimal] = None
    amount_b_usd: Optional[Decimal] = None
    amount_in_usd: Optional[Decimal] = None
    amount_out_usd: Optional[Decimal] = None
    token_in: Optional[str] = None
    token_out: Optional[str] = None


def _leg_usd(raw_amount: int, token: Token) -> Optional[Decimal]:
    if token.price_usd is None:
        return None
    return usd_value(raw_amount, token.decimals, token.price_usd)


# ---------------------------------------------------------------------------
# EventApplier
# ---------------------------------------------------------------------------
class EventApplier:
    """Owns the working pair/token state and applies events to it.

    Args:
        store: Hot volume snapshot store receiving contributions.
        tracker: Applied-event id memory for redelivery protection.
    """

    def __init__(self, store: VolumeSnapshotStore, tracker: AppliedEventTracker) -> None:
        self.store = store
        self.tracker = tracker
        self._pairs: dict[str, Pair] = {}
        self._tokens: dict[str, Token] = {}
        self._last_position: dict[str, tuple[int, datetime]] = {}
        self._touched_pairs: set[str] = set()
        self._touched_tokens: set[str] = set()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    def register_pair(self, pair: Pair, token0: Token, token1: Token) -> None:
        """Start tracking *pair* and its tokens.

        Token records already known (shared with another pair) are kept;
        stablecoins without a price are set to par.
        """
        if {pair.token0, pair.token1} != {token0.id, token1.id}:
            raise ValueError(f"Tokens {token0.id}/{token1.id} do not match pair {pair.id}")
        if pair.token0 == pair.token1:
            raise ValueError(f"Pair {pair.id} has identical tokens")

        for token in (token0, token1):
            if token.id not in self._tokens:
                tracked = replace(token)
                if tracked.price_usd is None and is_stablecoin(tracked.symbol):
                    tracked.price_usd = STABLECOIN_PAR
                    tracked.fdv = fdv(tracked.total_supply, tracked.decimals, STABLECOIN_PAR)
                self._tokens[token.id] = tracked
                self._touched_tokens.add(token.id)

        tracked_pair = replace(pair)
        tracked_pair.token0_symbol = tracked_pair.token0_symbol or self._tokens[pair.token0].symbol
        tracked_pair.token1_symbol = tracked_pair.token1_symbol or self._tokens[pair.token1].symbol
        self._pairs[pair.id] = tracked_pair
        self._touched_pairs.add(pair.id)
        logger.info(
            "pair_registered",
            pair_id=pair.id,
            symbols=f"{tracked_pair.token0_symbol}/{tracked_pair.token1_symbol}",
            reserve0=str(pair.reserve0),
            reserve1=str(pair.reserve1),
        )

    def deactivate_pair(self, pair_id: str) -> Pair:
        """Mark *pair_id* inactive. Pairs are never removed."""
        pair = self._require_pair(pair_id)
        pair.is_active = False
        self._touched_pairs.add(pair_id)
        logger.info("pair_deactivated", pair_id=pair_id)
        return replace(pair)

    def has_pair(self, pair_id: str) -> bool:
        return pair_id in self._pairs

    def get_pair(self, pair_id: str) -> Optional[Pair]:
        pair = self._pairs.get(pair_id)
        return replace(pair) if pair is not None else None

    def get_token(self, token_id: str) -> Optional[Token]:
        token = self._tokens.get(token_id)
        return replace(token) if token is not None else None

    def update_pair_volumes(self, pair_id: str, **volumes: Decimal) -> None:
        """Store recomputed rolling-window totals on the working pair."""
        pair = self._require_pair(pair_id)
        for name, value in volumes.items():
            setattr(pair, name, value)
        self._touched_pairs.add(pair_id)

    def take_touched(self) -> tuple[list[Pair], list[Token]]:
        """Copies of pairs and tokens changed since the last call."""
        pairs = [replace(self._pairs[pid]) for pid in sorted(self._touched_pairs)]
        tokens = [replace(self._tokens[tid]) for tid in sorted(self._touched_tokens)]
        self._touched_pairs.clear()
        self._touched_tokens.clear()
        return pairs, tokens

    def _require_pair(self, pair_id: str) -> Pair:
        pair = self._pairs.get(pair_id)
        if pair is None:
            raise UnknownPairError(f"Pair {pair_id} is not registered")
        return pair

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------
    def apply(self, raw: Mapping[str, Any] | PairEvent) -> Optional[Transaction]:
        """Apply one event exactly once.

        Returns:
            The Transaction record, or None when the event id was already
            applied.

        Raises:
            MalformedEventError: Missing/unparseable fields or amounts that
                would drive a reserve negative.
            UnknownPairError: The event's pair is not registered.
        """
        event = parse_event(raw)
        pair = self._pairs.get(event.pair_id)
        if pair is None:
            raise UnknownPairError(
                f"Event {event.id} references unknown pair {event.pair_id}",
                event_id=event.id,
            )

        if self.tracker.is_applied(event.id):
            logger.info(
                "duplicate_event_dropped",
                event_id=event.id,
                pair_id=event.pair_id,
                block_number=event.block_number,
            )
            return None

        self._check_order(event)
        token0 = self._tokens[pair.token0]
        token1 = self._tokens[pair.token1]

        valuation = self._value_event(event, pair, token0, token1)
        reserve0, reserve1 = self._next_reserves(event, pair, valuation)

        # May read persisted history, so resolve it before marking the event applied
        bucket = self.store.get_or_create_bucket(pair.id, event.timestamp)

        # Nothing below can fail on event data
        self.tracker.record(event.id, event.block_number)
        self.store.apply_contribution(bucket, valuation.value_usd)

        pair.reserve0 = reserve0
        pair.reserve1 = reserve1
        self._move_lp_supply(event, pair)
        pair.volume_usd += valuation.value_usd
        pair.updated_at = event.timestamp
        self._reprice_tokens(pair, event.timestamp)
        pair.tvl_usd = pair_tvl_usd(pair, token0, token1)
        self._touched_pairs.add(pair.id)
        self._last_position[pair.id] = (event.block_number, event.timestamp)

        logger.debug(
            "event_applied",
            event_id=event.id,
            pair_id=pair.id,
            kind=event.kind.value,
            block_number=event.block_number,
            value_usd=str(valuation.value_usd),
            bucket_id=bucket.id,
        )
        return self._build_transaction(event, valuation)

    def _check_order(self, event: PairEvent) -> None:
        last = self._last_position.get(event.pair_id)
        if last is None:
            return
        last_block, last_ts = last
        if event.block_number < last_block or event.timestamp < last_ts:
            logger.warning(
                "out_of_order_event",
                event_id=event.id,
                pair_id=event.pair_id,
                block_number=event.block_number,
                last_block_number=last_block,
                timestamp=event.timestamp.isoformat(),
                last_timestamp=last_ts.isoformat(),
            )

    def _value_event(
        self, event: PairEvent, pair: Pair, token0: Token, token1: Token
    ) -> EventValuation:
        if event.kind is EventKind.SWAP:
            if event.token_in is not None:
                if event.token_in not in (pair.token0, pair.token1):
                    raise MalformedEventError(
                        f"Swap {event.id} token_in {event.token_in} is not in pair {pair.id}",
                        event_id=event.id,
                    )
                token_in_id = event.token_in
            else:
                token_in_id = pair.token0 if event.is_token0_to_token1 else pair.token1
            token_in = self._tokens[token_in_id]
            token_out = self._tokens[pair.other_token(token_in_id)]

            amount_in_usd = _leg_usd(event.amount_in, token_in)
            amount_out_usd = _leg_usd(event.amount_out, token_out)
            if amount_in_usd is not None:
                value = amount_in_usd
            elif amount_out_usd is not None:
                value = amount_out_usd
            else:
                value = ZERO
            return EventValuation(
                value_usd=value,
                amount_in_usd=amount_in_usd,
                amount_out_usd=amount_out_usd,
                token_in=token_in.id,
                token_out=token_out.id,
            )

        amount_a_usd = _leg_usd(event.amount_a, token0)
        amount_b_usd = _leg_usd(event.amount_b, token1)
        return EventValuation(
            value_usd=(amount_a_usd or ZERO) + (amount_b_usd or ZERO),
            amount_a_usd=amount_a_usd,
            amount_b_usd=amount_b_usd,
        )

    def _next_reserves(
        self, event: PairEvent, pair: Pair, valuation: EventValuation
    ) -> tuple[int, int]:
        if event.has_reserves:
            return event.reserve0, event.reserve1

        if event.kind is EventKind.SWAP:
            if valuation.token_in == pair.token0:
                reserve0 = pair.reserve0 + event.amount_in
                reserve1 = pair.reserve1 - event.amount_out
            else:
                reserve0 = pair.reserve0 - event.amount_out
                reserve1 = pair.reserve1 + event.amount_in
        elif event.kind is EventKind.ADD_LIQUIDITY:
            reserve0 = pair.reserve0 + event.amount_a
            reserve1 = pair.reserve1 + event.amount_b
        else:
            reserve0 = pair.reserve0 - event.amount_a
            reserve1 = pair.reserve1 - event.amount_b

        if reserve0 < 0 or reserve1 < 0:
            raise MalformedEventError(
                f"Event {event.id} would drive reserves of {pair.id} negative "
                f"({reserve0}, {reserve1})",
                event_id=event.id,
            )
        return reserve0, reserve1

    def _move_lp_supply(self, event: PairEvent, pair: Pair) -> None:
        if event.kind is EventKind.ADD_LIQUIDITY:
            pair.total_supply += event.liquidity
        elif event.kind is EventKind.REMOVE_LIQUIDITY:
            if event.liquidity > pair.total_supply:
                logger.warning(
                    "lp_supply_underflow",
                    event_id=event.id,
                    pair_id=pair.id,
                    total_supply=str(pair.total_supply),
                    liquidity=str(event.liquidity),
                )
                pair.total_supply = 0
            else:
                pair.total_supply -= event.liquidity

    def _reprice_tokens(self, pair: Pair, at: datetime) -> None:
        for token_id in (pair.token0, pair.token1):
            token = self._tokens[token_id]
            price = self._derive_price(pair, token)
            if price is None or price == token.price_usd:
                continue
            token.price_usd = price
            token.fdv = fdv(token.total_supply, token.decimals, price)
            token.updated_at = at
            self._touched_tokens.add(token_id)

    def _derive_price(self, pair: Pair, token: Token) -> Optional[Decimal]:
        """USD price of *token* implied by *pair*, or None if not derivable.

        Stablecoins are held at par. Otherwise the spot price against the
        counterpart is converted to USD when the counterpart is a stablecoin
        or a whitelisted base token with a known price (one hop).
        """
        if is_stablecoin(token.symbol):
            return STABLECOIN_PAR
        other = self._tokens[pair.other_token(token.id)]
        if is_stablecoin(other.symbol):
            reference = STABLECOIN_PAR
        elif is_whitelisted_base_token(other.symbol) and other.price_usd is not None:
            reference = other.price_usd
        else:
            return None
        spot = spot_price_from_reserves(
            pair.reserve_of(token.id),
            pair.reserve_of(other.id),
            token.decimals,
            other.decimals,
        )
        if spot == 0:
            return None
        return derived_price_usd(spot, reference)

    def _build_transaction(self, event: PairEvent, valuation: EventValuation) -> Transaction:
        return Transaction(
            id=event.id,
            type=event.kind.transaction_type,
            pair_id=event.pair_id,
            user=event.user,
            block_number=event.block_number,
            timestamp=event.timestamp,
            amount_a=event.amount_a,
            amount_b=event.amount_b,
            liquidity=event.liquidity,
            amount_in=event.amount_in,
            amount_out=event.amount_out,
            token_in=valuation.token_in,
            token_out=valuation.token_out,
            amount_a_usd=valuation.amount_a_usd,
            amount_b_usd=valuation.amount_b_usd,
            amount_in_usd=valuation.amount_in_usd,
            amount_out_usd=valuation.amount_out_usd,
            value_usd=valuation.value_usd,
        )
