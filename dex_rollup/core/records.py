"""Plain domain records shared by the rollup engine and its persistence port.

These dataclasses carry no ORM behaviour. Raw on-chain quantities are Python
ints (uint256 range), USD-denominated values and prices are Decimal. The SQL
adapter maps them onto the tables in ``dex_rollup.core.models``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from dex_rollup.core.enums import TransactionType, VolumeInterval
from dex_rollup.core.utils.time_buckets import to_epoch_millis

ZERO = Decimal(0)


@dataclass
class Token:
    """ERC20-like token metadata plus its last derived USD price.

    ``decimals`` is treated as immutable once set; the engine assumes it
    rather than enforcing it.
    """

    id: str
    symbol: str
    decimals: int
    name: Optional[str] = None
    total_supply: Optional[int] = None
    price_usd: Optional[Decimal] = None
    fdv: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Pair:
    """A constant-product pool. Volume fields are derived, never hand-edited."""

    id: str
    token0: str
    token1: str
    reserve0: int = 0
    reserve1: int = 0
    total_supply: int = 0
    token0_symbol: Optional[str] = None
    token1_symbol: Optional[str] = None
    volume_usd: Decimal = ZERO
    volume_1h: Decimal = ZERO
    volume_24h: Decimal = ZERO
    volume_7d: Decimal = ZERO
    volume_30d: Decimal = ZERO
    volume_1y: Decimal = ZERO
    tvl_usd: Decimal = ZERO
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_active: bool = True

    def other_token(self, token_id: str) -> str:
        """Return the counterpart of *token_id* in this pair."""
        if token_id == self.token0:
            return self.token1
        if token_id == self.token1:
            return self.token0
        raise KeyError(f"token {token_id} is not part of pair {self.id}")

    def reserve_of(self, token_id: str) -> int:
        """Return the raw reserve held for *token_id*."""
        if token_id == self.token0:
            return self.reserve0
        if token_id == self.token1:
            return self.reserve1
        raise KeyError(f"token {token_id} is not part of pair {self.id}")


def volume_snapshot_id(
    pair_id: str,
    bucket_start: datetime,
    interval: VolumeInterval = VolumeInterval.HOURLY,
) -> str:
    """Deterministic composite id ``pair:interval:bucket_start_epoch_ms``."""
    return f"{pair_id}:{interval.value}:{to_epoch_millis(bucket_start)}"


@dataclass
class PairVolumeSnapshot:
    """Running volume aggregate of one pair for one bucket.

    ``volume_usd`` and ``transaction_count`` only ever grow; the snapshot
    store's ``apply_contribution`` is their single mutator.
    """

    id: str
    pair_id: str
    timestamp: datetime
    created_at: datetime
    interval: VolumeInterval = VolumeInterval.HOURLY
    volume_usd: Decimal = ZERO
    transaction_count: int = 0


@dataclass(frozen=True)
class TokenPriceSnapshot:
    """One append-only price observation of a token."""

    id: str
    token_id: str
    price_usd: Decimal
    timestamp: datetime
    block_number: int
    fdv: Optional[Decimal] = None
    change_1h: Optional[Decimal] = None
    change_24h: Optional[Decimal] = None
    change_7d: Optional[Decimal] = None
    change_30d: Optional[Decimal] = None


@dataclass(frozen=True)
class Transaction:
    """Write-once audit record of a single applied pair event."""

    id: str
    type: TransactionType
    pair_id: str
    user: str
    block_number: int
    timestamp: datetime
    amount_a: Optional[int] = None
    amount_b: Optional[int] = None
    liquidity: Optional[int] = None
    amount_in: Optional[int] = None
    amount_out: Optional[int] = None
    token_in: Optional[str] = None
    token_out: Optional[str] = None
    amount_a_usd: Optional[Decimal] = None
    amount_b_usd: Optional[Decimal] = None
    amount_in_usd: Optional[Decimal] = None
    amount_out_usd: Optional[Decimal] = None
    value_usd: Decimal = ZERO


@dataclass(frozen=True)
class VolumePeriods:
    """Read-only rolling volume totals handed to the query layer."""

    volume_1h: Decimal = ZERO
    volume_24h: Decimal = ZERO
    volume_7d: Decimal = ZERO
    volume_30d: Decimal = ZERO
    volume_1y: Decimal = ZERO


@dataclass(frozen=True)
class PriceChanges:
    """Read-only percentage price changes; None where no baseline exists."""

    change_1h: Optional[Decimal] = None
    change_24h: Optional[Decimal] = None
    change_7d: Optional[Decimal] = None
    change_30d: Optional[Decimal] = None


@dataclass
class CommitBatch:
    """Everything one block produced, persisted as a single atomic unit.

    Volume snapshots carry their full running totals so that replaying a
    batch after a failed commit is idempotent.
    """

    block_number: int
    volume_snapshots: list[PairVolumeSnapshot] = field(default_factory=list)
    price_snapshots: list[TokenPriceSnapshot] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    pairs: list[Pair] = field(default_factory=list)
    tokens: list[Token] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.volume_snapshots
            or self.price_snapshots
            or self.transactions
            or self.pairs
            or self.tokens
        )
