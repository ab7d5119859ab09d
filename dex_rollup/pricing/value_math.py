"""Unit conversion and valuation functions for pair pricing.

Pure computation module -- no DB or I/O. All functions are stateless.

Raw on-chain amounts are Python ints (up to uint256), and every conversion to
a human-readable or USD figure is done in Decimal under a 100-digit context,
so a 78-digit reserve survives division by ``10**decimals`` exactly.
Degenerate inputs resolve to a defined value (0 or None) instead of raising:
these functions sit on the display path.
"""

from __future__ import annotations

from decimal import Context, Decimal
from typing import Optional, Union

from dex_rollup.core.records import ZERO, Pair, Token

Number = Union[int, float, Decimal, str]

# 2**256 has 78 digits; leave headroom for the product with a price.
_CTX = Context(prec=100)
_HUNDRED = Decimal(100)

MAX_DECIMALS = 255

STABLECOINS = frozenset({"WUSDC", "WUSDT", "USDC", "USDT"})

# High-liquidity tokens trusted as a price reference for one-hop pricing.
WHITELISTED_BASE_TOKENS = frozenset(
    {
        "WVARA", "VARA",
        "WETH", "ETH",
        "WBTC", "BTC",
        "WUSDC", "WUSDT", "USDC", "USDT",
    }
)


def to_decimal(value: Number) -> Decimal:
    """Coerce a price-like value to Decimal without binary float noise.

    Floats go through ``repr`` so ``1.1`` becomes ``Decimal("1.1")``.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def _valid_decimals(decimals: object) -> bool:
    return (
        isinstance(decimals, int)
        and not isinstance(decimals, bool)
        and 0 <= decimals <= MAX_DECIMALS
    )


def to_human_amount(raw_amount: int, decimals: int) -> Decimal:
    """Convert a raw token amount to human units: ``raw / 10**decimals``.

    Args:
        raw_amount: Raw integer amount as stored on chain.
        decimals: Token decimals (0-255).

    Returns:
        The human-readable amount. ``Decimal(0)`` if *decimals* is outside
        the valid range.
    """
    if not _valid_decimals(decimals):
        return ZERO
    return Decimal(raw_amount).scaleb(-decimals, _CTX)


def usd_value(raw_amount: int, decimals: int, price_usd: Number) -> Decimal:
    """USD value of a raw token amount at *price_usd* per human unit."""
    return _CTX.multiply(to_human_amount(raw_amount, decimals), to_decimal(price_usd))


def spot_price_from_reserves(
    reserve_token: int,
    reserve_other: int,
    decimals_token: int,
    decimals_other: int,
) -> Decimal:
    """Constant-product spot price of one token in units of the other.

    Formula: ``(reserve_other / 10**decimals_other) / (reserve_token / 10**decimals_token)``.
    This is the mid price with no fee and no price impact.

    Returns:
        The spot price, or ``Decimal(0)`` when either reserve is 0 or either
        decimals value is invalid (a degenerate pool has no price).
    """
    if reserve_token == 0 or reserve_other == 0:
        return ZERO
    human_token = to_human_amount(reserve_token, decimals_token)
    human_other = to_human_amount(reserve_other, decimals_other)
    if human_token == 0 or human_other == 0:
        return ZERO
    return _CTX.divide(human_other, human_token)


def derived_price_usd(spot_price: Number, reference_price_usd: Number) -> Decimal:
    """USD price from a spot price quoted in a reference token of known USD price."""
    return _CTX.multiply(to_decimal(spot_price), to_decimal(reference_price_usd))


def fdv(
    total_supply: Optional[int],
    decimals: int,
    price_usd: Number,
) -> Optional[Decimal]:
    """Fully diluted valuation: whole supply valued at *price_usd*.

    Returns:
        None when the total supply is unknown.
    """
    if total_supply is None:
        return None
    return usd_value(total_supply, decimals, price_usd)


def percent_change(
    current: Number,
    previous: Optional[Number],
) -> Optional[Decimal]:
    """Percentage change from *previous* to *current*.

    Returns:
        ``(current - previous) / previous * 100``, or None when there is no
        usable baseline (previous is None or zero).
    """
    if previous is None:
        return None
    prev = to_decimal(previous)
    if prev == 0:
        return None
    cur = to_decimal(current)
    return _CTX.multiply(_CTX.divide(_CTX.subtract(cur, prev), prev), _HUNDRED)


def is_stablecoin(symbol: Optional[str]) -> bool:
    """True if *symbol* is a known USD stablecoin (case-insensitive)."""
    if not symbol:
        return False
    return symbol.upper() in STABLECOINS


def is_whitelisted_base_token(symbol: Optional[str]) -> bool:
    """True if *symbol* may serve as a price reference for derived pricing."""
    if not symbol:
        return False
    return symbol.upper() in WHITELISTED_BASE_TOKENS


def pair_tvl_usd(pair: Pair, token0: Token, token1: Token) -> Decimal:
    """Total value locked in *pair* in USD.

    Returns:
        Sum of both reserves in USD, or ``Decimal(0)`` while either token
        has no known price.
    """
    if token0.price_usd is None or token1.price_usd is None:
        return ZERO
    reserve0_usd = usd_value(pair.reserve0, token0.decimals, token0.price_usd)
    reserve1_usd = usd_value(pair.reserve1, token1.decimals, token1.price_usd)
    return reserve0_usd + reserve1_usd
