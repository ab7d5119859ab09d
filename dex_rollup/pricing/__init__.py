"""Price and value math -- pure Decimal conversions for pair valuation."""

from dex_rollup.pricing.value_math import (
    derived_price_usd,
    fdv,
    is_stablecoin,
    is_whitelisted_base_token,
    pair_tvl_usd,
    percent_change,
    spot_price_from_reserves,
    to_decimal,
    to_human_amount,
    usd_value,
)

__all__ = [
    "derived_price_usd",
    "fdv",
    "is_stablecoin",
    "is_whitelisted_base_token",
    "pair_tvl_usd",
    "percent_change",
    "spot_price_from_reserves",
    "to_decimal",
    "to_human_amount",
    "usd_value",
]
