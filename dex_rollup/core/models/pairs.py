"""Pair and Token tables.

Pairs are never deleted, only deactivated. Rolling-window volume columns
are written by the rollup engine from hourly snapshots and are never
edited by hand.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .types import Uint256, UsdAmount


class TokenRecord(Base):
    """ERC20-like token metadata plus the last derived USD price."""

    __tablename__ = "tokens"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    decimals: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    total_supply: Mapped[Optional[int]] = mapped_column(Uint256, nullable=True)
    price_usd: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    fdv: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class PairRecord(Base):
    """Constant-product pool state and its derived volume/TVL figures."""

    __tablename__ = "pairs"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    token0: Mapped[str] = mapped_column(String(128), ForeignKey("tokens.id"), nullable=False)
    token1: Mapped[str] = mapped_column(String(128), ForeignKey("tokens.id"), nullable=False)
    token0_symbol: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    token1_symbol: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reserve0: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    reserve1: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    total_supply: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    volume_usd: Mapped[Decimal] = mapped_column(UsdAmount, nullable=False, default=Decimal(0))
    volume_1h: Mapped[Decimal] = mapped_column(UsdAmount, nullable=False, default=Decimal(0))
    volume_24h: Mapped[Decimal] = mapped_column(UsdAmount, nullable=False, default=Decimal(0))
    volume_7d: Mapped[Decimal] = mapped_column(UsdAmount, nullable=False, default=Decimal(0))
    volume_30d: Mapped[Decimal] = mapped_column(UsdAmount, nullable=False, default=Decimal(0))
    volume_1y: Mapped[Decimal] = mapped_column(UsdAmount, nullable=False, default=Decimal(0))
    tvl_usd: Mapped[Decimal] = mapped_column(UsdAmount, nullable=False, default=Decimal(0))
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
