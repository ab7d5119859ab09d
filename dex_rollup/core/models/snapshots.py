"""Hourly pair volume snapshots and append-only token price snapshots.

Volume snapshots are keyed by the composite id
``pair:interval:bucket_start_epoch_ms`` and upserted with their full
running totals. Price snapshots (``token:block``) are insert-only.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .types import UsdAmount


class PairVolumeSnapshotRecord(Base):
    """Running volume aggregate of one pair for one hourly bucket."""

    __tablename__ = "pair_volume_snapshots"
    __table_args__ = (
        UniqueConstraint("pair_id", "interval", "timestamp", name="uq_pair_volume_snapshots_bucket"),
        Index("ix_pair_volume_snapshots_pair_ts", "pair_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    pair_id: Mapped[str] = mapped_column(String(128), ForeignKey("pairs.id"), nullable=False)
    interval: Mapped[str] = mapped_column(String(16), nullable=False)
    volume_usd: Mapped[Decimal] = mapped_column(UsdAmount, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TokenPriceSnapshotRecord(Base):
    """One price observation of a token with its period changes."""

    __tablename__ = "token_price_snapshots"
    __table_args__ = (
        Index("ix_token_price_snapshots_token_ts", "token_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    token_id: Mapped[str] = mapped_column(String(128), ForeignKey("tokens.id"), nullable=False)
    price_usd: Mapped[Decimal] = mapped_column(UsdAmount, nullable=False)
    fdv: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    change_1h: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    change_24h: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    change_7d: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    change_30d: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
