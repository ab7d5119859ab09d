"""Write-once transaction log and the indexer progress marker."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .types import Uint256, UsdAmount


class TransactionRecord(Base):
    """Audit record of a single applied pair event."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_pair_block", "pair_id", "block_number"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    pair_id: Mapped[str] = mapped_column(String(128), ForeignKey("pairs.id"), nullable=False)
    user: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    amount_a: Mapped[Optional[int]] = mapped_column(Uint256, nullable=True)
    amount_b: Mapped[Optional[int]] = mapped_column(Uint256, nullable=True)
    liquidity: Mapped[Optional[int]] = mapped_column(Uint256, nullable=True)
    amount_in: Mapped[Optional[int]] = mapped_column(Uint256, nullable=True)
    amount_out: Mapped[Optional[int]] = mapped_column(Uint256, nullable=True)
    token_in: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    token_out: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    amount_a_usd: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    amount_b_usd: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    amount_in_usd: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    amount_out_usd: Mapped[Optional[Decimal]] = mapped_column(UsdAmount, nullable=True)
    value_usd: Mapped[Decimal] = mapped_column(UsdAmount, nullable=False)


class IndexerStateRecord(Base):
    """Highest block whose batch was committed, one row per indexer."""

    __tablename__ = "indexer_state"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_committed_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
