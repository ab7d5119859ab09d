"""SQLAlchemy 2.0 ORM models for the DEX rollup engine.

Re-exports Base and the 6 model classes:
  - 2 entity tables: TokenRecord, PairRecord
  - 2 snapshot tables: PairVolumeSnapshotRecord, TokenPriceSnapshotRecord
  - TransactionRecord (write-once event log)
  - IndexerStateRecord (last committed block height)
"""

from .base import Base
from .pairs import PairRecord, TokenRecord
from .snapshots import PairVolumeSnapshotRecord, TokenPriceSnapshotRecord
from .transactions import IndexerStateRecord, TransactionRecord

__all__ = [
    "Base",
    "IndexerStateRecord",
    "PairRecord",
    "PairVolumeSnapshotRecord",
    "TokenPriceSnapshotRecord",
    "TokenRecord",
    "TransactionRecord",
]
