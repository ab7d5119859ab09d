"""Shared enumerations used across records, models, and ingestion.

All enums use the (str, Enum) mixin pattern so their values are
serializable strings, compatible with database storage and JSON output.
"""

from enum import Enum


class VolumeInterval(str, Enum):
    """Width of a volume snapshot bucket. Only HOURLY is produced."""

    HOURLY = "HOURLY"


class TransactionType(str, Enum):
    """Kind of applied pair event, as stored in the transaction log."""

    SWAP = "SWAP"
    ADD_LIQUIDITY = "ADD_LIQUIDITY"
    REMOVE_LIQUIDITY = "REMOVE_LIQUIDITY"


class EventKind(str, Enum):
    """Inbound event kind as delivered by the event harness.

    The pair contract names its liquidity events ``LiquidityAdded`` and
    ``LiquidityRemoved``; both spellings are accepted.
    """

    SWAP = "Swap"
    ADD_LIQUIDITY = "AddLiquidity"
    REMOVE_LIQUIDITY = "RemoveLiquidity"

    @classmethod
    def _missing_(cls, value: object) -> "EventKind | None":
        aliases = {
            "liquidityadded": cls.ADD_LIQUIDITY,
            "liquidityremoved": cls.REMOVE_LIQUIDITY,
            "swap": cls.SWAP,
            "addliquidity": cls.ADD_LIQUIDITY,
            "removeliquidity": cls.REMOVE_LIQUIDITY,
        }
        if isinstance(value, str):
            return aliases.get(value.replace("_", "").lower())
        return None

    @property
    def transaction_type(self) -> TransactionType:
        """Map the inbound kind to the stored transaction type."""
        return {
            EventKind.SWAP: TransactionType.SWAP,
            EventKind.ADD_LIQUIDITY: TransactionType.ADD_LIQUIDITY,
            EventKind.REMOVE_LIQUIDITY: TransactionType.REMOVE_LIQUIDITY,
        }[self]


class PriceSnapshotCadence(str, Enum):
    """How often a token price snapshot is recorded."""

    BLOCK = "block"
    HOURLY = "hourly"
