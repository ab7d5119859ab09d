"""Inbound pair events and their validation.

The event harness delivers plain mappings decoded from the pair contract's
``Swap``, ``LiquidityAdded`` and ``LiquidityRemoved`` events, enriched with
block metadata and (optionally) the pool reserves after the event. They are
validated into an immutable :class:`PairEvent`; anything missing or
unparseable is rejected with :class:`MalformedEventError` and never coerced
to zero.

Exception hierarchy:
- EventError: base for all event application errors
- MalformedEventError: missing or unparseable fields
- UnknownPairError: event references a pair that was never registered
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Mapping, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)

from dex_rollup.core.enums import EventKind
from dex_rollup.core.utils.parsing import parse_raw_amount, parse_timestamp


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------
class EventError(Exception):
    """Base exception for events that cannot be applied."""

    def __init__(self, message: str, event_id: Optional[str] = None):
        self.event_id = event_id
        super().__init__(message)


class MalformedEventError(EventError):
    """Raised when an event has missing or unparseable fields."""


class UnknownPairError(EventError):
    """Raised when an event references a pair that is not registered."""


# ---------------------------------------------------------------------------
# Field types
# ---------------------------------------------------------------------------
def _optional_amount(value: Any) -> Optional[int]:
    if value is None:
        return None
    return parse_raw_amount(value)


RawAmount = Annotated[Optional[int], BeforeValidator(_optional_amount)]
EventTimestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]


def _event_kind(value: Any) -> EventKind:
    if isinstance(value, EventKind):
        return value
    try:
        return EventKind(value)
    except ValueError:
        raise ValueError(f"Unknown event kind {value!r}") from None


Kind = Annotated[EventKind, BeforeValidator(_event_kind)]

_SWAP_FIELDS = ("amount_in", "amount_out")
_LIQUIDITY_FIELDS = ("amount_a", "amount_b", "liquidity")


class PairEvent(BaseModel):
    """One validated trade or liquidity event of a pair.

    Swaps carry ``amount_in``/``amount_out`` and a direction, either
    ``is_token0_to_token1`` or an explicit ``token_in``. Liquidity events
    carry ``amount_a``/``amount_b`` (token0/token1 legs) and the LP
    ``liquidity`` minted or burned. ``reserve0``/``reserve1`` are the pool
    reserves after the event; both or neither must be present.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    pair_id: str = Field(min_length=1, validation_alias=AliasChoices("pair_id", "pairId", "pair"))
    block_number: int = Field(ge=0, validation_alias=AliasChoices("block_number", "blockNumber"))
    timestamp: EventTimestamp
    kind: Kind = Field(validation_alias=AliasChoices("kind", "method", "type"))
    user: str = Field(default="", validation_alias=AliasChoices("user", "user_id", "userId"))
    log_index: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("log_index", "logIndex")
    )

    amount_in: RawAmount = None
    amount_out: RawAmount = None
    is_token0_to_token1: Optional[bool] = None
    token_in: Optional[str] = None

    amount_a: RawAmount = None
    amount_b: RawAmount = None
    liquidity: RawAmount = None

    reserve0: RawAmount = None
    reserve1: RawAmount = None

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        # Stable id from block number and log index when the harness omits it
        if isinstance(data, Mapping) and not data.get("id"):
            block = data.get("block_number", data.get("blockNumber"))
            index = data.get("log_index", data.get("logIndex"))
            if block is not None and index is not None:
                data = {**data, "id": f"{block}-{index}"}
        return data

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "PairEvent":
        required = _SWAP_FIELDS if self.kind is EventKind.SWAP else _LIQUIDITY_FIELDS
        missing = [name for name in required if getattr(self, name) is None]
        if missing:
            raise ValueError(f"{self.kind.value} event is missing {', '.join(missing)}")
        if (
            self.kind is EventKind.SWAP
            and self.is_token0_to_token1 is None
            and self.token_in is None
        ):
            raise ValueError("Swap event needs is_token0_to_token1 or token_in")
        if (self.reserve0 is None) != (self.reserve1 is None):
            raise ValueError("reserve0 and reserve1 must be given together")
        return self

    @property
    def has_reserves(self) -> bool:
        return self.reserve0 is not None and self.reserve1 is not None


def parse_event(raw: Mapping[str, Any] | PairEvent) -> PairEvent:
    """Validate a raw event mapping into a :class:`PairEvent`.

    Raises:
        MalformedEventError: With every validation problem in the message.
    """
    if isinstance(raw, PairEvent):
        return raw
    event_id = raw.get("id") if isinstance(raw, Mapping) else None
    try:
        return PairEvent.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'event'}: {err['msg']}"
            for err in exc.errors()
        )
        raise MalformedEventError(
            f"Malformed event {event_id or '<no id>'}: {problems}",
            event_id=str(event_id) if event_id else None,
        ) from exc
