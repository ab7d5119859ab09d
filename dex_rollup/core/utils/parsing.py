"""Raw on-chain amount and timestamp parsing for inbound events.

Event payloads arrive from a JSON-speaking harness, so uint256 amounts may
be ints, decimal strings or ``0x`` hex strings, and timestamps may be aware
datetimes, ISO strings or epoch milliseconds. Anything that cannot be read
exactly raises ValueError: a malformed amount must never be coerced to zero.

Examples::

    >>> parse_raw_amount("1000000000000000000")
    1000000000000000000
    >>> parse_raw_amount("0xff")
    255
    >>> parse_raw_amount(1.5)
    Traceback (most recent call last):
    ...
    ValueError: Cannot parse 1.5 as a raw token amount (non-integral float)
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from .time_buckets import ensure_utc, from_epoch_millis

UINT256_MAX = 2**256 - 1


def parse_raw_amount(raw: object, field: str = "amount") -> int:
    """Parse a raw unsigned 256-bit token amount.

    Args:
        raw: The value to parse (int, decimal string, hex string or an
            integral float/Decimal).
        field: Field name used in error messages.

    Returns:
        The amount as a Python int in ``0..2**256-1``.

    Raises:
        ValueError: If the value is missing, non-integral, negative, out of
            range or not a number at all.
    """
    if raw is None:
        raise ValueError(f"Missing value for {field}")

    # bool is an int subclass; True is not a token amount
    if isinstance(raw, bool):
        raise ValueError(f"Cannot parse {raw!r} as a raw token amount ({field})")

    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float):
        if not raw.is_integer():
            raise ValueError(
                f"Cannot parse {raw!r} as a raw token amount (non-integral float)"
            )
        # Floats above 2**53 have already lost precision upstream
        if abs(raw) > 2**53:
            raise ValueError(
                f"Cannot parse {raw!r} as a raw token amount (float above 2**53)"
            )
        value = int(raw)
    elif isinstance(raw, Decimal):
        if raw != raw.to_integral_value():
            raise ValueError(f"Cannot parse {raw!r} as a raw token amount ({field})")
        value = int(raw)
    elif isinstance(raw, str):
        stripped = raw.strip().replace("_", "")
        if stripped == "":
            raise ValueError(f"Missing value for {field}")
        try:
            if stripped.lower().startswith("0x"):
                value = int(stripped, 16)
            else:
                value = int(stripped, 10)
        except ValueError:
            raise ValueError(
                f"Cannot parse '{raw}' as a raw token amount ({field})"
            ) from None
    else:
        raise ValueError(
            f"Cannot parse {type(raw).__name__} as a raw token amount ({field})"
        )

    if value < 0:
        raise ValueError(f"{field} must be non-negative, got {value}")
    if value > UINT256_MAX:
        raise ValueError(f"{field} exceeds uint256 range")
    return value


def parse_timestamp(raw: object, field: str = "timestamp") -> datetime:
    """Parse an event timestamp into an aware UTC datetime.

    Integers are epoch milliseconds (the block timestamp unit of the chain).

    Raises:
        ValueError: If the value is missing or cannot be read as an instant.
    """
    if raw is None or isinstance(raw, bool):
        raise ValueError(f"Missing value for {field}")
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    if isinstance(raw, int):
        if raw < 0:
            raise ValueError(f"{field} must be non-negative, got {raw}")
        return from_epoch_millis(raw)
    if isinstance(raw, str):
        stripped = raw.strip()
        if stripped.isdigit():
            return from_epoch_millis(int(stripped))
        try:
            return ensure_utc(datetime.fromisoformat(stripped.replace("Z", "+00:00")))
        except ValueError:
            raise ValueError(f"Cannot parse '{raw}' as a timestamp ({field})") from None
    raise ValueError(f"Cannot parse {type(raw).__name__} as a timestamp ({field})")
