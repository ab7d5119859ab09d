"""Bucket alignment and rolling-window definitions.

All functions operate on absolute instants. Aware datetimes are normalised
to UTC before flooring and naive datetimes are taken to already be UTC, so
bucket boundaries never drift with the host timezone.

Examples::

    >>> floor_to_hour(datetime(2025, 3, 1, 14, 59, 59, tzinfo=timezone.utc))
    datetime.datetime(2025, 3, 1, 14, 0, tzinfo=datetime.timezone.utc)
    >>> [w.name for w in window_definitions()]
    ['1h', '24h', '7d', '30d', '1y']
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import NamedTuple

HOUR = timedelta(hours=1)


class WindowDefinition(NamedTuple):
    """A named trailing window measured in whole hours."""

    name: str
    hours: int

    @property
    def span(self) -> timedelta:
        return timedelta(hours=self.hours)


# Closed, ordered contract shared with every consumer of VolumePeriods.
VOLUME_WINDOWS: tuple[WindowDefinition, ...] = (
    WindowDefinition("1h", 1),
    WindowDefinition("24h", 24),
    WindowDefinition("7d", 24 * 7),
    WindowDefinition("30d", 24 * 30),
    WindowDefinition("1y", 24 * 365),
)

# Horizons used for token price change percentages.
PRICE_CHANGE_WINDOWS: tuple[WindowDefinition, ...] = VOLUME_WINDOWS[:4]


def ensure_utc(t: datetime) -> datetime:
    """Return *t* as an aware UTC datetime (naive input is taken as UTC)."""
    if t.tzinfo is None:
        return t.replace(tzinfo=timezone.utc)
    return t.astimezone(timezone.utc)


def floor_to_hour(t: datetime) -> datetime:
    """Zero minutes, seconds and microseconds of *t* in UTC.

    This is the HOURLY bucket key.
    """
    return ensure_utc(t).replace(minute=0, second=0, microsecond=0)


def window_definitions() -> tuple[WindowDefinition, ...]:
    """Return the fixed ordered list of rolling volume windows."""
    return VOLUME_WINDOWS


def is_same_hour(a: datetime, b: datetime) -> bool:
    """True when *a* and *b* fall in the same hourly bucket. Diagnostics only."""
    return floor_to_hour(a) == floor_to_hour(b)


def to_epoch_millis(t: datetime) -> int:
    """Milliseconds since the Unix epoch for *t*."""
    delta = ensure_utc(t) - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_millis(ms: int) -> datetime:
    """Aware UTC datetime for a millisecond Unix timestamp."""
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=ms)


def get_time_periods(
    anchor: datetime,
    windows: tuple[WindowDefinition, ...] = VOLUME_WINDOWS,
) -> dict[str, datetime]:
    """Map each window name to the instant ``anchor - window``.

    Args:
        anchor: Reference instant (usually the current block timestamp).
        windows: Window definitions to expand.

    Returns:
        Dict like ``{"1h": anchor - 1h, "24h": anchor - 24h, ...}``.
    """
    base = ensure_utc(anchor)
    return {w.name: base - w.span for w in windows}
