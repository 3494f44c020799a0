"""
Date and clock utilities.

This module centralises all date handling used by the simulation
clock.  Bars are daily, so every timestamp the engine works with is a
timezone-naive `pandas.Timestamp` normalised to midnight.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Union
import pandas as pd

DateLike = Union[str, date, datetime, pd.Timestamp]


def parse_date(value: DateLike) -> pd.Timestamp:
    """Parse a date-like value into a normalised, naive `pandas.Timestamp`.

    Timezone-aware inputs are converted to UTC before the timezone is
    dropped, so ``2024-01-02T23:30:00-05:00`` becomes ``2024-01-03``.
    """
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts.normalize()


def days_between(start: DateLike, end: DateLike) -> int:
    """Whole calendar days from `start` to `end` (negative if `end` is earlier)."""
    return int((parse_date(end) - parse_date(start)).days)


def format_date(ts: Optional[pd.Timestamp]) -> str:
    """Render a timestamp as ``YYYY-MM-DD`` (empty string for ``None``)."""
    if ts is None:
        return ""
    return parse_date(ts).strftime("%Y-%m-%d")


def to_iso(ts: Optional[pd.Timestamp]) -> Optional[str]:
    """Serialise a timestamp for the state file."""
    if ts is None:
        return None
    return pd.Timestamp(ts).isoformat()


def from_iso(value: Optional[str]) -> Optional[pd.Timestamp]:
    """Inverse of `to_iso()`."""
    if value is None or value == "":
        return None
    return pd.Timestamp(value)
