"""
Price series containers.

An `Asset` wraps a pandas DataFrame of daily OHLCV bars for one ticker,
indexed by a normalised `DatetimeIndex` named ``date``.  Dates are kept
strictly increasing and unique.  `Assets` groups the series a strategy
trades.

The simulation never hands a strategy the full series: it hands out
*windows* taken at a given date and event (`Asset.window()`), which
contain only the bars known at that moment.  A window taken at the
Open event shows the session's fresh bar reduced to its open price.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union
import math
import pandas as pd

from ..execution.errors import ConfigurationError, DataUnavailableError
from ..execution.models import Event
from ..utils.money import to_decimal
from ..utils.timeutils import DateLike, parse_date

COLUMNS = ["open", "high", "low", "close", "volume"]


@dataclass
class Ohlc:
    """One bar of a price series."""
    date: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date,
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume,
        }

    def __str__(self) -> str:
        return f"O: {self.open}; H: {self.high}; L: {self.low}; C: {self.close}"


def validate_and_sort(frame: pd.DataFrame, ticker: str = "") -> pd.DataFrame:
    """Return a clean copy of `frame` that satisfies the series invariants.

    The date is taken from a ``date`` column when present, otherwise from
    the index.  Rows without a close are dropped, duplicate dates keep the
    last record and the result is sorted by date.  A missing ``volume``
    column is filled with zeros.

    Raises
    ------
    ValueError
        If one of the price columns is missing.
    """
    df = frame.copy()
    df.columns = [str(c).strip().lower() for c in df.columns]
    if "date" in df.columns:
        df = df.set_index("date")
    missing = [c for c in ("open", "high", "low", "close") if c not in df.columns]
    if missing:
        raise ValueError(f"Price series {ticker} is missing columns: {missing}")
    if "volume" not in df.columns:
        df["volume"] = 0.0
    df = df[COLUMNS].apply(pd.to_numeric, errors="coerce").astype(float)
    index = pd.to_datetime(df.index)
    if index.tz is not None:
        index = index.tz_convert("UTC").tz_localize(None)
    df.index = pd.DatetimeIndex(index.normalize(), name="date")
    df = df[df["close"].notna()]
    df = df[~df.index.duplicated(keep="last")]
    return df.sort_index()


def _empty_frame() -> pd.DataFrame:
    return pd.DataFrame(columns=COLUMNS, dtype=float, index=pd.DatetimeIndex([], name="date"))


def _bar(ts: pd.Timestamp, row: pd.Series) -> Ohlc:
    return Ohlc(
        date=ts,
        open=float(row["open"]),
        high=float(row["high"]),
        low=float(row["low"]),
        close=float(row["close"]),
        volume=float(row["volume"]),
    )


class Asset:
    """Date-indexed OHLCV series for one ticker.

    Parameters
    ----------
    ticker : str
        Instrument symbol.
    frame : pandas.DataFrame, optional
        Bars with ``open``, ``high``, ``low``, ``close`` and optionally
        ``volume`` columns; the date comes from the index or a ``date``
        column.
    exchange : str
        Exchange code passed to quote sources when refreshing.
    path : str, optional
        Where the asset store persists this series.
    """

    def __init__(
        self,
        ticker: str,
        frame: Optional[pd.DataFrame] = None,
        exchange: str = "",
        path: Optional[str] = None,
    ) -> None:
        self.ticker = ticker
        self.exchange = exchange
        self.path = path
        self.event: Optional[Event] = None
        self.fresh = False
        self._frame = _empty_frame() if frame is None or frame.empty else validate_and_sort(frame, ticker)

    @classmethod
    def from_records(
        cls,
        ticker: str,
        records: Iterable[Union[Ohlc, Mapping[str, Any]]],
        exchange: str = "",
        path: Optional[str] = None,
    ) -> "Asset":
        rows = [r.to_dict() if isinstance(r, Ohlc) else dict(r) for r in records]
        frame = pd.DataFrame(rows) if rows else None
        return cls(ticker, frame, exchange=exchange, path=path)

    @classmethod
    def _view(cls, source: "Asset", frame: pd.DataFrame, event: Optional[Event], fresh: bool) -> "Asset":
        asset = cls.__new__(cls)
        asset.ticker = source.ticker
        asset.exchange = source.exchange
        asset.path = source.path
        asset.event = event
        asset.fresh = fresh
        asset._frame = frame
        return asset

    @property
    def frame(self) -> pd.DataFrame:
        """The underlying bars.  Treat as read-only."""
        return self._frame

    def __len__(self) -> int:
        return len(self._frame)

    def count(self) -> int:
        return len(self._frame)

    def is_loaded(self) -> bool:
        return not self._frame.empty

    def has_values(self, min_length: int) -> bool:
        return len(self._frame) >= min_length and self.is_loaded()

    def first_date(self) -> Optional[pd.Timestamp]:
        return None if self._frame.empty else self._frame.index[0]

    def last_date(self) -> Optional[pd.Timestamp]:
        return None if self._frame.empty else self._frame.index[-1]

    def opens(self) -> pd.Series:
        return self._frame["open"]

    def highs(self) -> pd.Series:
        return self._frame["high"]

    def lows(self) -> pd.Series:
        return self._frame["low"]

    def closes(self) -> pd.Series:
        return self._frame["close"]

    def volumes(self) -> pd.Series:
        return self._frame["volume"]

    def latest(self) -> Optional[Ohlc]:
        if self._frame.empty:
            return None
        return _bar(self._frame.index[-1], self._frame.iloc[-1])

    def bar_at(self, when: DateLike) -> Ohlc:
        """Return the bar dated `when`.

        Raises
        ------
        DataUnavailableError
            If the series has no bar on that date.
        """
        ts = parse_date(when)
        if ts not in self._frame.index:
            raise DataUnavailableError(f"No bar for {self.ticker} on {ts.date()}")
        return _bar(ts, self._frame.loc[ts])

    def has_bar_between(self, after: Optional[pd.Timestamp], until: pd.Timestamp) -> bool:
        """True if a bar is dated in the half-open interval ``(after, until]``."""
        idx = self._frame.index
        end = idx.searchsorted(until, side="right")
        start = 0 if after is None else idx.searchsorted(after, side="right")
        return end > start

    def current_value(self) -> Optional[Decimal]:
        """Latest known price of the window as a Decimal.

        For a window taken at the Open event whose last bar is the
        session's fresh bar this is that bar's open; otherwise it is the
        last close.  ``None`` when there is no usable price.
        """
        if self._frame.empty:
            return None
        column = "open" if self.event is Event.OPEN and self.fresh else "close"
        value = float(self._frame[column].iloc[-1])
        if math.isnan(value):
            return None
        return to_decimal(value)

    def window(
        self,
        until: DateLike,
        event: Event,
        since: Optional[DateLike] = None,
        fresh_after: Optional[DateLike] = None,
    ) -> "Asset":
        """Bars known at `event` on `until`, optionally starting at `since`.

        The last bar is the session's *fresh* bar when it is dated after
        `fresh_after` (by default the day before `until`).  At the Open
        event the fresh bar only exposes its open: high, low and close
        are set to the open and volume to NaN.
        """
        until_ts = parse_date(until)
        idx = self._frame.index
        end = idx.searchsorted(until_ts, side="right")
        start = 0 if since is None else idx.searchsorted(parse_date(since), side="left")
        view = self._frame.iloc[start:end]

        boundary = until_ts - pd.Timedelta(days=1) if fresh_after is None else parse_date(fresh_after)
        fresh = not view.empty and view.index[-1] > boundary
        if event is Event.OPEN and fresh:
            view = view.copy()
            last = view.index[-1]
            open_price = view.at[last, "open"]
            view.loc[last, ["high", "low", "close"]] = open_price
            view.at[last, "volume"] = float("nan")
        return Asset._view(self, view, event, fresh)

    def append(self, bars: Iterable[Union[Ohlc, Mapping[str, Any]]]) -> int:
        """Append bars newer than the last known date; return how many were added."""
        rows = [b.to_dict() if isinstance(b, Ohlc) else dict(b) for b in bars]
        if not rows:
            return 0
        incoming = validate_and_sort(pd.DataFrame(rows), self.ticker)
        last = self.last_date()
        if last is not None:
            incoming = incoming[incoming.index > last]
        if incoming.empty:
            return 0
        combined = incoming if self._frame.empty else pd.concat([self._frame, incoming])
        self._frame = validate_and_sort(combined, self.ticker)
        return len(incoming)

    def __repr__(self) -> str:
        return f"Asset({self.ticker!r}, bars={len(self)}, last={self.last_date()})"


class Assets:
    """The set of series a strategy trades, keyed by ticker."""

    def __init__(self, assets: Optional[Iterable[Asset]] = None) -> None:
        self._assets: Dict[str, Asset] = {}
        for asset in assets or []:
            self.add_asset(asset)

    def add_asset(self, asset: Asset, replace: bool = False) -> None:
        if asset.ticker in self._assets and not replace:
            raise ConfigurationError(f"This asset is already loaded: {asset.ticker}")
        self._assets[asset.ticker] = asset

    def get_asset(self, ticker: str) -> Optional[Asset]:
        return self._assets.get(ticker)

    def get_assets(self) -> Dict[str, Asset]:
        return dict(self._assets)

    def get_current_value(self, ticker: str) -> Optional[Decimal]:
        asset = self._assets.get(ticker)
        return None if asset is None else asset.current_value()

    @property
    def tickers(self) -> List[str]:
        return list(self._assets)

    def is_empty(self) -> bool:
        return not self._assets

    def __len__(self) -> int:
        return len(self._assets)

    def __iter__(self) -> Iterator[Asset]:
        return iter(self._assets.values())

    def __contains__(self, ticker: object) -> bool:
        return ticker in self._assets

    def last_date(self) -> Optional[pd.Timestamp]:
        dates = [a.last_date() for a in self._assets.values() if a.is_loaded()]
        return max(dates) if dates else None

    def has_bar_between(self, after: Optional[pd.Timestamp], until: pd.Timestamp) -> bool:
        return any(a.has_bar_between(after, until) for a in self._assets.values())

    def window(
        self,
        until: DateLike,
        event: Event,
        since: Optional[DateLike] = None,
        fresh_after: Optional[DateLike] = None,
    ) -> "Assets":
        limited = Assets()
        for asset in self._assets.values():
            limited.add_asset(asset.window(until, event, since=since, fresh_after=fresh_after))
        return limited
