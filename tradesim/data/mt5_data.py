"""
MetaTrader 5 quote source.

This module wraps the `MetaTrader5` Python package to fetch the latest
daily bars for live runs.  If the package is not installed or
initialisation fails, the code raises a clear exception.  Users can
skip installing MetaTrader5 when running offline backtests.
"""

from __future__ import annotations

import logging
from typing import List
import pandas as pd

from ..config.schema import MT5Config
from .asset import Ohlc

# Attempt to import MetaTrader5.  If unavailable, mt5 will be None.
try:
    import MetaTrader5 as mt5  # type: ignore
except ImportError:
    mt5 = None  # Will be checked at runtime

logger = logging.getLogger(__name__)

# Interval names used by the live engine mapped to MT5 timeframe names.
INTERVALS = {
    '1D': 'D1',
    '1W': 'W1',
    '1M': 'MN1',
}


class MT5QuoteSource:
    """Handle connection to MetaTrader 5 and retrieval of recent bars.

    The terminal is initialised lazily on the first request, so a
    source can be constructed without the package installed.
    """

    def __init__(self, config: MT5Config) -> None:
        self.config = config
        self._connected = False

    def connect(self) -> None:
        """Initialise the MetaTrader 5 terminal.

        Raises
        ------
        RuntimeError
            If the MetaTrader5 package is not installed or initialisation fails.
        """
        if mt5 is None:
            raise RuntimeError(
                "MetaTrader5 package is not installed.  Install it with 'pip install MetaTrader5' to refresh live data."
            )
        kwargs = {}
        if self.config.path:
            kwargs['path'] = self.config.path
        if self.config.login:
            kwargs.update(login=self.config.login, password=self.config.password, server=self.config.server)
        if not mt5.initialize(**kwargs):
            raise RuntimeError(f"MT5 initialisation failed: {mt5.last_error()}")
        self._connected = True

    def shutdown(self) -> None:
        """Shutdown the MT5 connection if it was opened."""
        if mt5 and self._connected:
            mt5.shutdown()
            self._connected = False

    def _get_mt5_timeframe(self, interval: str) -> int:
        """Map an interval string to the MetaTrader5 timeframe constant."""
        if mt5 is None:
            raise RuntimeError("MetaTrader5 package is not installed.")
        name = INTERVALS.get(interval.upper())
        if name is None:
            raise ValueError(f"Unsupported interval for MT5: {interval}")
        return getattr(mt5, f"TIMEFRAME_{name}")

    def get_quotes(self, symbol: str, exchange: str, interval: str = "1D", bar_count: int = 10) -> List[Ohlc]:
        """Return the last `bar_count` bars of `symbol`, oldest first.

        Parameters
        ----------
        symbol : str
            Instrument symbol as known by the broker.
        exchange : str
            Unused by MT5; symbols are unique per terminal.
        interval : str
            ``1D``, ``1W`` or ``1M``.
        bar_count : int
            Number of most recent bars to fetch, including the current one.

        Returns
        -------
        list of Ohlc
            Bars dated at the session date (UTC).  Empty when the
            terminal has no data for the symbol.
        """
        if not self._connected:
            self.connect()
        tf = self._get_mt5_timeframe(interval)
        if not mt5.symbol_select(symbol, True):
            logger.warning("Symbol %s is not available in the MT5 terminal (exchange %s)", symbol, exchange)
        rates = mt5.copy_rates_from_pos(symbol, tf, 0, int(bar_count))
        if rates is None or len(rates) == 0:
            logger.warning("No rates for %s: %s", symbol, mt5.last_error())
            return []
        df = pd.DataFrame(rates)
        df['time'] = pd.to_datetime(df['time'], unit='s', utc=True).dt.tz_localize(None).dt.normalize()
        df = df.sort_values('time')
        volume = df['real_volume'] if 'real_volume' in df.columns and df['real_volume'].any() else df['tick_volume']
        return [
            Ohlc(
                date=row.time,
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(vol),
            )
            for row, vol in zip(df.itertuples(index=False), volume)
        ]
