"""
SMA baseline strategy.

This module implements a simple trend-following strategy around a
simple moving average (SMA) of the daily closes:

* At the close, if no position is open, every ticker's SMA slope is
  compared (latest SMA minus the previous one).  The ticker with the
  steepest rising SMA is bought at the next open, provided its close is
  above its SMA.
* While a position is open, a close below the held ticker's SMA flags
  an exit at the next open.
* Whatever is still open when the backtest ends is liquidated.

Decisions are taken on the close and executed on the following open,
so the strategy handles both events.  The pending decision is part of
the live state, because the close and the next open run in separate
process invocations.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
import pandas as pd

from ..data.asset import Assets
from ..execution.models import Side
from .base import BaseStrategy
from .registry import register_strategy

MIN_SLOPE = 0.00001


def compute_sma(closes: pd.Series, length: int) -> pd.Series:
    """Simple moving average; the first ``length - 1`` values are NaN."""
    return closes.rolling(window=length, min_periods=length).mean()


@register_strategy("sma_baseline")
class SmaBaselineStrategy(BaseStrategy):
    """Long-only SMA baseline: enter above a rising SMA, exit below it."""

    strategy_name = "SMA Baseline Strategy"
    HANDLES_OPEN = True
    HANDLES_CLOSE = True
    default_parameters: Dict[str, Any] = {'length': 30}

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.buy_ticker: Optional[str] = None
        self.close_flag = False
        self.open_comment = ""
        self.close_comment = ""

    @property
    def length(self) -> int:
        return int(self.parameters['length'])

    def max_lookback_period(self) -> int:
        return self.length

    def _log(self, message: str) -> None:
        if self.live:
            self.logger.info(message)
            if self.notifier is not None:
                self.notifier.notify_info(message)
        else:
            self.logger.debug(message)

    def on_open(self, assets: Assets, date: pd.Timestamp) -> None:
        super().on_open(assets, date)

        if self.close_flag:
            self.close_all(self.close_comment)
            self.close_flag = False
            self.close_comment = ""
        if self.buy_ticker:
            self.entry(Side.LONG, self.buy_ticker, comment=self.open_comment)
            self.buy_ticker = None
            self.open_comment = ""

    def on_close(self, assets: Assets, date: pd.Timestamp) -> None:
        super().on_close(assets, date)

        sma_values: Dict[str, pd.Series] = {}
        for ticker in self.get_tickers() or assets.tickers:
            asset = assets.get_asset(ticker)
            if asset is None or asset.count() < self.length:
                count = 0 if asset is None else asset.count()
                self._log(f"[{ticker}] Not enough history ({count} vs {self.length}), skipping...")
                return
            sma = compute_sma(asset.closes(), self.length).dropna()
            if len(sma) < 2:
                self._log(f"[{ticker}] Not enough SMA data ({len(sma)} vs 2), skipping...")
                return
            sma_values[ticker] = sma
            self._log(f"[{ticker}] SMA: {sma.iloc[-1]:.2f} vs price: {asset.current_value():.2f}")

        if self.has_open_trades():
            self._look_for_exit(assets, sma_values)
        else:
            self._look_for_entry(assets, sma_values)

    def _look_for_exit(self, assets: Assets, sma_values: Dict[str, pd.Series]) -> None:
        position = next(iter(self.get_open_trades().values()))
        ticker = position.ticker
        if ticker not in sma_values:
            return
        price = float(assets.get_current_value(ticker))
        sma = float(sma_values[ticker].iloc[-1])
        if price < sma:
            self.close_flag = True
            self.close_comment = f"Baseline stop, SMA: {sma:.4f} vs. price: {price:.4f}"
            if self.live and self.notifier is not None:
                self.notifier.add_summary(f"Action: on open CLOSE {ticker}")
                self.notifier.add_summary(self.close_comment)
            self._log(f"[{ticker}] --== Want to sell ==-- {self.close_comment}")

    def _look_for_entry(self, assets: Assets, sma_values: Dict[str, pd.Series]) -> None:
        best_ticker: Optional[str] = None
        best_slope = 0.0
        for ticker, sma in sma_values.items():
            slope = float(sma.iloc[-1] - sma.iloc[-2])
            if slope > MIN_SLOPE and (best_ticker is None or slope > best_slope):
                best_ticker = ticker
                best_slope = slope
        if best_ticker is None:
            return

        price = float(assets.get_current_value(best_ticker))
        sma = float(sma_values[best_ticker].iloc[-1])
        if price > sma:
            self.buy_ticker = best_ticker
            self.open_comment = f"SMA Diff: {best_slope:.1f}"
            if self.live and self.notifier is not None:
                self.notifier.add_summary(f"Action: on open BUY {best_ticker}")
                self.notifier.add_summary(f"SMA: {sma:.4f} vs. price: {price:.4f}")
            self._log(f"[{best_ticker}] --== Want to buy ==-- SMA: {sma:.4f} vs. price: {price:.4f}")

    def on_strategy_end(self, assets: Assets, date: pd.Timestamp) -> None:
        super().on_strategy_end(assets, date)
        self.close_all("Strategy end")

    def export_strategy_state(self) -> Dict[str, Any]:
        return {
            'buy_ticker': self.buy_ticker,
            'close_flag': self.close_flag,
            'open_comment': self.open_comment,
            'close_comment': self.close_comment,
        }

    def import_strategy_state(self, state: Dict[str, Any]) -> None:
        self.buy_ticker = state.get('buy_ticker') or None
        self.close_flag = bool(state.get('close_flag', False))
        self.open_comment = str(state.get('open_comment') or "")
        self.close_comment = str(state.get('close_comment') or "")
