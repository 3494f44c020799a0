"""
Backtest execution engine.

This module contains the `Backtester` class which steps a calendar
clock across a date range, hands the strategy windows of the price
series that contain only what was known at each moment, and invokes
the strategy hooks in a fixed order.  The same pass can be repeated
over a cartesian grid of strategy parameters (optimization); every
grid point runs on its own copy of the strategy and the completed
runs are collected for side-by-side reporting.

Per dispatched step the order is:

1. ``on_open`` with the Open window (today's bar reduced to its open),
2. ``on_close`` with the Close window (today's full bar),
3. open positions record the bar (drawdown, bars held).

After the last step ``on_strategy_end`` runs exactly once.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union
import pandas as pd

from ..data.asset import Asset, Assets
from ..execution.errors import BacktestError, ConfigurationError
from ..execution.models import Event, Resolution
from ..reporting.metrics import TradeStats, compute_trade_stats
from ..strategy.base import BaseStrategy
from ..utils.money import to_decimal
from ..utils.timeutils import DateLike, format_date, parse_date

Number = Union[int, float]


class RunState(str, Enum):
    NOT_STARTED = "not_started"
    STEPPING = "stepping"
    ENDED = "ended"


@dataclass
class OptimizationParam:
    """Range of values for one strategy parameter, both ends inclusive."""
    name: str
    start: Number
    stop: Number
    step: Number

    def values(self) -> List[Number]:
        """Grid values computed in Decimal so that float steps do not drift.

        Raises
        ------
        ConfigurationError
            If `step` is not positive.
        """
        start, stop, step = (to_decimal(v) for v in (self.start, self.stop, self.step))
        if step <= 0:
            raise ConfigurationError(f"Optimization step for {self.name} must be positive")
        integral = all(isinstance(v, int) for v in (self.start, self.stop, self.step))
        values: List[Number] = []
        current = start
        while current <= stop:
            values.append(int(current) if integral else float(current))
            current = start + step * len(values)
        return values


def parameter_grid(params: Sequence[OptimizationParam]) -> List[Dict[str, Number]]:
    """Cartesian product of the parameter ranges, one dict per grid point."""
    names = [p.name for p in params]
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Duplicate optimization parameters: {names}")
    ranges = [p.values() for p in params]
    return [dict(zip(names, combo)) for combo in itertools.product(*ranges)]


@dataclass
class OptimizationResult:
    """One completed run: the parameters used and the strategy that ran."""
    parameters: Dict[str, Any]
    strategy: BaseStrategy
    benchmark: Optional[Asset] = None
    start: Optional[pd.Timestamp] = None

    def stats(self) -> TradeStats:
        return compute_trade_stats(
            self.strategy.get_trade_log(),
            self.strategy.get_initial_capital(),
            self.strategy.precision,
            benchmark=self.benchmark,
            start=self.start,
        )


class Backtester:
    """Replay historical bars through a strategy."""

    def __init__(self, resolution: Resolution = Resolution.DAILY, logger: Optional[logging.Logger] = None) -> None:
        self.resolution = Resolution(resolution)
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.strategy: Optional[BaseStrategy] = None
        self.assets: Optional[Assets] = None
        self.state = RunState.NOT_STARTED
        self.backtest_start: Optional[pd.Timestamp] = None
        self.backtest_end: Optional[pd.Timestamp] = None
        self.last_backtest_time = 0.0
        self._results: List[OptimizationResult] = []
        self._optimized = False
        self.benchmark: Optional[Asset] = None

    def set_strategy(self, strategy: BaseStrategy) -> None:
        self.strategy = strategy

    def set_benchmark(self, asset: Optional[Asset]) -> None:
        """Compare runs against buying and holding `asset` from the start date."""
        self.benchmark = asset

    def get_benchmark_ticker(self) -> Optional[str]:
        return self.benchmark.ticker if self.benchmark is not None else None

    def get_strategy(self) -> Optional[BaseStrategy]:
        return self.strategy

    def get_strategy_name(self) -> str:
        return self.strategy.get_strategy_name() if self.strategy else ""

    def get_strategies(self) -> Optional[List[BaseStrategy]]:
        """Completed runtimes of the last optimization, ``None`` after a plain run."""
        if not self._optimized:
            return None
        return [r.strategy for r in self._results]

    def get_results(self) -> List[OptimizationResult]:
        return list(self._results)

    def get_assets(self) -> Optional[Assets]:
        return self.assets

    def get_trade_stats(self, strategy: Optional[BaseStrategy] = None) -> TradeStats:
        strategy = strategy or self.strategy
        if strategy is None:
            raise BacktestError("Strategy is not set")
        return compute_trade_stats(
            strategy.get_trade_log(),
            strategy.get_initial_capital(),
            strategy.precision,
            benchmark=self.benchmark,
            start=self.backtest_start,
        )

    def _calculation_start(self, strategy: BaseStrategy, start: pd.Timestamp) -> pd.Timestamp:
        """Date of the earliest bar the strategy's lookback needs before `start`."""
        lookback = strategy.max_lookback_period()
        calc_start = start
        for asset in self.assets:
            index = asset.frame.index
            position = index.searchsorted(start, side="left")
            if position < lookback:
                self.logger.warning(
                    "Not enough history for %s: %d bars before %s, strategy needs %d",
                    asset.ticker, position, format_date(start), lookback,
                )
            if lookback and position > 0:
                calc_start = min(calc_start, index[max(0, position - lookback)])
        return calc_start

    def run(
        self,
        assets: Assets,
        start: DateLike,
        end: Optional[DateLike] = None,
        optimization_params: Optional[Sequence[OptimizationParam]] = None,
    ) -> List[OptimizationResult]:
        """Run the backtest from `start` to `end` inclusive.

        Parameters
        ----------
        assets : Assets
            Full price series; never mutated.
        start, end : date-like
            Simulation window.  Without `end` the run stops at the last
            available bar.
        optimization_params : sequence of OptimizationParam, optional
            When given, the attached strategy is used as a template and
            one independent copy runs per grid point.

        Returns
        -------
        list of OptimizationResult
            One entry per completed run.

        Raises
        ------
        BacktestError
            If the strategy, assets or capital are missing, or the window
            is empty.  Nothing is stepped in that case.
        """
        if self.strategy is None:
            raise BacktestError("Strategy is not set")
        if assets is None or assets.is_empty():
            raise BacktestError("No assets defined")
        if not self.strategy.has_capital():
            raise BacktestError("No capital set")
        start_ts = parse_date(start)
        end_ts = parse_date(end) if end is not None else assets.last_date()
        if end_ts is None or end_ts < start_ts:
            raise BacktestError(f"Empty backtest window: {format_date(start_ts)} to {format_date(end_ts)}")

        grid = parameter_grid(optimization_params) if optimization_params else []

        self.assets = assets
        self.backtest_start = start_ts
        self.backtest_end = end_ts
        if not self.strategy.get_tickers():
            self.strategy.set_tickers(assets.tickers)
        self.strategy.set_start_date(start_ts)
        self._results = []
        self._optimized = bool(grid)
        self.state = RunState.STEPPING
        started = time.perf_counter()
        self.logger.info("Starting the backtest. Start date: %s, end date: %s",
                         format_date(start_ts), format_date(end_ts))

        if not grid:
            self._run_pass(self.strategy, start_ts, end_ts)
            self._results.append(OptimizationResult(
                self.strategy.get_parameters(), self.strategy, self.benchmark, start_ts))
        else:
            self.logger.info("Backtesting %d iterations", len(grid))
            for i, point in enumerate(grid, start=1):
                self.logger.info("Running iteration #%d, params: %s", i, point)
                strategy = self.strategy.clone()
                strategy.set_parameters(point)
                self._run_pass(strategy, start_ts, end_ts)
                self._results.append(OptimizationResult(dict(point), strategy, self.benchmark, start_ts))

        self.last_backtest_time = time.perf_counter() - started
        self.state = RunState.ENDED
        self.logger.info("Backtest finished in %.2fs", self.last_backtest_time)
        return list(self._results)

    def _run_pass(self, strategy: BaseStrategy, start: pd.Timestamp, end: pd.Timestamp) -> None:
        calc_start = self._calculation_start(strategy, start)
        offset = self.resolution.offset()
        previous = start - offset
        current = start
        last_step = start
        steps = 0
        while current <= end:
            # Sessions without a new bar for any asset are skipped.
            if self.assets.has_bar_between(previous, current):
                self.logger.debug("Backtest step: %s", format_date(current))
                if strategy.HANDLES_OPEN:
                    strategy.on_open(self.assets.window(current, Event.OPEN, since=calc_start, fresh_after=previous),
                                     current)
                close_window = self.assets.window(current, Event.CLOSE, since=calc_start, fresh_after=previous)
                if strategy.HANDLES_CLOSE:
                    strategy.on_close(close_window, current)
                strategy.record_bar(close_window)
                last_step = current
            previous = current
            steps += 1
            current = start + offset * steps
        strategy.on_strategy_end(self.assets.window(last_step, Event.CLOSE, since=calc_start), last_step)
