"""
Performance metrics calculations.

This module reduces a trade log into summary statistics: the running
capital series, profit and loss split by side, profit factor, win
rate, strategy and position drawdowns, holding times, volatility and
the Sharpe ratio.  `compute_trade_stats()` is a pure function of its
inputs: positions are read, never modified, and the same log always
yields the same `TradeStats`.

Conventions
-----------
* Only closed positions are counted; open ones are reported in
  `open_positions`.
* Closed positions are processed in close-time order; ties keep the
  input order.
* A trade with zero profit is neither a win nor a loss.
* `profit_factor` is ``None`` (undefined) when there is no gross loss.
* The Sharpe ratio is computed per trade: returns are each trade's
  profit over the balance before it, ``mean / std * sqrt(n)`` with the
  population standard deviation and no annualisation.  It is zero for
  fewer than two trades or a zero deviation.
* `max_bars_in_drawdown` is measured in calendar days from the last
  capital peak.
* With a benchmark series, the initial capital buys the benchmark at
  its close on the start date and `benchmark_log` holds the value of
  that holding at each point of `capital_log`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
import pandas as pd

from ..data.asset import Asset
from ..execution.models import Event, Position, Side
from ..utils.money import HUNDRED, QUANTITY_PRECISION, ZERO, quantize
from ..utils.timeutils import DateLike, parse_date

RATIO_PRECISION = 4

TradeLog = Union[Mapping[str, Position], Iterable[Position]]


@dataclass(frozen=True)
class SideStats:
    """Trade statistics for one subset of trades (all, longs or shorts)."""
    trades: int = 0
    winners: int = 0
    losers: int = 0
    win_rate: Decimal = ZERO
    net_profit: Decimal = ZERO
    gross_profit: Decimal = ZERO
    gross_loss: Decimal = ZERO
    profit_factor: Optional[Decimal] = None
    avg_profit: Decimal = ZERO
    avg_win: Decimal = ZERO
    avg_loss: Decimal = ZERO
    max_win: Decimal = ZERO
    max_loss: Decimal = ZERO
    avg_bars: Decimal = ZERO
    avg_bars_win: Decimal = ZERO
    avg_bars_loss: Decimal = ZERO
    max_quantity: Decimal = ZERO


@dataclass(frozen=True)
class TradeStats:
    """Aggregate metrics of one run."""
    initial_capital: Decimal
    final_capital: Decimal
    net_profit_percent: Decimal
    open_positions: int
    all: SideStats
    longs: SideStats
    shorts: SideStats
    max_strategy_drawdown_value: Decimal = ZERO
    max_strategy_drawdown_percent: Decimal = ZERO
    max_bars_in_drawdown: int = 0
    max_position_drawdown_value: Decimal = ZERO
    max_position_drawdown_percent: Decimal = ZERO
    volatility: Decimal = ZERO
    sharpe_ratio: Decimal = ZERO
    peak_value: Decimal = ZERO
    trough_value: Decimal = ZERO
    capital_log: List[Decimal] = field(default_factory=list)
    dates: List[Optional[pd.Timestamp]] = field(default_factory=list)
    position_drawdown_log: List[Decimal] = field(default_factory=list)
    benchmark_ticker: Optional[str] = None
    benchmark_log: List[Decimal] = field(default_factory=list)
    benchmark_profit: Optional[Decimal] = None

    @property
    def net_profit(self) -> Decimal:
        return self.all.net_profit

    @property
    def profit_factor(self) -> Optional[Decimal]:
        return self.all.profit_factor

    def as_dict(self) -> Dict[str, Any]:
        """Flat, JSON-ready view: Decimals and dates as strings.

        Per-side fields get ``_longs`` / ``_shorts`` suffixes.
        """
        def _plain(value: Any) -> Any:
            if isinstance(value, Decimal):
                return str(value)
            if isinstance(value, pd.Timestamp):
                return value.isoformat()
            if isinstance(value, list):
                return [_plain(v) for v in value]
            return value

        out: Dict[str, Any] = {}
        for name in ("initial_capital", "final_capital", "net_profit_percent", "open_positions",
                     "max_strategy_drawdown_value", "max_strategy_drawdown_percent", "max_bars_in_drawdown",
                     "max_position_drawdown_value", "max_position_drawdown_percent", "volatility",
                     "sharpe_ratio", "peak_value", "trough_value", "capital_log", "dates",
                     "position_drawdown_log"):
            out[name] = _plain(getattr(self, name))
        if self.benchmark_ticker is not None:
            out['benchmark_ticker'] = self.benchmark_ticker
            out['benchmark_log'] = _plain(self.benchmark_log)
            out['benchmark_profit'] = _plain(self.benchmark_profit)
        for suffix, side in (("", self.all), ("_longs", self.longs), ("_shorts", self.shorts)):
            for key, value in asdict(side).items():
                out[key + suffix] = _plain(value)
        return out


def _ratio(value: Decimal) -> Decimal:
    return quantize(value, RATIO_PRECISION)


def _side_stats(positions: List[Position], precision: int) -> SideStats:
    if not positions:
        return SideStats()
    profits = [p.profit_amount for p in positions]
    wins = [p for p in positions if p.profit_amount > ZERO]
    losses = [p for p in positions if p.profit_amount < ZERO]
    gross_profit = sum((p.profit_amount for p in wins), ZERO)
    gross_loss = -sum((p.profit_amount for p in losses), ZERO)
    net = sum(profits, ZERO)
    n = len(positions)

    def _avg_money(values: List[Decimal]) -> Decimal:
        return quantize(sum(values, ZERO) / len(values), precision) if values else ZERO

    def _avg_bars(subset: List[Position]) -> Decimal:
        return quantize(Decimal(sum(p.open_bars for p in subset)) / len(subset), 2) if subset else ZERO

    return SideStats(
        trades=n,
        winners=len(wins),
        losers=len(losses),
        win_rate=_ratio(Decimal(len(wins)) * HUNDRED / n),
        net_profit=net,
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        profit_factor=_ratio(gross_profit / gross_loss) if gross_loss > ZERO else None,
        avg_profit=_avg_money(profits),
        avg_win=_avg_money([p.profit_amount for p in wins]),
        avg_loss=_avg_money([p.profit_amount for p in losses]),
        max_win=max((p.profit_amount for p in wins), default=ZERO),
        max_loss=min((p.profit_amount for p in losses), default=ZERO),
        avg_bars=_avg_bars(positions),
        avg_bars_win=_avg_bars(wins),
        avg_bars_loss=_avg_bars(losses),
        max_quantity=max(p.quantity for p in positions),
    )


def _std(values: List[Decimal]) -> Decimal:
    mean = sum(values, ZERO) / len(values)
    variance = sum(((v - mean) ** 2 for v in values), ZERO) / len(values)
    return variance.sqrt()


def _close_on(asset: Asset, when: pd.Timestamp) -> Decimal:
    """Last close of `asset` on or before `when`, zero when there is none."""
    value = asset.window(when, Event.CLOSE).current_value()
    return ZERO if value is None else value


def _benchmark_log(
    benchmark: Asset,
    start: pd.Timestamp,
    initial: Decimal,
    close_times: List[pd.Timestamp],
    precision: int,
) -> List[Decimal]:
    """Value of a buy-and-hold position in `benchmark` at each close time."""
    start_price = _close_on(benchmark, start)
    quantity = quantize(initial / start_price, QUANTITY_PRECISION) if start_price > ZERO else ZERO
    log = [initial]
    for when in close_times:
        log.append(quantize(_close_on(benchmark, when) * quantity, precision))
    return log


def compute_trade_stats(
    trade_log: TradeLog,
    initial_capital: Any,
    precision: int = 2,
    benchmark: Optional[Asset] = None,
    start: Optional[DateLike] = None,
) -> TradeStats:
    """Compute a set of summary statistics for a trade log.

    Parameters
    ----------
    trade_log : mapping of id to Position, or iterable of Position
        Positions of one run, e.g. `BaseStrategy.get_trade_log()`.
    initial_capital : Decimal, str or int
        Capital the run started with.
    precision : int
        Decimal places of money amounts.
    benchmark : Asset, optional
        Series to compare against with a buy-and-hold position.
    start : date-like, optional
        Date the benchmark is bought; defaults to the first trade's
        open time.

    Returns
    -------
    TradeStats
        Aggregate metrics; see the module docstring for conventions.
    """
    positions = list(trade_log.values()) if isinstance(trade_log, Mapping) else list(trade_log)
    closed = [p for p in positions if p.is_closed]
    closed.sort(key=lambda p: p.close_time)
    open_count = len(positions) - len(closed)
    initial = quantize(initial_capital, precision)

    balance = initial
    peak = initial
    peak_date = min((p.open_time for p in closed), default=None)
    capital_log = [initial]
    dates: List[Optional[pd.Timestamp]] = [peak_date]
    position_drawdown_log = [ZERO]
    returns: List[Decimal] = []
    max_dd_value = ZERO
    max_dd_percent = ZERO
    max_bars_in_drawdown = 0
    max_pos_dd_value = ZERO
    max_pos_dd_percent = ZERO

    for position in closed:
        profit = position.profit_amount
        if balance != ZERO:
            returns.append(profit / balance)
        balance += profit
        capital_log.append(balance)
        dates.append(position.close_time)
        position_drawdown_log.append(-quantize(position.max_drawdown_percent, 1))

        if balance > peak:
            peak = balance
            peak_date = position.close_time
        elif balance < peak:
            dd_value = peak - balance
            dd_percent = _ratio(dd_value * HUNDRED / peak) if peak > ZERO else ZERO
            max_dd_value = max(max_dd_value, dd_value)
            max_dd_percent = max(max_dd_percent, dd_percent)
            if peak_date is not None:
                max_bars_in_drawdown = max(max_bars_in_drawdown, int((position.close_time - peak_date).days))

        if position.max_drawdown_value > max_pos_dd_value:
            max_pos_dd_value = position.max_drawdown_value
        if position.max_drawdown_percent > max_pos_dd_percent:
            max_pos_dd_percent = position.max_drawdown_percent

    all_stats = _side_stats(closed, precision)
    profits = [p.profit_amount for p in closed]

    volatility = ZERO
    if len(profits) > 2:
        mean_profit = sum(profits, ZERO) / len(profits)
        if mean_profit != ZERO:
            volatility = _ratio(_std(profits) * HUNDRED / mean_profit)

    sharpe = ZERO
    if len(returns) >= 2:
        deviation = _std(returns)
        if deviation != ZERO:
            mean_return = sum(returns, ZERO) / len(returns)
            sharpe = _ratio(mean_return / deviation * Decimal(len(returns)).sqrt())

    benchmark_ticker = None
    benchmark_log: List[Decimal] = []
    benchmark_profit = None
    buy_date = parse_date(start) if start is not None else dates[0]
    if benchmark is not None and buy_date is not None:
        benchmark_ticker = benchmark.ticker
        benchmark_log = _benchmark_log(benchmark, buy_date, initial, [p.close_time for p in closed], precision)
        benchmark_profit = benchmark_log[-1] - benchmark_log[0]

    return TradeStats(
        initial_capital=initial,
        final_capital=balance,
        net_profit_percent=_ratio((balance - initial) * HUNDRED / initial) if initial != ZERO else ZERO,
        open_positions=open_count,
        all=all_stats,
        longs=_side_stats([p for p in closed if p.side is Side.LONG], precision),
        shorts=_side_stats([p for p in closed if p.side is Side.SHORT], precision),
        max_strategy_drawdown_value=max_dd_value,
        max_strategy_drawdown_percent=max_dd_percent,
        max_bars_in_drawdown=max_bars_in_drawdown,
        max_position_drawdown_value=max_pos_dd_value,
        max_position_drawdown_percent=max_pos_dd_percent,
        volatility=volatility,
        sharpe_ratio=sharpe,
        peak_value=max(capital_log),
        trough_value=min(capital_log),
        capital_log=capital_log,
        dates=dates,
        position_drawdown_log=position_drawdown_log,
        benchmark_ticker=benchmark_ticker,
        benchmark_log=benchmark_log,
        benchmark_profit=benchmark_profit,
    )
