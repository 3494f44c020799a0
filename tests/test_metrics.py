import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import copy
from decimal import Decimal
from typing import Optional

import pandas as pd

from tradesim.data.asset import Asset
from tradesim.execution.models import Position, Side
from tradesim.reporting.metrics import compute_trade_stats

import unittest


def _trade(side: Side, open_day: int, close_day: Optional[int], open_size: str, close_size: Optional[str],
           bars: int = 1) -> Position:
    position = Position(
        side=side,
        ticker="AAA",
        open_time=pd.Timestamp("2024-01-01") + pd.Timedelta(days=open_day),
        open_price=Decimal("100"),
        quantity=Decimal(open_size) / Decimal("100"),
        open_size=Decimal(open_size),
    )
    position.open_bars = bars
    if close_day is not None:
        position.close(pd.Timestamp("2024-01-01") + pd.Timedelta(days=close_day),
                       Decimal(close_size) / position.quantity, Decimal(close_size))
    return position


class TestMetrics(unittest.TestCase):
    def setUp(self) -> None:
        self.log = [
            _trade(Side.LONG, 0, 2, "1000.00", "1100.00", bars=2),    # +100
            _trade(Side.SHORT, 3, 5, "1000.00", "1050.00", bars=2),   # -50
            _trade(Side.LONG, 6, 10, "1000.00", "970.00", bars=4),    # -30
            _trade(Side.LONG, 11, 12, "1000.00", "1200.00", bars=1),  # +200
            _trade(Side.LONG, 13, None, "1000.00", None),             # open
        ]

    def test_profit_and_counts(self) -> None:
        stats = compute_trade_stats(self.log, "10000")
        self.assertEqual(stats.open_positions, 1)
        self.assertEqual(stats.all.trades, 4)
        self.assertEqual(stats.all.winners, 2)
        self.assertEqual(stats.all.losers, 2)
        self.assertEqual(stats.net_profit, Decimal("220.00"))
        self.assertEqual(stats.all.gross_profit, Decimal("300.00"))
        self.assertEqual(stats.all.gross_loss, Decimal("80.00"))
        self.assertEqual(stats.profit_factor, Decimal("3.7500"))
        self.assertEqual(stats.all.win_rate, Decimal("50.0000"))
        self.assertEqual(stats.final_capital, Decimal("10220.00"))
        self.assertEqual(stats.net_profit_percent, Decimal("2.2000"))
        self.assertEqual(stats.longs.trades, 3)
        self.assertEqual(stats.shorts.net_profit, Decimal("-50.00"))
        self.assertEqual(stats.shorts.profit_factor, Decimal("0"))
        self.assertEqual(stats.all.max_win, Decimal("200.00"))
        self.assertEqual(stats.all.max_loss, Decimal("-50.00"))
        self.assertEqual(stats.all.avg_bars, Decimal("2.25"))
        self.assertEqual(stats.all.avg_bars_loss, Decimal("3.00"))

    def test_capital_log_and_drawdown(self) -> None:
        stats = compute_trade_stats(self.log, "10000")
        self.assertEqual(
            stats.capital_log,
            [Decimal("10000.00"), Decimal("10100.00"), Decimal("10050.00"), Decimal("10020.00"), Decimal("10220.00")],
        )
        self.assertEqual(stats.max_strategy_drawdown_value, Decimal("80.00"))
        self.assertEqual(stats.max_strategy_drawdown_percent, Decimal("0.7921"))
        # peak on 2024-01-03, deepest drawdown closed on 2024-01-11
        self.assertEqual(stats.max_bars_in_drawdown, 8)
        self.assertEqual(stats.peak_value, Decimal("10220.00"))
        self.assertEqual(stats.trough_value, Decimal("10000.00"))

    def test_profit_factor_undefined_without_losses(self) -> None:
        stats = compute_trade_stats(self.log[:1], "10000")
        self.assertIsNone(stats.profit_factor)
        self.assertEqual(stats.sharpe_ratio, Decimal("0"))

    def test_empty_log(self) -> None:
        stats = compute_trade_stats({}, "10000")
        self.assertEqual(stats.all.trades, 0)
        self.assertEqual(stats.final_capital, Decimal("10000.00"))
        self.assertEqual(stats.capital_log, [Decimal("10000.00")])

    def test_close_time_order(self) -> None:
        shuffled = [self.log[3], self.log[4], self.log[0], self.log[2], self.log[1]]
        self.assertEqual(
            compute_trade_stats(shuffled, "10000").capital_log,
            compute_trade_stats(self.log, "10000").capital_log,
        )

    def test_idempotent_and_pure(self) -> None:
        before = copy.deepcopy(self.log)
        first = compute_trade_stats({p.id: p for p in self.log}, "10000")
        second = compute_trade_stats({p.id: p for p in self.log}, "10000")
        self.assertEqual(first, second)
        self.assertEqual(self.log, before)

    def test_sharpe_is_positive_for_profitable_log(self) -> None:
        stats = compute_trade_stats(self.log, "10000")
        self.assertGreater(stats.sharpe_ratio, Decimal("0"))
        self.assertNotEqual(stats.volatility, Decimal("0"))

    def test_benchmark_log(self) -> None:
        dates = pd.date_range("2024-01-01", periods=15)
        closes = [100.0 + i for i in range(len(dates))]
        benchmark = Asset("IDX", pd.DataFrame({
            'date': dates, 'open': closes, 'high': closes, 'low': closes, 'close': closes,
        }))
        stats = compute_trade_stats(self.log, "10000", benchmark=benchmark, start="2024-01-01")
        # 100 units bought at 100, valued at each trade's close
        self.assertEqual(stats.benchmark_ticker, "IDX")
        self.assertEqual(stats.benchmark_log, [
            Decimal("10000.00"), Decimal("10200.00"), Decimal("10500.00"), Decimal("11000.00"), Decimal("11200.00"),
        ])
        self.assertEqual(stats.benchmark_profit, Decimal("1200.00"))
        self.assertEqual(len(stats.benchmark_log), len(stats.capital_log))
        self.assertEqual(stats.as_dict()['benchmark_profit'], "1200.00")

        self.assertEqual(compute_trade_stats(self.log, "10000", benchmark=benchmark).benchmark_log,
                         stats.benchmark_log)
        plain = compute_trade_stats(self.log, "10000")
        self.assertIsNone(plain.benchmark_profit)
        self.assertNotIn('benchmark_log', plain.as_dict())

    def test_as_dict(self) -> None:
        data = compute_trade_stats(self.log, "10000").as_dict()
        self.assertEqual(data['net_profit'], "220.00")
        self.assertEqual(data['trades_longs'], 3)
        self.assertEqual(data['profit_factor'], "3.7500")
        self.assertEqual(data['capital_log'][0], "10000.00")


if __name__ == '__main__':
    unittest.main()
