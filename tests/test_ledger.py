import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from decimal import Decimal

import pandas as pd
from hypothesis import given, settings, strategies as st

from tradesim.data.asset import Asset, Assets
from tradesim.execution.errors import ConfigurationError, DataUnavailableError, StrategyError
from tradesim.execution.models import QuantityType, Side
from tradesim.strategy.base import BaseStrategy
from tradesim.utils.money import ZERO

import unittest


def _assets(date: str, **closes: float) -> Assets:
    """One-bar assets where each ticker closes at the given price."""
    return Assets(
        Asset.from_records(ticker, [{
            'date': date, 'open': price, 'high': price, 'low': price, 'close': price, 'volume': 1000,
        }])
        for ticker, price in closes.items()
    )


def _strategy(capital: str = "10000", quantity_type: QuantityType = QuantityType.PERCENT) -> BaseStrategy:
    strategy = BaseStrategy(quantity_type=quantity_type)
    strategy.set_capital(capital)
    return strategy


def _assert_balanced(test: unittest.TestCase, strategy: BaseStrategy) -> None:
    committed = sum((p.open_size for p in strategy.get_open_trades().values()), ZERO)
    test.assertEqual(strategy.get_available_capital(), strategy.get_capital() - committed)


class TestLedger(unittest.TestCase):
    def test_entry_and_close_scenario(self) -> None:
        """10000 capital, 50% long at 100, closed at 110."""
        strategy = _strategy()
        strategy.on_close(_assets("2024-01-02", AAA=100), pd.Timestamp("2024-01-02"))
        position_id = strategy.entry(Side.LONG, "AAA", "50")
        position = strategy.get_open_position(position_id)
        self.assertEqual(position.quantity, Decimal("50"))
        self.assertEqual(position.open_size, Decimal("5000.00"))
        self.assertEqual(strategy.get_available_capital(), Decimal("5000.00"))

        strategy.on_close(_assets("2024-01-03", AAA=110), pd.Timestamp("2024-01-03"))
        closed = strategy.close_all("exit")
        self.assertEqual(len(closed), 1)
        self.assertEqual(closed[0].profit_amount, Decimal("500.00"))
        self.assertEqual(strategy.get_capital(), Decimal("10500.00"))
        self.assertEqual(strategy.get_available_capital(), Decimal("10500.00"))
        self.assertFalse(strategy.has_open_trades())

    def test_entry_larger_than_available_fails(self) -> None:
        strategy = _strategy(quantity_type=QuantityType.UNITS)
        strategy.on_close(_assets("2024-01-02", AAA=100), pd.Timestamp("2024-01-02"))
        with self.assertRaises(StrategyError):
            strategy.entry(Side.LONG, "AAA", 150)
        self.assertEqual(strategy.get_capital(), Decimal("10000.00"))
        self.assertEqual(strategy.get_available_capital(), Decimal("10000.00"))
        self.assertEqual(strategy.get_trade_log(), {})

    def test_second_entry_limited_by_available(self) -> None:
        strategy = _strategy()
        strategy.on_close(_assets("2024-01-02", AAA=100, BBB=50), pd.Timestamp("2024-01-02"))
        strategy.entry(Side.LONG, "AAA", "60")
        with self.assertRaises(StrategyError):
            strategy.entry(Side.LONG, "BBB", "50")
        strategy.entry(Side.LONG, "BBB", "40")
        self.assertEqual(strategy.get_available_capital(), Decimal("0.00"))
        _assert_balanced(self, strategy)

    def test_percent_boundaries(self) -> None:
        strategy = _strategy()
        strategy.on_close(_assets("2024-01-02", AAA=100), pd.Timestamp("2024-01-02"))
        for size in ("0", "-5", "100.01", "150", "abc"):
            with self.assertRaises(StrategyError, msg=size):
                strategy.entry(Side.LONG, "AAA", size)
            self.assertEqual(strategy.get_capital(), Decimal("10000.00"))
            self.assertEqual(strategy.get_available_capital(), Decimal("10000.00"))
        self.assertEqual(strategy.get_trade_log(), {})
        strategy.entry(Side.LONG, "AAA", "100")
        self.assertEqual(strategy.get_available_capital(), Decimal("0.00"))

    def test_zero_price_is_rejected(self) -> None:
        strategy = _strategy()
        strategy.on_close(_assets("2024-01-02", AAA=0), pd.Timestamp("2024-01-02"))
        with self.assertRaises(StrategyError):
            strategy.entry(Side.LONG, "AAA", "10")

    def test_unknown_ticker(self) -> None:
        strategy = _strategy()
        strategy.on_close(_assets("2024-01-02", AAA=100), pd.Timestamp("2024-01-02"))
        with self.assertRaises(DataUnavailableError):
            strategy.entry(Side.LONG, "ZZZ", "10")

    def test_capital_set_twice(self) -> None:
        strategy = _strategy()
        with self.assertRaises(ConfigurationError):
            strategy.set_capital("5000")
        self.assertEqual(strategy.get_capital(), Decimal("10000.00"))

    def test_invalid_capital(self) -> None:
        for amount in ("0", "-1", "abc"):
            with self.assertRaises(ConfigurationError, msg=amount):
                BaseStrategy().set_capital(amount)

    def test_close_all_with_missing_asset_leaves_ledger_untouched(self) -> None:
        strategy = _strategy()
        strategy.on_close(_assets("2024-01-02", AAA=100, BBB=10), pd.Timestamp("2024-01-02"))
        strategy.entry(Side.LONG, "AAA", "30")
        strategy.entry(Side.LONG, "BBB", "30")
        strategy.on_close(_assets("2024-01-03", AAA=110), pd.Timestamp("2024-01-03"))
        with self.assertRaises(DataUnavailableError):
            strategy.close_all()
        self.assertEqual(len(strategy.get_open_trades()), 2)
        self.assertEqual(strategy.get_capital(), Decimal("10000.00"))
        _assert_balanced(self, strategy)

    def test_close_position(self) -> None:
        strategy = _strategy()
        strategy.on_close(_assets("2024-01-02", AAA=100, BBB=10), pd.Timestamp("2024-01-02"))
        first = strategy.entry(Side.LONG, "AAA", "30")
        strategy.entry(Side.SHORT, "BBB", "30")
        strategy.on_close(_assets("2024-01-03", AAA=90, BBB=9), pd.Timestamp("2024-01-03"))
        closed = strategy.close_position(first, "stop")
        self.assertEqual(closed.profit_amount, Decimal("-300.00"))
        self.assertEqual(strategy.get_capital(), Decimal("9700.00"))
        self.assertEqual(strategy.get_available_capital(), Decimal("6700.00"))
        _assert_balanced(self, strategy)
        with self.assertRaises(StrategyError):
            strategy.close_position(first)

    def test_open_profit_percent(self) -> None:
        strategy = _strategy()
        strategy.on_close(_assets("2024-01-02", AAA=100), pd.Timestamp("2024-01-02"))
        position = strategy.get_open_position(strategy.entry(Side.LONG, "AAA", "10"))
        strategy.on_close(_assets("2024-01-03", AAA=105), pd.Timestamp("2024-01-03"))
        self.assertEqual(strategy.get_open_profit_percent(position), Decimal("5.0000"))
        self.assertTrue(position.is_open)

    def test_trade_log_order(self) -> None:
        strategy = _strategy()
        strategy.on_close(_assets("2024-01-02", AAA=100, BBB=10, CCC=1), pd.Timestamp("2024-01-02"))
        a = strategy.entry(Side.LONG, "AAA", "10")
        b = strategy.entry(Side.LONG, "BBB", "10")
        c = strategy.entry(Side.LONG, "CCC", "10")
        strategy.on_close(_assets("2024-01-03", AAA=100, BBB=10, CCC=1), pd.Timestamp("2024-01-03"))
        strategy.close_position(b)
        strategy.on_close(_assets("2024-01-04", AAA=100, BBB=10, CCC=1), pd.Timestamp("2024-01-04"))
        strategy.close_position(a)
        self.assertEqual(list(strategy.get_trade_log()), [b, a, c])

    def test_events_fire(self) -> None:
        opened, closed = [], []
        strategy = _strategy()
        strategy.set_on_open_event(opened.append)
        strategy.set_on_close_event(closed.append)
        strategy.on_close(_assets("2024-01-02", AAA=100), pd.Timestamp("2024-01-02"))
        strategy.entry(Side.LONG, "AAA", "10")
        strategy.close_all()
        self.assertEqual(len(opened), 1)
        self.assertEqual(closed, opened)

    def test_unknown_parameter(self) -> None:
        with self.assertRaises(ConfigurationError):
            BaseStrategy().set_parameters({'nope': 1})

    def test_state_round_trip(self) -> None:
        strategy = _strategy()
        strategy.on_close(_assets("2024-01-02", AAA=100, BBB=10), pd.Timestamp("2024-01-02"))
        strategy.entry(Side.LONG, "AAA", "30")
        closed_id = strategy.entry(Side.SHORT, "BBB", "30")
        strategy.on_close(_assets("2024-01-03", AAA=100, BBB=9), pd.Timestamp("2024-01-03"))
        strategy.close_position(closed_id)

        restored = BaseStrategy()
        restored.restore_state(strategy.to_state())
        self.assertEqual(restored.get_capital(), strategy.get_capital())
        self.assertEqual(restored.get_available_capital(), strategy.get_available_capital())
        self.assertEqual(list(restored.get_open_trades()), list(strategy.get_open_trades()))
        self.assertEqual(list(restored.get_trade_log().values()), list(strategy.get_trade_log().values()))
        self.assertEqual(restored.to_state(), strategy.to_state())

    def test_restore_rejects_newer_version(self) -> None:
        state = _strategy().to_state()
        state['version'] = 99
        with self.assertRaises(ValueError):
            BaseStrategy().restore_state(state)

    @settings(max_examples=50, deadline=None)
    @given(
        prices=st.lists(st.decimals(min_value="1", max_value="1000", places=2), min_size=2, max_size=12),
        sizes=st.lists(st.integers(min_value=1, max_value=100), min_size=12, max_size=12),
        sides=st.lists(st.sampled_from([Side.LONG, Side.SHORT]), min_size=12, max_size=12),
    )
    def test_capital_conservation(self, prices, sizes, sides) -> None:
        """Capital always equals initial capital plus realized profits."""
        strategy = _strategy("10000")
        for day, price in enumerate(prices):
            date = pd.Timestamp("2024-01-01") + pd.Timedelta(days=day)
            strategy.on_close(_assets(date.strftime("%Y-%m-%d"), AAA=float(price)), date)
            if strategy.has_open_trades() and day % 2:
                strategy.close_all()
            else:
                try:
                    strategy.entry(sides[day], "AAA", sizes[day])
                except StrategyError:
                    pass
            _assert_balanced(self, strategy)
        strategy.close_all()

        realized = sum((p.profit_amount for p in strategy.get_trade_log().values()), ZERO)
        self.assertEqual(strategy.get_capital(), strategy.get_initial_capital() + realized)
        self.assertEqual(strategy.get_available_capital(), strategy.get_capital())


if __name__ == '__main__':
    unittest.main()
