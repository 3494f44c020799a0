import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from decimal import Decimal

import pandas as pd

from tradesim.execution.errors import StrategyError
from tradesim.execution.models import Position, PositionStatus, Side

import unittest


def _position(side: Side = Side.LONG) -> Position:
    return Position(
        side=side,
        ticker="AAA",
        open_time=pd.Timestamp("2024-01-02"),
        open_price=Decimal("100"),
        quantity=Decimal("50"),
        open_size=Decimal("5000.00"),
    )


class TestPosition(unittest.TestCase):
    def test_id_format(self) -> None:
        position = _position(Side.SHORT)
        ticker, side, suffix = position.id.rsplit("-", 2)
        self.assertEqual(ticker, "AAA")
        self.assertEqual(side, "short")
        self.assertEqual(len(suffix), 13)
        self.assertNotEqual(position.id, _position(Side.SHORT).id)

    def test_long_profit(self) -> None:
        position = _position()
        position.close(pd.Timestamp("2024-01-05"), Decimal("110"), Decimal("5500.00"), "exit")
        self.assertTrue(position.is_closed)
        self.assertEqual(position.profit_amount, Decimal("500.00"))
        self.assertEqual(position.profit_percent, Decimal("10.0000"))

    def test_short_profit(self) -> None:
        position = _position(Side.SHORT)
        position.close(pd.Timestamp("2024-01-05"), Decimal("110"), Decimal("5500.00"))
        self.assertEqual(position.profit_amount, Decimal("-500.00"))

    def test_open_position_uses_mark(self) -> None:
        position = _position()
        self.assertEqual(position.profit_amount, Decimal("0"))
        position.mark(Decimal("90"), Decimal("4500.00"))
        self.assertEqual(position.profit_amount, Decimal("-500.00"))

    def test_closed_position_is_read_only(self) -> None:
        position = _position()
        position.close(pd.Timestamp("2024-01-05"), Decimal("110"), Decimal("5500.00"))
        with self.assertRaises(StrategyError):
            position.close(pd.Timestamp("2024-01-06"), Decimal("120"), Decimal("6000.00"))
        with self.assertRaises(StrategyError):
            position.mark(Decimal("120"), Decimal("6000.00"))
        with self.assertRaises(StrategyError):
            position.increment_open_bars()

    def test_drawdown_long_and_short(self) -> None:
        long_pos = _position()
        long_pos.update_drawdown(95, 104)
        long_pos.update_drawdown(98, 101)
        self.assertEqual(long_pos.max_drawdown_value, Decimal("250.00"))
        self.assertEqual(long_pos.max_drawdown_percent, Decimal("5.0000"))

        short_pos = _position(Side.SHORT)
        short_pos.update_drawdown(95, 102)
        self.assertEqual(short_pos.max_drawdown_value, Decimal("100.00"))

    def test_strategy_drawdown_set_once(self) -> None:
        position = _position()
        position.set_strategy_drawdown(Decimal("10"), Decimal("0.1"))
        with self.assertRaises(StrategyError):
            position.set_strategy_drawdown(Decimal("20"), Decimal("0.2"))

    def test_dict_round_trip(self) -> None:
        position = _position()
        position.increment_open_bars()
        position.update_drawdown(97, 100)
        position.close(pd.Timestamp("2024-01-05"), Decimal("110"), Decimal("5500.00"), "exit")
        restored = Position.from_dict(position.to_dict())
        self.assertEqual(restored, position)
        self.assertEqual(restored.status, PositionStatus.CLOSED)

    def test_from_dict_rejects_closed_without_close_fields(self) -> None:
        data = _position().to_dict()
        data['status'] = 'closed'
        with self.assertRaises(ValueError):
            Position.from_dict(data)


if __name__ == '__main__':
    unittest.main()
