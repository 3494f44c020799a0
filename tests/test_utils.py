import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import tempfile
from decimal import Decimal

import pandas as pd
from hypothesis import given, strategies as st

from tradesim.utils.money import quantize, to_decimal
from tradesim.utils.notifier import BufferedNotifier, LogNotifier
from tradesim.utils.persistence import load_state, save_state
from tradesim.utils.shutdown import ShutdownScheduler
from tradesim.utils.timeutils import days_between, parse_date

import unittest


class TestMoney(unittest.TestCase):
    def test_to_decimal_uses_shortest_repr(self) -> None:
        self.assertEqual(to_decimal(0.1), Decimal("0.1"))
        for bad in (None, True, "abc", float("nan"), float("inf")):
            with self.assertRaises(ValueError, msg=repr(bad)):
                to_decimal(bad)

    def test_bankers_rounding(self) -> None:
        self.assertEqual(quantize("2.345", 2), Decimal("2.34"))
        self.assertEqual(quantize("2.355", 2), Decimal("2.36"))

    @given(st.decimals(min_value=-10**9, max_value=10**9, allow_nan=False, allow_infinity=False),
           st.integers(min_value=0, max_value=8))
    def test_quantize_is_idempotent(self, value, precision) -> None:
        once = quantize(value, precision)
        self.assertEqual(quantize(once, precision), once)
        self.assertLessEqual(abs(once - value), Decimal(1).scaleb(-precision))


class TestTime(unittest.TestCase):
    def test_parse_date(self) -> None:
        self.assertEqual(parse_date("2024-01-02 15:30"), pd.Timestamp("2024-01-02"))
        self.assertEqual(parse_date("2024-01-02T23:30:00-05:00"), pd.Timestamp("2024-01-03"))
        self.assertEqual(days_between("2024-01-01", "2024-01-05"), 4)


class TestPersistence(unittest.TestCase):
    def test_missing_and_empty(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "state.json")
            self.assertIsNone(load_state(path))
            open(path, "w").close()
            self.assertIsNone(load_state(path))

    def test_round_trip_and_no_temp_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "nested", "state.json")
            save_state(path, {'a': {'capital': Decimal("10.50"), 'when': pd.Timestamp("2024-01-02")}})
            self.assertEqual(load_state(path), {'a': {'capital': "10.50", 'when': "2024-01-02T00:00:00"}})
            self.assertEqual(os.listdir(os.path.dirname(path)), ["state.json"])

    def test_not_an_object(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "state.json")
            with open(path, "w", encoding="utf-8") as fh:
                fh.write("[1, 2]")
            with self.assertRaises(ValueError):
                load_state(path)


class TestNotifierAndShutdown(unittest.TestCase):
    def test_log_notifier_delivers_once(self) -> None:
        notifier = LogNotifier()
        notifier.add_summary("bought AAA")
        notifier.notify_error("failed BBB")
        with self.assertLogs('tradesim.utils.notifier', level="ERROR") as logs:
            notifier.send_all_notifications()
        self.assertIn("bought AAA", logs.output[0])
        self.assertEqual(notifier.summary, [])
        self.assertEqual(notifier.notifications, [])

    def test_buffered_notifier_is_abstract(self) -> None:
        with self.assertRaises(TypeError):
            BufferedNotifier()

    def test_failing_callback_does_not_stop_others(self) -> None:
        calls = []
        scheduler = ShutdownScheduler(register_atexit=False)
        scheduler.register(lambda: 1 / 0)
        scheduler.register(calls.append, "done")
        with self.assertLogs('tradesim.utils.shutdown', level="ERROR"):
            scheduler.run_callbacks()
        self.assertEqual(calls, ["done"])
        self.assertTrue(scheduler.fired)


if __name__ == '__main__':
    unittest.main()
