import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import tempfile

import pandas as pd

from tradesim.data.asset import Ohlc
from tradesim.data.csv_data import CSVAssetStore
from tradesim.execution.errors import DataUnavailableError

import unittest

STANDARD_CSV = """date,open,high,low,close,volume
2024-01-03,11,12,10,11.5,200
2024-01-02,10,11,9,10.5,100
2024-01-03,11,12,10,11.7,300
"""

MT5_EXPORT = (
    "<DATE>\t<TIME>\t<OPEN>\t<HIGH>\t<LOW>\t<CLOSE>\t<TICKVOL>\t<VOL>\t<SPREAD>\n"
    "2024.01.02\t00:00:00\t1.10\t1.11\t1.09\t1.105\t1000\t0\t2\n"
    "2024.01.03\t00:00:00\t1.105\t1.12\t1.10\t1.115\t1100\t0\t2\n"
)


class TestCSVAssetStore(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.store = CSVAssetStore(self.tmp.name)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def _write(self, name: str, content: str) -> None:
        with open(os.path.join(self.tmp.name, name), "w", encoding="utf-8") as fh:
            fh.write(content)

    def test_missing_file(self) -> None:
        with self.assertRaises(DataUnavailableError):
            self.store.load("NOPE")

    def test_standard_csv(self) -> None:
        self._write("AAA.csv", STANDARD_CSV)
        asset = self.store.load("AAA", "XETR")
        self.assertEqual(asset.count(), 2)
        self.assertEqual(asset.exchange, "XETR")
        self.assertEqual(asset.first_date(), pd.Timestamp("2024-01-02"))
        self.assertEqual(asset.bar_at("2024-01-03").close, 11.7)

    def test_mt5_export(self) -> None:
        self._write("EURUSD.csv", MT5_EXPORT)
        asset = self.store.load("EURUSD")
        self.assertEqual(asset.count(), 2)
        self.assertEqual(asset.latest().close, 1.115)

    def test_save_round_trip(self) -> None:
        self._write("AAA.csv", STANDARD_CSV)
        asset = self.store.load("AAA")
        asset.append([Ohlc(pd.Timestamp("2024-01-04"), 12, 13, 11, 12.5, 400)])
        self.store.save(asset)

        reloaded = self.store.load("AAA")
        self.assertEqual(reloaded.count(), 3)
        self.assertEqual(reloaded.last_date(), pd.Timestamp("2024-01-04"))
        with open(os.path.join(self.tmp.name, "AAA.csv"), encoding="utf-8") as fh:
            self.assertEqual(fh.readline().strip(), "date,open,high,low,close,volume")


if __name__ == '__main__':
    unittest.main()
