"""
CSV asset store.

This module provides a class to load and save daily OHLCV series as
CSV files, one file per ticker named ``{SYMBOL}.csv``.  Two layouts are
understood when loading:

```
date,open,high,low,close,volume
```

and the tab-separated MetaTrader 5 history export
(``<DATE> <TIME> <OPEN> <HIGH> <LOW> <CLOSE> <TICKVOL> ...``).  In the
standard layout a ``time`` column is accepted in place of ``date`` and
``volume`` is optional.  Files are always written in the standard
layout, sorted by date with unique dates.
"""

from __future__ import annotations

import logging
from pathlib import Path
import pandas as pd

from ..execution.errors import DataUnavailableError
from .asset import COLUMNS, Asset, validate_and_sort

logger = logging.getLogger(__name__)


def _read_standard(file_path: Path) -> pd.DataFrame:
    df = pd.read_csv(file_path)
    df.columns = [str(c).strip().lower() for c in df.columns]
    if "date" not in df.columns and "time" in df.columns:
        df = df.rename(columns={"time": "date"})
    if "date" not in df.columns:
        raise ValueError(f"No date column in {file_path}")
    df["date"] = pd.to_datetime(df["date"], errors="raise")
    return df


def _read_mt5_export(file_path: Path, symbol: str) -> pd.DataFrame:
    df = pd.read_csv(file_path, sep="\t", engine="python")
    df.columns = [c.strip() for c in df.columns]

    required = ["<DATE>", "<OPEN>", "<HIGH>", "<LOW>", "<CLOSE>"]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(
            f"Unrecognized CSV format for {symbol}. Missing columns: {missing}. "
            f"Found columns: {list(df.columns)}"
        )

    dt = df["<DATE>"].astype(str).str.strip()
    if "<TIME>" in df.columns:
        dt = dt + " " + df["<TIME>"].astype(str).str.strip()
        ts = pd.to_datetime(dt, format="%Y.%m.%d %H:%M:%S", errors="coerce")
    else:
        ts = pd.to_datetime(dt, format="%Y.%m.%d", errors="coerce")
    if ts.isna().any():
        # fallback if format differs
        ts = pd.to_datetime(dt, errors="coerce")
    if ts.isna().any():
        bad = dt[ts.isna()].head(5).tolist()
        raise ValueError(f"Could not parse MT5 DATE/TIME for {symbol}. Examples: {bad}")

    volume_col = "<VOL>" if "<VOL>" in df.columns else "<TICKVOL>"
    return pd.DataFrame(
        {
            "date": ts,
            "open": df["<OPEN>"].astype(float),
            "high": df["<HIGH>"].astype(float),
            "low": df["<LOW>"].astype(float),
            "close": df["<CLOSE>"].astype(float),
            "volume": df[volume_col].astype(float) if volume_col in df.columns else 0.0,
        }
    )


class CSVAssetStore:
    """Load and save price series from a directory of CSV files.

    Parameters
    ----------
    csv_dir : str
        Directory where the CSV files are located.  Each symbol's file
        must be named `{SYMBOL}.csv`.
    """

    def __init__(self, csv_dir: str) -> None:
        self.csv_dir = Path(csv_dir)

    def path_for(self, symbol: str) -> Path:
        return self.csv_dir / f"{symbol}.csv"

    def load(self, symbol: str, exchange: str = "") -> Asset:
        """Load the series of `symbol`.

        Raises
        ------
        DataUnavailableError
            If there is no file for the symbol.
        ValueError
            If the file is in neither supported layout.
        """
        file_path = self.path_for(symbol)
        if not file_path.exists():
            raise DataUnavailableError(f"CSV file not found for symbol {symbol}: {file_path}")

        # 1) Try the standard comma-separated layout first
        try:
            df = _read_standard(file_path)
        except (ValueError, pd.errors.ParserError) as exc:
            logger.debug("%s is not a standard CSV (%s), trying the MT5 export format", file_path, exc)
            # 2) MT5 export format: tab-separated with <DATE> and optional <TIME>
            df = _read_mt5_export(file_path, symbol)

        asset = Asset(symbol, df, exchange=exchange, path=str(file_path))
        logger.info("Loaded %d bars for %s from %s", asset.count(), symbol, file_path)
        return asset

    def save(self, asset: Asset) -> None:
        """Write the series in the standard layout.

        The file the asset was loaded from is overwritten; an asset
        without a path is written to ``{csv_dir}/{ticker}.csv``.
        """
        file_path = Path(asset.path) if asset.path else self.path_for(asset.ticker)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        frame = validate_and_sort(asset.frame, asset.ticker)[COLUMNS]
        frame.to_csv(file_path, index=True, index_label="date", date_format="%Y-%m-%d")
        asset.path = str(file_path)
        logger.debug("Saved %d bars for %s to %s", len(frame), asset.ticker, file_path)
