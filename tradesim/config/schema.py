"""
Configuration schema and loader.

This module defines dataclasses that mirror the expected structure of
the YAML configuration file (`config.yaml`).  A helper function
`load_config()` reads a YAML file from disk and returns an instance
of `Config` populated with reasonable defaults for any missing
fields.

Using dataclasses provides type hints and a clear contract for what
values are expected.  When extending the configuration, add new
fields to the appropriate dataclass and update `load_config()`
accordingly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any
import yaml

from ..execution.errors import ConfigurationError
from ..execution.models import QuantityType, Resolution


@dataclass
class TickerConfig:
    """One traded instrument.

    Attributes
    ----------
    symbol : str
        Ticker symbol; the CSV store expects ``{symbol}.csv``.
    exchange : str
        Exchange code passed to the quote source when refreshing data.
    """

    symbol: str
    exchange: str = ""


@dataclass
class StrategyConfig:
    """Which strategy to run and with which parameters.

    Attributes
    ----------
    name : str
        Key of the strategy in `tradesim.strategy.registry`.
    parameters : dict
        Overrides of the strategy's default parameters.
    """

    name: str = "sma_baseline"
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BacktestConfig:
    """Backtest window.  Dates are ``YYYY-MM-DD`` strings; `end` may be empty.

    `benchmark` optionally names a symbol of the CSV store to compare
    the run against with a buy-and-hold position.
    """

    start: str = "2020-01-01"
    end: Optional[str] = None
    benchmark: Optional[str] = None


@dataclass
class OptimizationConfig:
    """Range of one parameter for optimization runs (both ends inclusive)."""

    name: str
    start: float
    stop: float
    step: float


@dataclass
class DataConfig:
    """Data source configuration.

    Attributes
    ----------
    csv_dir : str
        Directory containing one CSV file per ticker.
    """

    csv_dir: str = "data"


@dataclass
class LiveConfig:
    """Live execution settings.

    Attributes
    ----------
    state_file : str
        JSON file holding the ledgers between invocations.
    investment_id : str
        Key of this strategy's record in the state file.
    """

    state_file: str = "investments-state.json"
    investment_id: str = "default"


@dataclass
class MT5Config:
    """Holds parameters required to connect to a MetaTrader 5 terminal.

    Attributes
    ----------
    login : int
        Account login number.  Use `0` when running offline backtests.
    password : str
        Password for the account.
    server : str
        Broker server name (e.g. ``Bidget-MT5-Live``).
    path : str
        File system path to the MetaTrader 5 terminal executable
        (`terminal64.exe`).  Required for live data refresh.
    """

    login: int = 0
    password: str = ""
    server: str = ""
    path: str = ""


@dataclass
class Config:
    """Root configuration.

    Attributes
    ----------
    strategy : StrategyConfig
        Strategy name and parameters.
    tickers : List[TickerConfig]
        Instruments the strategy trades.
    capital : str
        Starting capital, kept as a string so it reaches the ledger
        without passing through a float.
    precision : int
        Decimal places of money amounts.
    quantity_type : QuantityType
        Whether entry sizes are percents of capital or units.
    resolution : Resolution
        Simulation step size.
    backtest : BacktestConfig
        Backtest window.
    optimization : List[OptimizationConfig]
        Parameter grid; empty for a single run.
    data, live, mt5
        Data store, live state and quote source settings.
    results_dir : str
        Where reports are written.
    log_level : str
        Root logging level when not running verbose.
    """

    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    tickers: List[TickerConfig] = field(default_factory=list)
    capital: str = "10000"
    precision: int = 2
    quantity_type: QuantityType = QuantityType.PERCENT
    resolution: Resolution = Resolution.DAILY
    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    optimization: List[OptimizationConfig] = field(default_factory=list)
    data: DataConfig = field(default_factory=DataConfig)
    live: LiveConfig = field(default_factory=LiveConfig)
    mt5: MT5Config = field(default_factory=MT5Config)
    results_dir: str = "results"
    log_level: str = "INFO"


def _merge_dict(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge two dictionaries.

    The values in `override` take precedence over those in `defaults`.
    This helper is used when loading YAML into nested dataclasses.
    """
    result: Dict[str, Any] = defaults.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def _ticker(raw: Any) -> TickerConfig:
    if isinstance(raw, str):
        return TickerConfig(symbol=raw)
    if isinstance(raw, dict) and raw.get('symbol'):
        return TickerConfig(symbol=str(raw['symbol']), exchange=str(raw.get('exchange') or ""))
    raise ConfigurationError(f"Invalid ticker entry: {raw!r}")


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def config_from_dict(raw: Dict[str, Any]) -> Config:
    """Build a `Config` from a parsed YAML mapping, filling defaults.

    Raises
    ------
    ConfigurationError
        If a value has the wrong shape (unknown enum value, bad ticker
        entry, malformed optimization range).
    """
    defaults: Dict[str, Any] = {
        'strategy': {
            'name': 'sma_baseline',
            'parameters': {},
        },
        'tickers': [],
        'capital': '10000',
        'precision': 2,
        'quantity_type': 'percent',
        'resolution': 'daily',
        'backtest': {
            'start': '2020-01-01',
            'end': None,
            'benchmark': None,
        },
        'optimization': [],
        'data': {
            'csv_dir': 'data',
        },
        'live': {
            'state_file': 'investments-state.json',
            'investment_id': 'default',
        },
        'mt5': {
            'login': 0,
            'password': "",
            'server': "",
            'path': "",
        },
        'results_dir': 'results',
        'log_level': 'INFO',
    }

    merged = _merge_dict(defaults, raw)

    try:
        strategy_cfg = StrategyConfig(
            name=str(merged['strategy'].get('name') or 'sma_baseline'),
            parameters=dict(merged['strategy'].get('parameters') or {}),
        )
        optimization = [
            OptimizationConfig(name=str(o['name']), start=o['start'], stop=o['stop'], step=o['step'])
            for o in merged.get('optimization') or []
        ]
        cfg = Config(
            strategy=strategy_cfg,
            tickers=[_ticker(t) for t in merged.get('tickers') or []],
            capital=str(merged.get('capital', '10000')),
            precision=int(merged.get('precision', 2)),
            quantity_type=QuantityType(str(merged.get('quantity_type', 'percent')).lower()),
            resolution=Resolution(str(merged.get('resolution', 'daily')).lower()),
            backtest=BacktestConfig(
                start=str(merged['backtest'].get('start')),
                end=_optional_str(merged['backtest'].get('end')),
                benchmark=_optional_str(merged['backtest'].get('benchmark')),
            ),
            optimization=optimization,
            data=DataConfig(**merged['data']),
            live=LiveConfig(**merged['live']),
            mt5=MT5Config(**merged['mt5']),
            results_dir=str(merged.get('results_dir', 'results')),
            log_level=str(merged.get('log_level', 'INFO')).upper(),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
    return cfg


def load_config(path: str) -> Config:
    """Load a configuration file from the given YAML path.

    Parameters
    ----------
    path : str
        Path to the YAML file.

    Returns
    -------
    Config
        A populated configuration object.  Missing fields are filled with
        sensible defaults defined in the dataclasses.
    """
    with open(path, "r", encoding="utf-8") as fh:
        raw: Dict[str, Any] = yaml.safe_load(fh) or {}
    return config_from_dict(raw)
