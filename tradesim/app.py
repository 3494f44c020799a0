"""
Application entry point.

This module defines a simple command-line interface for running the
simulator in different modes (backtest, optimize, live).  It leverages
the modules under `tradesim/` to load configuration, execute backtests,
drive live strategies and generate reports.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .config.schema import Config, load_config
from .data.asset import Assets
from .data.csv_data import CSVAssetStore
from .data.mt5_data import MT5QuoteSource
from .execution.backtest_exec import Backtester, OptimizationParam
from .execution.errors import TradeSimError
from .execution.live_exec import Investment, Investor
from .execution.models import Event
from .reporting.report import generate_backtest_report, generate_optimization_report
from .strategy.base import BaseStrategy
from .strategy.registry import get_strategy
from .utils.notifier import LogNotifier


def _setup_logging(verbose: bool, level_name: str = "INFO") -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def _build_strategy(config: Config) -> BaseStrategy:
    strategy_cls = get_strategy(config.strategy.name)
    strategy = strategy_cls(quantity_type=config.quantity_type)
    if config.strategy.parameters:
        strategy.set_parameters(config.strategy.parameters)
    strategy.set_tickers([t.symbol for t in config.tickers])
    return strategy


def _load_assets(config: Config, store: CSVAssetStore) -> Assets:
    assets = Assets()
    for ticker in config.tickers:
        assets.add_asset(store.load(ticker.symbol, ticker.exchange))
    return assets


def run_backtest(config: Config, optimize: bool = False) -> None:
    store = CSVAssetStore(config.data.csv_dir)
    assets = _load_assets(config, store)
    strategy = _build_strategy(config)
    strategy.set_capital(config.capital, config.precision)

    backtester = Backtester(resolution=config.resolution)
    backtester.set_strategy(strategy)
    if config.backtest.benchmark:
        backtester.set_benchmark(store.load(config.backtest.benchmark))
    params = None
    if optimize:
        params = [OptimizationParam(o.name, o.start, o.stop, o.step) for o in config.optimization]
        if not params:
            logging.warning("No optimization parameters configured, running a single backtest")
    results = backtester.run(assets, config.backtest.start, config.backtest.end, optimization_params=params)

    if backtester.get_strategies() is not None:
        table = generate_optimization_report(results, out_dir=config.results_dir)
        logging.info("Optimization complete: %d runs. Results saved to the '%s' directory.",
                     len(table), config.results_dir)
        return

    stats = backtester.get_trade_stats()
    generate_backtest_report(strategy, stats, out_dir=config.results_dir)
    logging.info(
        "Backtest complete. Net profit: %s (%s%%), trades: %d. Results saved to the '%s' directory.",
        stats.net_profit, stats.net_profit_percent, stats.all.trades, config.results_dir,
    )


def run_live(config: Config, event: Event) -> None:
    store = CSVAssetStore(config.data.csv_dir)
    assets = _load_assets(config, store)
    strategy = _build_strategy(config)
    source = MT5QuoteSource(config.mt5)

    investor = Investor(config.live.state_file, notifier=LogNotifier())
    investor.add_investment(
        config.live.investment_id,
        Investment(strategy, source, assets, store=store, capital=config.capital, precision=config.precision),
    )
    try:
        investor.load_state()
        investor.update_sources()
        investor.execute(event)
    finally:
        source.shutdown()


def main(argv: Optional[List[str]] = None) -> None:
    """Parse command-line arguments and dispatch to the appropriate mode."""
    parser = argparse.ArgumentParser(description="Trading strategy simulator")
    parser.add_argument('mode', choices=['backtest', 'optimize', 'live'], help="Operating mode")
    parser.add_argument('--config', default='config.yaml', help="Path to configuration YAML file")
    parser.add_argument('--event', choices=[e.value for e in Event], default=Event.CLOSE.value,
                        help="Session event to execute in live mode")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    _setup_logging(args.verbose, config.log_level)

    try:
        if args.mode == 'live':
            logging.info("Running live %s event...", args.event)
            run_live(config, Event(args.event))
        else:
            logging.info("Running %s...", args.mode)
            run_backtest(config, optimize=args.mode == 'optimize')
    except TradeSimError as exc:
        logging.error("%s failed: %s", args.mode, exc)
        raise SystemExit(1) from exc


if __name__ == '__main__':
    main()
