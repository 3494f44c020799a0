"""
Exception hierarchy.

Configuration errors are raised before a run starts, strategy errors
when a ledger rule is violated, data errors when market data needed to
keep the ledger consistent is missing.  External I/O problems (quote
sources, state files) are not represented here: they are logged as
warnings where they happen.
"""

from __future__ import annotations


class TradeSimError(Exception):
    """Base class for all errors raised by the simulator."""


class ConfigurationError(TradeSimError):
    """Missing or inconsistent setup (strategy, capital, assets, parameters)."""


class BacktestError(ConfigurationError):
    """The dispatcher cannot start a run."""


class StrategyError(TradeSimError):
    """A ledger rule was violated by an entry or exit request."""


class DataUnavailableError(TradeSimError):
    """Market data required by the ledger is missing."""


class InvestorError(TradeSimError):
    """The live engine was used incorrectly."""
