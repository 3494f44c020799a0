"""
Live execution engine.

An `Investor` drives one or more strategies against real market data,
one process invocation per session event.  A typical daily cycle is a
cron job that runs::

    tradesim live --event open    # before the session opens
    tradesim live --event close   # after the session closes

Each invocation restores the ledgers from the JSON state file, refreshes
the price series from the quote source, calls the strategy hook for the
event and writes the ledgers back.  The state file is written even when
a strategy raised, so a failed session never loses positions opened
earlier in the same run.

Notifications collected during the run are delivered once at process
exit through a `ShutdownScheduler`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import pandas as pd

from ..data.asset import Assets, Ohlc
from ..execution.errors import ConfigurationError, InvestorError
from ..execution.models import Event, Position
from ..strategy.base import BaseStrategy
from ..utils import persistence
from ..utils.notifier import Notifier
from ..utils.shutdown import ShutdownScheduler
from ..utils.timeutils import DateLike, days_between, format_date, parse_date


class QuoteSource(Protocol):
    def get_quotes(self, symbol: str, exchange: str, interval: str, bar_count: int) -> List[Ohlc]: ...


class AssetStore(Protocol):
    def save(self, asset: Any) -> None: ...


@dataclass
class Investment:
    """A strategy together with the data it trades.

    Attributes
    ----------
    strategy : BaseStrategy
        The strategy runtime; its ledger is restored from and saved to
        the state file.
    source : QuoteSource
        Where fresh bars come from.
    assets : Assets
        Price series the strategy trades, refreshed in place.
    store : AssetStore, optional
        Persists refreshed series (e.g. `CSVAssetStore`).
    capital : str, optional
        Starting capital for a strategy without saved state.
    precision : int
        Decimal places of money amounts for a fresh ledger.
    """

    strategy: BaseStrategy
    source: Optional[QuoteSource]
    assets: Assets
    store: Optional[AssetStore] = None
    capital: Optional[str] = None
    precision: int = 2


class Investor:
    """Run strategies live, one session event per call."""

    def __init__(
        self,
        state_file: str,
        now: Optional[DateLike] = None,
        logger: Optional[logging.Logger] = None,
        notifier: Optional[Notifier] = None,
        scheduler: Optional[ShutdownScheduler] = None,
    ) -> None:
        self.state_file = state_file
        self.now = parse_date(now) if now is not None else pd.Timestamp.now().normalize()
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.scheduler = scheduler if scheduler is not None else ShutdownScheduler()
        self.notifier: Optional[Notifier] = None
        self._scheduled: List[int] = []
        self.investments: Dict[str, Investment] = {}
        if notifier is not None:
            self.set_notifier(notifier)

    def set_logger(self, logger: logging.Logger) -> None:
        self.logger = logger

    def set_notifier(self, notifier: Notifier) -> None:
        """Attach the notifier and schedule its flush for process exit."""
        self.notifier = notifier
        if id(notifier) not in self._scheduled:
            self.scheduler.register(notifier.send_all_notifications)
            self._scheduled.append(id(notifier))

    def add_investment(self, investment_id: str, investment: Investment) -> None:
        if investment_id in self.investments:
            raise InvestorError(f"Investment already exists: {investment_id}")
        self.investments[investment_id] = investment

    def get_investment(self, investment_id: str) -> Optional[Investment]:
        return self.investments.get(investment_id)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def _fund(self, investment_id: str, investment: Investment) -> None:
        strategy = investment.strategy
        if strategy.has_capital():
            return
        if investment.capital is None:
            self.logger.warning("No saved state and no capital configured for %s", investment_id)
            return
        strategy.set_capital(investment.capital, investment.precision)

    def load_state(self) -> None:
        """Restore every investment's ledger from the state file.

        A missing or empty file starts every investment fresh.  An
        unreadable or corrupt file, an unsupported record or a record of
        another strategy is logged and the affected investments start
        fresh as well.
        """
        try:
            state = persistence.load_state(self.state_file) or {}
        except (OSError, ValueError) as exc:
            self.logger.warning("Could not read state file %s, starting fresh: %s", self.state_file, exc)
            state = {}
        self.logger.info("Loading state for %d investments.", len(state))

        for investment_id, investment in self.investments.items():
            record = state.get(investment_id)
            strategy = investment.strategy
            if isinstance(record, dict):
                if record.get('name') != strategy.identity():
                    self.logger.warning(
                        "State of %s belongs to %s, not %s; starting fresh",
                        investment_id, record.get('name'), strategy.identity(),
                    )
                else:
                    try:
                        strategy.restore_state(record)
                    except (ValueError, KeyError, TypeError, ConfigurationError) as exc:
                        self.logger.warning("Could not restore state of %s, starting fresh: %s", investment_id, exc)
            elif record is not None:
                self.logger.warning("State of %s is not an object; starting fresh", investment_id)
            self._fund(investment_id, investment)

    def save_state(self) -> None:
        state = {investment_id: inv.strategy.to_state() for investment_id, inv in self.investments.items()}
        self.logger.info("Saving state for %d investments.", len(state))
        try:
            persistence.save_state(self.state_file, state)
        except OSError as exc:
            self.logger.warning("Could not write state file %s: %s", self.state_file, exc)

    # ------------------------------------------------------------------
    # Data refresh
    # ------------------------------------------------------------------
    def _days_to_get(self, latest: Optional[pd.Timestamp], start: pd.Timestamp) -> int:
        if latest is not None and latest >= self.now:
            return 0
        if latest is None or latest <= start:
            days = days_between(start, self.now)
        else:
            days = days_between(latest, self.now) - 1
        # Bar counts, not calendar days: always ask for at least the latest bar.
        return max(days, 1)

    def update_sources(self) -> None:
        """Fetch the bars each asset is missing and append them.

        Source failures and empty answers are logged and the asset is
        used as it is.
        """
        for investment_id, investment in self.investments.items():
            strategy = investment.strategy
            start = self.now - pd.Timedelta(days=strategy.max_lookback_period())
            self.logger.info("Updating data of %s, need data from %s", investment_id, format_date(start))
            if investment.source is None:
                self.logger.warning("No quote source for %s", investment_id)
                continue

            for asset in investment.assets:
                days = self._days_to_get(asset.last_date(), start)
                self.logger.info("Days to get for %s: %d", asset.ticker, days)
                if days <= 0:
                    continue
                try:
                    quotes = investment.source.get_quotes(asset.ticker, asset.exchange, "1D", days)
                except Exception as exc:
                    self.logger.warning("Could not load quotes for %s: %s", asset.ticker, exc)
                    continue
                if not quotes:
                    self.logger.warning("Could not load any data from the source for %s", asset.ticker)
                    continue
                added = asset.append(quotes)
                self.logger.info("Found %d quotes for %s, %d new", len(quotes), asset.ticker, added)
                if added and investment.store is not None:
                    try:
                        investment.store.save(asset)
                    except OSError as exc:
                        self.logger.warning("Could not save data of %s: %s", asset.ticker, exc)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def _wire_events(self, strategy: BaseStrategy) -> None:
        notifier = self.notifier

        def on_open(position: Position) -> None:
            notifier.notify_info(
                f"Open {position.side.value} {position.ticker} @ {position.open_price}, "
                f"size {position.open_size} ({position.id})"
            )

        def on_close(position: Position) -> None:
            notifier.notify_info(
                f"Close {position.side.value} {position.ticker} @ {position.close_price}, "
                f"profit {position.profit_amount} ({position.profit_percent}%) ({position.id})"
            )

        strategy.set_on_open_event(on_open)
        strategy.set_on_close_event(on_close)

    def execute(self, event: Event) -> None:
        """Run every investment's hook for `event` at `now` and save state.

        Raises
        ------
        InvestorError
            If no notifier is attached.
        Exception
            The first exception raised by a strategy, after the other
            investments ran and the state file was written.
        """
        event = Event(event)
        if self.notifier is None:
            raise InvestorError("Notifier is not set.")

        errors: List[BaseException] = []
        try:
            for investment_id, investment in self.investments.items():
                strategy = investment.strategy
                self.logger.info(
                    "Executing the '%s' investment (%s), starting capital: %s.",
                    investment_id, event.value, strategy.get_capital(formatted=True),
                )
                strategy.set_live(True)
                strategy.set_notifier(self.notifier)
                self._wire_events(strategy)
                # At the close a bar is fresh when it is newer than the last one recorded.
                fresh_after = strategy.last_bar_date if event is Event.CLOSE else None
                window = investment.assets.window(self.now, event, fresh_after=fresh_after)
                try:
                    if event is Event.OPEN and strategy.HANDLES_OPEN:
                        strategy.on_open(window, self.now)
                    elif event is Event.CLOSE:
                        if strategy.HANDLES_CLOSE:
                            strategy.on_close(window, self.now)
                        strategy.record_bar(window)
                except Exception as exc:
                    self.logger.exception("Strategy of '%s' failed on %s", investment_id, event.value)
                    self.notifier.notify_error(f"Investment '{investment_id}' failed: {exc}")
                    errors.append(exc)
        finally:
            self.save_state()
        if errors:
            raise errors[0]
