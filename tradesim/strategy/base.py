"""
Strategy base class: the capital and position ledger.

A strategy subclass implements its rules in the `on_open()` /
`on_close()` hooks and trades through `entry()`, `close_position()`
and `close_all()`.  The base class owns the money: initial, current
and available capital, the open positions and the append-only trade
log.  After every operation

    available == capital - sum(size committed to open positions)

All amounts are Decimals quantized to the precision given to
`set_capital()`.

The dispatchers (backtester and live investor) only call a hook when
the strategy declares it through the `HANDLES_OPEN` / `HANDLES_CLOSE`
capability flags.
"""

from __future__ import annotations

import copy
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union
import pandas as pd

from ..data.asset import Assets
from ..execution.errors import ConfigurationError, DataUnavailableError, StrategyError
from ..execution.models import Position, QuantityType, Side
from ..utils.money import HUNDRED, QUANTITY_PRECISION, ZERO, quantize, to_decimal
from ..utils.notifier import Notifier
from ..utils.timeutils import format_date, from_iso, to_iso


STATE_VERSION = 1

PositionCallback = Callable[[Position], None]


class BaseStrategy:
    """Ledger and lifecycle hooks shared by all strategies."""

    strategy_name = "Base Strategy"
    HANDLES_OPEN = False
    HANDLES_CLOSE = False
    default_parameters: Dict[str, Any] = {}

    def __init__(
        self,
        quantity_type: QuantityType = QuantityType.PERCENT,
        logger: Optional[logging.Logger] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.quantity_type = QuantityType(quantity_type)
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.notifier = notifier
        self.live = False
        self.precision = 2
        self.initial_capital: Optional[Decimal] = None
        self.capital: Optional[Decimal] = None
        self.capital_available: Optional[Decimal] = None
        self.open_position_size = ZERO
        self.peak_capital: Optional[Decimal] = None
        self.parameters: Dict[str, Any] = dict(self.default_parameters)
        self.tickers: List[str] = []
        self.start_date: Optional[pd.Timestamp] = None
        self.current_assets: Optional[Assets] = None
        self.current_date: Optional[pd.Timestamp] = None
        self.last_bar_date: Optional[pd.Timestamp] = None
        self._open_trades: Dict[str, Position] = {}
        self._trade_log: Dict[str, Position] = {}
        self._on_open_event: Optional[PositionCallback] = None
        self._on_close_event: Optional[PositionCallback] = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def get_strategy_name(self) -> str:
        return self.strategy_name

    @classmethod
    def identity(cls) -> str:
        """Fully qualified class name, stored in live state snapshots."""
        return f"{cls.__module__}.{cls.__qualname__}"

    def set_logger(self, logger: logging.Logger) -> None:
        self.logger = logger

    def set_notifier(self, notifier: Optional[Notifier]) -> None:
        self.notifier = notifier

    def set_live(self, live: bool = True) -> None:
        self.live = live

    def set_tickers(self, tickers: List[str]) -> None:
        self.tickers = list(tickers)

    def get_tickers(self) -> List[str]:
        return list(self.tickers)

    def set_start_date(self, start: pd.Timestamp) -> None:
        self.start_date = pd.Timestamp(start)

    def set_on_open_event(self, callback: Optional[PositionCallback]) -> None:
        self._on_open_event = callback

    def set_on_close_event(self, callback: Optional[PositionCallback]) -> None:
        self._on_close_event = callback

    def set_capital(self, amount: Union[str, int, Decimal], precision: int = 2) -> None:
        """Fund the ledger.  Capital can be set once per run.

        Raises
        ------
        ConfigurationError
            If capital was already set or `amount` is not a positive number.
        """
        if self.capital is not None:
            raise ConfigurationError(f"Capital already set to: {self.capital}")
        if precision < 0:
            raise ConfigurationError(f"Precision must not be negative: {precision}")
        try:
            value = quantize(amount, precision)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid capital: {amount!r}") from exc
        if value <= ZERO:
            raise ConfigurationError(f"Capital must be positive: {amount!r}")
        self.precision = precision
        self.initial_capital = value
        self.capital = value
        self.capital_available = value
        self.peak_capital = value

    def has_capital(self) -> bool:
        return self.capital is not None

    def get_capital(self, formatted: bool = False) -> Optional[Union[Decimal, str]]:
        if formatted and self.capital is not None:
            return f"{self.capital:,.{self.precision}f}"
        return self.capital

    def get_initial_capital(self) -> Optional[Decimal]:
        return self.initial_capital

    def get_available_capital(self) -> Optional[Decimal]:
        return self.capital_available

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------
    def get_parameters(self) -> Dict[str, Any]:
        return dict(self.parameters)

    def set_parameters(self, parameters: Dict[str, Any]) -> None:
        unknown = sorted(set(parameters) - set(self.default_parameters))
        if unknown:
            raise ConfigurationError(f"Unknown parameters for {self.strategy_name}: {unknown}")
        self.parameters.update(parameters)

    def max_lookback_period(self) -> int:
        """Number of bars the strategy needs before it can produce signals."""
        return 0

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------
    def on_open(self, assets: Assets, date: pd.Timestamp) -> None:
        self.current_assets = assets
        self.current_date = pd.Timestamp(date)

    def on_close(self, assets: Assets, date: pd.Timestamp) -> None:
        self.current_assets = assets
        self.current_date = pd.Timestamp(date)

    def on_strategy_end(self, assets: Assets, date: pd.Timestamp) -> None:
        self.current_assets = assets
        self.current_date = pd.Timestamp(date)

    def record_bar(self, assets: Assets) -> None:
        """Account one completed step for every open position.

        Updates each position's unrealized drawdown with the extremes of
        its ticker's latest full bar and increments its bar counter.
        Only tickers whose window ends on a fresh bar count; a series
        that got no new bar this step is not recorded again.
        """
        fresh = {asset.ticker: asset for asset in assets if asset.fresh}
        for position in self._open_trades.values():
            asset = fresh.get(position.ticker)
            if asset is None:
                continue
            bar = asset.latest()
            position.update_drawdown(bar.low, bar.high)
            position.increment_open_bars()
        dates = [asset.last_date() for asset in fresh.values()]
        if dates:
            latest = max(dates)
            if self.last_bar_date is None or latest > self.last_bar_date:
                self.last_bar_date = latest

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------
    def _money(self, value: Any) -> Decimal:
        return quantize(value, self.precision)

    def _require_capital(self) -> None:
        if self.capital is None:
            raise ConfigurationError("No capital set")

    def _current_price(self, ticker: str) -> Decimal:
        if self.current_assets is None:
            raise DataUnavailableError(f"No market data available for {ticker}")
        asset = self.current_assets.get_asset(ticker)
        if asset is None:
            raise DataUnavailableError(f"Asset not found in the asset list: {ticker}")
        price = asset.current_value()
        if price is None:
            raise DataUnavailableError(f"No current price for {ticker}")
        return price

    def calculate_position_size(self, price: Decimal, quantity: Any, quantity_type: QuantityType) -> Decimal:
        """Money committed by a request of `quantity` under `quantity_type`.

        Raises
        ------
        StrategyError
            For a percentage outside ``(0, 100]``, a non-positive unit
            count or an unknown quantity type.
        """
        try:
            qty = to_decimal(quantity)
        except ValueError as exc:
            raise StrategyError(f"Invalid position size: {quantity!r}") from exc
        if quantity_type is QuantityType.PERCENT:
            if qty <= ZERO or qty > HUNDRED:
                raise StrategyError("Quantity percentage must be between 0 and 100")
            return self._money(self.capital * qty / HUNDRED)
        if quantity_type is QuantityType.UNITS:
            if qty <= ZERO:
                raise StrategyError(f"Quantity must be positive: {qty}")
            return self._money(price * qty)
        raise StrategyError(f"Unknown quantity type: {quantity_type!r}")

    def entry(self, side: Union[Side, str], ticker: str, size: Any = "100", comment: str = "") -> str:
        """Open a position at the ticker's current price.

        Parameters
        ----------
        side : Side or str
            ``long`` or ``short``.
        ticker : str
            Must be present in the current asset window.
        size : str, int or Decimal
            Percent of current capital or number of units, depending on
            the strategy's quantity type.
        comment : str
            Free text stored on the position.

        Returns
        -------
        str
            The id of the new position.

        Raises
        ------
        StrategyError
            If the price is empty or zero, the size is invalid or the
            committed amount exceeds the available capital.  The ledger
            is left unchanged.
        """
        self._require_capital()
        try:
            side = Side(side)
        except ValueError as exc:
            raise StrategyError(f"Unknown side: {side!r}") from exc
        price = self._current_price(ticker)
        if price == ZERO:
            raise StrategyError(f"Price ({price}) cannot be empty or zero")
        committed = self.calculate_position_size(price, size, self.quantity_type)
        if committed <= ZERO:
            raise StrategyError(f"Position size ({committed}) rounds to zero at precision {self.precision}")
        if committed > self.capital_available:
            raise StrategyError(
                f"Position size ({committed}) is greater than the available capital ({self.capital_available})"
            )
        quantity = quantize(committed / price, QUANTITY_PRECISION)

        position = Position(
            side=side,
            ticker=ticker,
            open_time=self.current_date,
            open_price=price,
            quantity=quantity,
            open_size=committed,
            open_comment=comment,
            precision=self.precision,
        )
        self._open_trades[position.id] = position
        self._trade_log[position.id] = position
        self.open_position_size += committed
        self.capital_available = self.capital - self.open_position_size

        self.logger.info(
            "[%s][%s] %s @ %s, total size: %s, equity: %s%s",
            format_date(self.current_date), position.id, side.value, price, committed,
            self.capital, f" ({comment})" if comment else "",
        )
        if self._on_open_event is not None:
            self._on_open_event(position)
        return position.id

    def _close(self, position: Position, price: Decimal, comment: str) -> None:
        realized = self._money(price * position.quantity)
        position.close(self.current_date, price, realized, comment)
        del self._open_trades[position.id]

        self.capital = self.capital + position.profit_amount
        self.open_position_size -= position.open_size
        self.capital_available = self.capital - self.open_position_size

        if self.capital > self.peak_capital:
            self.peak_capital = self.capital
        drawdown = self.peak_capital - self.capital
        percent = quantize(drawdown * HUNDRED / self.peak_capital, 4) if self.peak_capital > ZERO else ZERO
        position.set_strategy_drawdown(drawdown, percent)

        self.logger.info(
            "[%s][%s] CLOSE @ %s, profit: %s%% == %s, equity: %s%s",
            format_date(self.current_date), position.id, price, position.profit_percent,
            position.profit_amount, self.capital, f" ({comment})" if comment else "",
        )
        if self._on_close_event is not None:
            self._on_close_event(position)

    def close_position(self, position_id: str, comment: str = "") -> Position:
        """Close one open position at the current price of its ticker.

        Raises
        ------
        StrategyError
            If no open position has this id.
        DataUnavailableError
            If the position's ticker has no price in the current window.
        """
        position = self._open_trades.get(position_id)
        if position is None:
            raise StrategyError(f"No open position with id {position_id}")
        price = self._current_price(position.ticker)
        self._close(position, price, comment)
        return position

    def close_all(self, comment: str = "") -> List[Position]:
        """Close every open position at market.

        Prices for all open positions are resolved before anything is
        closed, so a missing asset leaves the ledger untouched.

        Raises
        ------
        DataUnavailableError
            If an open position's ticker is missing from the current window.
        """
        prices = {pid: self._current_price(pos.ticker) for pid, pos in self._open_trades.items()}
        closed = []
        for pid, position in list(self._open_trades.items()):
            self._close(position, prices[pid], comment)
            closed.append(position)
        self.open_position_size = ZERO
        self.capital_available = self.capital
        return closed

    def get_open_profit_percent(self, position: Position) -> Decimal:
        """Mark an open position to market and return its profit percent."""
        price = self._current_price(position.ticker)
        position.mark(price, self._money(price * position.quantity))
        return position.profit_percent

    def has_open_trades(self) -> bool:
        return bool(self._open_trades)

    def get_open_trades(self) -> Dict[str, Position]:
        return dict(self._open_trades)

    def get_open_position(self, position_id: str) -> Optional[Position]:
        return self._open_trades.get(position_id)

    def get_trade_log(self) -> Dict[str, Position]:
        """All positions of the run, ordered by close time.

        Ties on close time keep opening order; open positions have no
        close time and come last, in the order they were opened.
        """
        entries = list(self._trade_log.values())
        order = {pid: i for i, pid in enumerate(self._trade_log)}
        entries.sort(key=lambda p: (p.is_open, p.close_time if p.close_time is not None else pd.Timestamp.max,
                                    order[p.id]))
        return {p.id: p for p in entries}

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def export_strategy_state(self) -> Dict[str, Any]:
        """Strategy-specific state to persist between live invocations."""
        return {}

    def import_strategy_state(self, state: Dict[str, Any]) -> None:
        """Restore what `export_strategy_state()` produced."""

    def to_state(self) -> Dict[str, Any]:
        """Serialise the ledger to the versioned state-file record."""
        return {
            'version': STATE_VERSION,
            'name': self.identity(),
            'capital': None if self.capital is None else str(self.capital),
            'initial_capital': None if self.initial_capital is None else str(self.initial_capital),
            'precision': self.precision,
            'quantity_type': self.quantity_type.value,
            'parameters': self.get_parameters(),
            'current_positions': self.export_strategy_state(),
            'open_trades': list(self._open_trades),
            'trade_log': [p.to_dict() for p in self._trade_log.values()],
            'last_bar_date': to_iso(self.last_bar_date),
        }

    def restore_state(self, state: Dict[str, Any]) -> None:
        """Load a record written by `to_state()` into a fresh ledger.

        Raises
        ------
        ConfigurationError
            If this ledger already has capital or trades.
        ValueError, KeyError
            If the record is malformed or of an unsupported version.
        """
        if self.capital is not None or self._trade_log:
            raise ConfigurationError("Cannot restore state into a ledger that is already in use")
        version = int(state.get('version', STATE_VERSION))
        if version > STATE_VERSION:
            raise ValueError(f"Unsupported state version {version} (supported: {STATE_VERSION})")

        precision = int(state.get('precision', 2))
        capital = None if state.get('capital') in (None, "") else quantize(state['capital'], precision)
        initial = state.get('initial_capital')
        initial_capital = capital if initial in (None, "") else quantize(initial, precision)
        quantity_type = QuantityType(state.get('quantity_type', self.quantity_type.value))

        trade_log: Dict[str, Position] = {}
        for record in state.get('trade_log', []):
            position = Position.from_dict(record)
            trade_log[position.id] = position
        open_trades: Dict[str, Position] = {}
        for pid in state.get('open_trades', []):
            position = trade_log.get(pid)
            if position is None or not position.is_open:
                raise ValueError(f"Open trade {pid} is not an open position of the trade log")
            open_trades[pid] = position
        dangling = [p.id for p in trade_log.values() if p.is_open and p.id not in open_trades]
        if dangling:
            raise ValueError(f"Trade log has open positions missing from open trades: {dangling}")
        if trade_log and capital is None:
            raise ValueError("State has trades but no capital")

        last_bar_date = from_iso(state.get('last_bar_date'))

        # Strategy-specific state first: the ledger stays untouched if it fails.
        previous_parameters = self.get_parameters()
        previous_strategy_state = self.export_strategy_state()
        try:
            parameters = state.get('parameters') or {}
            if parameters:
                self.set_parameters(parameters)
            self.import_strategy_state(state.get('current_positions') or {})
        except Exception:
            self.parameters = previous_parameters
            self.import_strategy_state(previous_strategy_state)
            raise

        self.quantity_type = quantity_type
        self.precision = precision
        self.capital = capital
        self.initial_capital = initial_capital
        self._trade_log = trade_log
        self._open_trades = open_trades
        self.open_position_size = sum((p.open_size for p in open_trades.values()), ZERO)
        self.capital_available = None if capital is None else capital - self.open_position_size
        self.peak_capital = self._replay_peak()
        self.last_bar_date = last_bar_date

    def _replay_peak(self) -> Optional[Decimal]:
        if self.initial_capital is None:
            return None
        peak = balance = self.initial_capital
        for position in self.get_trade_log().values():
            if position.is_open:
                break
            balance += position.profit_amount
            peak = max(peak, balance)
        return peak

    def clone(self) -> "BaseStrategy":
        """Independent copy of an untraded strategy for another run.

        Logger, notifier and event callbacks are shared; everything else,
        including subclass state, is deep-copied.
        """
        if self._trade_log:
            raise ConfigurationError("Cannot clone a strategy that has already traded")
        memo: Dict[int, Any] = {}
        for shared in (self.logger, self.notifier, self._on_open_event, self._on_close_event):
            if shared is not None:
                memo[id(shared)] = shared
        if self.current_assets is not None:
            memo[id(self.current_assets)] = None
        return copy.deepcopy(self, memo)
