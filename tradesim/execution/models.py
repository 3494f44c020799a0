"""
Enumerations and the position model.

These types are shared by the ledger, the backtest dispatcher, the
live engine and the statistics engine.  Keeping them in a separate
module improves readability and makes unit testing easier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import uuid
import pandas as pd

from .errors import StrategyError
from ..utils.money import HUNDRED, ZERO, quantize, to_decimal
from ..utils.timeutils import from_iso, to_iso


class Side(str, Enum):
    LONG = "long"
    SHORT = "short"


class QuantityType(str, Enum):
    """How the size passed to `entry()` is interpreted."""
    PERCENT = "percent"  # percent of current capital
    UNITS = "units"      # number of instrument units


class Event(str, Enum):
    """Moment of the session a strategy hook runs at."""
    OPEN = "open"
    CLOSE = "close"


class Resolution(str, Enum):
    """Simulation step size."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    def offset(self) -> pd.DateOffset:
        if self is Resolution.DAILY:
            return pd.DateOffset(days=1)
        if self is Resolution.WEEKLY:
            return pd.DateOffset(weeks=1)
        return pd.DateOffset(months=1)


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


def _new_position_id(ticker: str, side: Side) -> str:
    return f"{ticker}-{side.value}-{uuid.uuid4().hex[:13]}"


@dataclass
class Position:
    """One trade from entry to exit.

    Money fields are Decimals quantized to `precision` places.  While
    the position is open, `price` and `size` hold the latest
    mark-to-market values; `close()` fixes the close fields and the
    position becomes read-only.
    """
    side: Side
    ticker: str
    open_time: pd.Timestamp
    open_price: Decimal
    quantity: Decimal
    open_size: Decimal
    open_comment: str = ""
    precision: int = 2
    id: str = ""
    status: PositionStatus = PositionStatus.OPEN
    price: Optional[Decimal] = None
    size: Optional[Decimal] = None
    close_time: Optional[pd.Timestamp] = None
    close_price: Optional[Decimal] = None
    close_size: Optional[Decimal] = None
    close_comment: str = ""
    open_bars: int = 0
    max_drawdown_value: Decimal = field(default=ZERO)
    max_drawdown_percent: Decimal = field(default=ZERO)
    strategy_drawdown_value: Optional[Decimal] = None
    strategy_drawdown_percent: Optional[Decimal] = None

    def __post_init__(self) -> None:
        if not self.id:
            self.id = _new_position_id(self.ticker, self.side)
        if self.price is None:
            self.price = self.open_price
        if self.size is None:
            self.size = self.open_size

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status is PositionStatus.CLOSED

    def _ensure_open(self, action: str) -> None:
        if self.is_closed:
            raise StrategyError(f"Cannot {action}: position {self.id} is already closed")

    def mark(self, price: Decimal, size: Decimal) -> None:
        """Record the current market price and value of an open position."""
        self._ensure_open("mark to market")
        self.price = price
        self.size = size

    def close(self, close_time: pd.Timestamp, price: Decimal, size: Decimal, comment: str = "") -> None:
        self._ensure_open("close")
        self.price = price
        self.size = size
        self.close_time = pd.Timestamp(close_time)
        self.close_price = price
        self.close_size = size
        self.close_comment = comment
        self.status = PositionStatus.CLOSED

    def increment_open_bars(self) -> int:
        self._ensure_open("count bars")
        self.open_bars += 1
        return self.open_bars

    def update_drawdown(self, low: Any, high: Any) -> None:
        """Track the worst unrealized loss seen while the position is open.

        `low` and `high` are the extremes of the bar just observed.  A long
        position loses when the price trades below its entry, a short one
        when it trades above.
        """
        self._ensure_open("update drawdown")
        if self.side is Side.LONG:
            adverse = self.open_price - to_decimal(low)
        else:
            adverse = to_decimal(high) - self.open_price
        if adverse <= ZERO:
            return
        value = quantize(self.quantity * adverse, self.precision)
        if value > self.max_drawdown_value:
            self.max_drawdown_value = value
            self.max_drawdown_percent = (
                quantize(value * HUNDRED / self.open_size, 4) if self.open_size else ZERO
            )

    def set_strategy_drawdown(self, value: Decimal, percent: Decimal) -> None:
        if self.strategy_drawdown_value is not None:
            raise StrategyError(f"Strategy drawdown already set for position {self.id}")
        self.strategy_drawdown_value = value
        self.strategy_drawdown_percent = percent

    @property
    def current_size(self) -> Decimal:
        return self.close_size if self.close_size is not None else self.size

    @property
    def profit_amount(self) -> Decimal:
        """Realized profit once closed, unrealized (last mark) while open."""
        if self.side is Side.LONG:
            return self.current_size - self.open_size
        return self.open_size - self.current_size

    @property
    def profit_percent(self) -> Decimal:
        if not self.open_size:
            return ZERO
        return quantize(self.profit_amount * HUNDRED / self.open_size, 4)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the explicit state-file schema."""
        def _dec(value: Optional[Decimal]) -> Optional[str]:
            return None if value is None else str(value)

        return {
            'id': self.id,
            'side': self.side.value,
            'ticker': self.ticker,
            'status': self.status.value,
            'precision': self.precision,
            'open_time': to_iso(self.open_time),
            'open_price': _dec(self.open_price),
            'quantity': _dec(self.quantity),
            'open_size': _dec(self.open_size),
            'open_comment': self.open_comment,
            'price': _dec(self.price),
            'size': _dec(self.size),
            'close_time': to_iso(self.close_time),
            'close_price': _dec(self.close_price),
            'close_size': _dec(self.close_size),
            'close_comment': self.close_comment,
            'open_bars': self.open_bars,
            'max_drawdown_value': _dec(self.max_drawdown_value),
            'max_drawdown_percent': _dec(self.max_drawdown_percent),
            'strategy_drawdown_value': _dec(self.strategy_drawdown_value),
            'strategy_drawdown_percent': _dec(self.strategy_drawdown_percent),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        """Rebuild a position written by `to_dict()`.

        Raises
        ------
        KeyError, ValueError
            If a required field is missing or malformed.
        """
        def _dec(key: str, default: Optional[Decimal] = None) -> Optional[Decimal]:
            value = data.get(key)
            return default if value is None else to_decimal(value)

        status = PositionStatus(data.get('status', PositionStatus.OPEN.value))
        position = cls(
            side=Side(data['side']),
            ticker=data['ticker'],
            open_time=from_iso(data['open_time']),
            open_price=to_decimal(data['open_price']),
            quantity=to_decimal(data['quantity']),
            open_size=to_decimal(data['open_size']),
            open_comment=data.get('open_comment', ''),
            precision=int(data.get('precision', 2)),
            id=data['id'],
            status=status,
            price=_dec('price'),
            size=_dec('size'),
            close_time=from_iso(data.get('close_time')),
            close_price=_dec('close_price'),
            close_size=_dec('close_size'),
            close_comment=data.get('close_comment', ''),
            open_bars=int(data.get('open_bars', 0)),
            max_drawdown_value=_dec('max_drawdown_value', ZERO),
            max_drawdown_percent=_dec('max_drawdown_percent', ZERO),
            strategy_drawdown_value=_dec('strategy_drawdown_value'),
            strategy_drawdown_percent=_dec('strategy_drawdown_percent'),
        )
        if position.is_closed and (position.close_time is None or position.close_size is None
                                   or position.close_price is None):
            raise ValueError(f"Closed position {position.id} is missing its close fields")
        return position
