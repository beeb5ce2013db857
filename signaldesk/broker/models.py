"""Broker data models — typed representations of bridge API objects."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PriceQuote:
    """Current bid/ask for a symbol."""

    bid: float
    ask: float

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2

    @property
    def spread(self) -> float:
        return self.ask - self.bid


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar, oldest-first when in a sequence."""

    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: str


@dataclass(frozen=True)
class AccountSummary:
    """Summary of a connected trading account."""

    balance: float
    equity: float
    margin: float
    free_margin: float
    leverage: float
    currency: str


@dataclass(frozen=True)
class Position:
    """An open position."""

    position_id: str
    symbol: str
    type: str  # "buy" or "sell"
    volume: float
    open_price: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    profit: float = 0.0


@dataclass(frozen=True)
class OrderResult:
    """Response from placing a market order."""

    order_id: str
    symbol: str
    type: str
    volume: float
    price: float
    stop_loss: float
    take_profit: float
    time: str = ""


@dataclass(frozen=True)
class ClosedPosition:
    """A position the broker closed, with the price and cause of the exit."""

    position: Position
    exit_price: float
    reason: str  # "SL hit", "TP hit" or "closed"
    time: str = ""
