"""Connection protocol — the narrow broker interface strategies depend on.

Strategies and the supervisor only ever call the methods declared here,
so any duck-type that provides them (the bridge client, the paper
connection, a backtest replay, a test mock) can be plugged in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from signaldesk.broker.models import Candle, OrderResult, Position, PriceQuote


@dataclass
class TerminalState:
    """Synchronisation gate reported by the trading terminal."""

    synchronized: bool = False


@runtime_checkable
class ConnectionProtocol(Protocol):
    """Interface every broker connection must satisfy."""

    terminal_state: TerminalState

    async def get_symbol_price(self, symbol: str) -> PriceQuote:
        """Return the current quote for *symbol*."""
        ...

    async def get_candles(
        self, symbol: str, timeframe: str, count: int,
    ) -> list[Candle]:
        """Return the last *count* candles, oldest first."""
        ...

    async def get_positions(self) -> list[Position]:
        """Return all open positions."""
        ...

    async def create_market_buy_order(
        self, symbol: str, volume: float, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        """Open a long position at market."""
        ...

    async def create_market_sell_order(
        self, symbol: str, volume: float, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        """Open a short position at market."""
        ...
