"""Paper connection — a self-contained fake broker for paper mode and demos.

Generates a seeded random-walk price series, answers quotes and candles
from it and records market orders as open positions.  Every step of the
walk settles open positions whose stop-loss or take-profit was crossed.
No network.
"""

import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from signaldesk.broker.connection import TerminalState
from signaldesk.broker.models import (
    Candle,
    ClosedPosition,
    OrderResult,
    Position,
    PriceQuote,
)

# Reference prices per symbol; unknown symbols start at 1.0
_BASE_PRICES: dict[str, float] = {
    "XAUUSD": 2000.0,
    "EURUSD": 1.1000,
    "GBPUSD": 1.2700,
    "USDJPY": 150.00,
}

# Fixed quoted spreads; other symbols use spread_fraction of price
_FIXED_SPREADS: dict[str, float] = {
    "XAUUSD": 0.70,
}

_TIMEFRAME_MINUTES: dict[str, int] = {
    "1m": 1, "5m": 5, "15m": 15, "30m": 30, "1h": 60, "4h": 240, "1d": 1440,
}


class PaperConnection:
    """In-memory ``ConnectionProtocol`` implementation.

    Args:
        seed: Random seed so a session is reproducible.
        volatility: Per-bar relative standard deviation of the walk.
        spread_fraction: Quoted spread as a fraction of price.
        synchronized: Initial terminal synchronisation flag.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        volatility: float = 0.0008,
        spread_fraction: float = 0.0002,
        synchronized: bool = True,
    ) -> None:
        self._rng = random.Random(seed)
        self._volatility = volatility
        self._spread_fraction = spread_fraction
        self._last_price: dict[str, float] = {}
        self._positions: list[Position] = []
        self._closed: dict[str, ClosedPosition] = {}
        self.terminal_state = TerminalState(synchronized=synchronized)

    def _step(self, symbol: str) -> float:
        price = self._last_price.get(symbol, _BASE_PRICES.get(symbol, 1.0))
        price *= 1 + self._rng.gauss(0.0, self._volatility)
        self._last_price[symbol] = price
        self._settle(symbol, self._quote_at(symbol, price))
        return price

    def _quote_at(self, symbol: str, mid: float) -> PriceQuote:
        spread = _FIXED_SPREADS.get(symbol, mid * self._spread_fraction)
        half = spread / 2
        return PriceQuote(bid=mid - half, ask=mid + half)

    def _settle(self, symbol: str, quote: PriceQuote) -> None:
        """Close positions on *symbol* whose stop or target *quote* crossed.

        Buys exit on the bid, sells on the ask, at the level itself.
        """
        still_open: list[Position] = []
        for p in self._positions:
            exit_ = None
            if p.symbol == symbol:
                exit_ = _crossed_level(p, quote.bid if p.type == "buy" else quote.ask)
            if exit_ is None:
                still_open.append(p)
                continue
            price, reason = exit_
            self._closed[p.position_id] = ClosedPosition(
                position=p,
                exit_price=price,
                reason=reason,
                time=datetime.now(timezone.utc).isoformat(),
            )
        self._positions = still_open

    async def get_symbol_price(self, symbol: str) -> PriceQuote:
        return self._quote_at(symbol, self._step(symbol))

    async def get_candles(
        self, symbol: str, timeframe: str, count: int,
    ) -> list[Candle]:
        minutes = _TIMEFRAME_MINUTES.get(timeframe, 1)
        start = datetime.now(timezone.utc) - timedelta(minutes=minutes * count)
        candles: list[Candle] = []
        close = self._last_price.get(symbol, _BASE_PRICES.get(symbol, 1.0))
        for i in range(count):
            open_ = close
            close = self._step(symbol)
            wick = abs(self._rng.gauss(0.0, self._volatility)) * open_
            candles.append(
                Candle(
                    open=open_,
                    high=max(open_, close) + wick,
                    low=min(open_, close) - wick,
                    close=close,
                    volume=float(self._rng.randint(50, 500)),
                    timestamp=(start + timedelta(minutes=minutes * i)).isoformat(),
                )
            )
        return candles

    async def get_positions(self) -> list[Position]:
        return list(self._positions)

    async def create_market_buy_order(
        self, symbol: str, volume: float, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        return await self._fill("buy", symbol, volume, stop_loss, take_profit)

    async def create_market_sell_order(
        self, symbol: str, volume: float, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        return await self._fill("sell", symbol, volume, stop_loss, take_profit)

    async def _fill(
        self,
        order_type: str,
        symbol: str,
        volume: float,
        stop_loss: float,
        take_profit: float,
    ) -> OrderResult:
        quote = await self.get_symbol_price(symbol)
        price = quote.ask if order_type == "buy" else quote.bid
        order_id = uuid.uuid4().hex[:12]
        self._positions.append(
            Position(
                position_id=order_id,
                symbol=symbol,
                type=order_type,
                volume=volume,
                open_price=price,
                stop_loss=stop_loss,
                take_profit=take_profit,
            )
        )
        return OrderResult(
            order_id=order_id,
            symbol=symbol,
            type=order_type,
            volume=volume,
            price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            time=datetime.now(timezone.utc).isoformat(),
        )

    def close_position(self, position_id: str) -> Optional[Position]:
        """Remove a paper position and return it, or ``None`` if unknown."""
        for i, p in enumerate(self._positions):
            if p.position_id == position_id:
                closed = self._positions.pop(i)
                quote = self._quote_at(
                    p.symbol, self._last_price.get(p.symbol, p.open_price),
                )
                self._closed[position_id] = ClosedPosition(
                    position=closed,
                    exit_price=quote.bid if p.type == "buy" else quote.ask,
                    reason="closed",
                    time=datetime.now(timezone.utc).isoformat(),
                )
                return closed
        return None

    def closed_position(self, position_id: str) -> Optional[ClosedPosition]:
        """Exit details of a position this connection closed."""
        return self._closed.get(position_id)


def _crossed_level(position: Position, price: float) -> Optional[tuple[float, str]]:
    """``(exit_price, reason)`` if *price* reached the stop or the target."""
    sl, tp = position.stop_loss, position.take_profit
    if position.type == "buy":
        if sl is not None and price <= sl:
            return sl, "SL hit"
        if tp is not None and price >= tp:
            return tp, "TP hit"
    else:
        if sl is not None and price >= sl:
            return sl, "SL hit"
        if tp is not None and price <= tp:
            return tp, "TP hit"
    return None
