"""XAU/USD trend strategy — EMA stack, RSI, MACD and ATR.

Buys when the 5/13/21 EMAs are stacked bullishly while RSI is oversold
and MACD confirms; sells on the mirror image.  Quotes and candles are
fetched through the exponential-backoff retry helper.
"""

from typing import Optional

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.broker.retry import fetch_with_retry
from signaldesk.risk.sl_tp import calculate_risk_levels
from signaldesk.strategy.base import BaseStrategy, entry_for
from signaldesk.strategy.indicators import calculate_atr, calculate_ema, calculate_macd, calculate_rsi
from signaldesk.strategy.models import StrategyParameter, TradeSignal


def gold_direction(
    ema_fast: float,
    ema_mid: float,
    ema_slow: float,
    rsi: float,
    macd: float,
    signal: float,
    histogram: float,
    atr: float,
    min_spread: float,
    oversold: float = 30.0,
    overbought: float = 70.0,
) -> Optional[str]:
    """Apply the gold rule table to one indicator snapshot.

    Both sides require ``atr > 2 × min_spread``; buy is checked first.
    """
    if atr <= min_spread * 2:
        return None
    if (
        ema_fast > ema_mid > ema_slow
        and rsi < oversold
        and macd > signal
        and histogram > 0
    ):
        return "buy"
    if (
        ema_fast < ema_mid < ema_slow
        and rsi > overbought
        and macd < signal
        and histogram < 0
    ):
        return "sell"
    return None


class GoldStrategy(BaseStrategy):
    """Trend-following XAU/USD strategy on 1-minute candles."""

    id = "xauusd"
    name = "XAU/USD AI Strategy"
    description = "EMA 5/13/21 stack with RSI, MACD and ATR confirmation for gold."
    category = "ai"
    symbol = "XAUUSD"
    interval = 5_000
    volume = 0.01
    timeframe = "1m"
    min_spread = 0.50
    max_spread = 1.00

    EMA_PERIODS: tuple[int, int, int] = (5, 13, 21)
    RISK_REWARD: float = 2.0
    RETRY_ATTEMPTS: int = 3
    RETRY_DELAY: float = 1.0  # seconds

    def __init__(
        self,
        symbol: Optional[str] = None,
        volume: Optional[float] = None,
        pip_size: float = 0.01,
        min_spread: Optional[float] = None,
        max_spread: Optional[float] = None,
        **params: float,
    ) -> None:
        self.pip_size = pip_size
        if min_spread is not None:
            self.min_spread = min_spread
        if max_spread is not None:
            self.max_spread = max_spread
        super().__init__(symbol=symbol, volume=volume, **params)

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("stop_loss_pips", 100, 10, 1000, 10, 100,
                              "Minimum stop distance in pips"),
            StrategyParameter("rsi_period", 14, 2, 50, 1, 14, "RSI lookback"),
            StrategyParameter("atr_period", 14, 2, 50, 1, 14, "ATR lookback"),
            StrategyParameter("atr_multiplier", 1.5, 0.5, 5.0, 0.1, 1.5,
                              "Stop distance as a multiple of ATR"),
            StrategyParameter("macd_fast", 12, 2, 50, 1, 12, "MACD fast EMA"),
            StrategyParameter("macd_slow", 26, 5, 100, 1, 26, "MACD slow EMA"),
            StrategyParameter("macd_signal", 9, 2, 50, 1, 9, "MACD signal EMA"),
        ]

    @property
    def required_candles(self) -> int:
        return max(
            *self.EMA_PERIODS,
            self.param("rsi_period") + 1,
            self.param("atr_period"),
            self.param("macd_slow") + self.param("macd_signal"),
        )

    async def _fetch_quote(self, connection) -> PriceQuote:
        return await fetch_with_retry(
            lambda: connection.get_symbol_price(self.symbol),
            what=f"{self.symbol} price",
            max_retries=self.RETRY_ATTEMPTS,
            base_delay=self.RETRY_DELAY,
        )

    async def _fetch_candles(self, connection) -> list[Candle]:
        return await fetch_with_retry(
            lambda: connection.get_candles(
                self.symbol, self.timeframe, self.candle_count,
            ),
            what=f"{self.symbol} candles",
            max_retries=self.RETRY_ATTEMPTS,
            base_delay=self.RETRY_DELAY,
        )

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        closes = [c.close for c in candles]
        highs = [c.high for c in candles]
        lows = [c.low for c in candles]

        fast, mid, slow = (calculate_ema(closes, p)[-1] for p in self.EMA_PERIODS)
        rsi = calculate_rsi(closes, self.param("rsi_period"))[-1]
        atr = calculate_atr(highs, lows, closes, self.param("atr_period"))[-1]
        macd = calculate_macd(
            closes,
            self.param("macd_fast"),
            self.param("macd_slow"),
            self.param("macd_signal"),
        )

        self.last_insight["indicators"] = {
            "ema": [round(fast, 2), round(mid, 2), round(slow, 2)],
            "rsi": round(rsi, 2),
            "atr": round(atr, 4),
            "macd": macd.macd[-1],
            "macd_signal": macd.signal[-1],
            "histogram": macd.histogram[-1],
        }

        direction = gold_direction(
            fast, mid, slow, rsi,
            macd.macd[-1], macd.signal[-1], macd.histogram[-1],
            atr, self.min_spread or 0.0,
        )
        if direction is None:
            return None

        levels = calculate_risk_levels(
            direction,
            entry_for(direction, quote),
            atr,
            multiplier=self.param("atr_multiplier"),
            risk_reward=self.RISK_REWARD,
            min_distance=self.param("stop_loss_pips") * self.pip_size,
        )
        return self._signal(
            direction, levels,
            f"EMA stack {direction}, RSI {rsi:.1f}, MACD confirms",
        )
