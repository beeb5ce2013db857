"""Momentum strategy — MACD + RSI + volume strength + N-bar momentum."""

from typing import Optional

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.risk.sl_tp import calculate_risk_levels
from signaldesk.strategy.base import BaseStrategy, entry_for
from signaldesk.strategy.indicators import (
    calculate_macd,
    calculate_momentum,
    calculate_rsi,
    volume_strength,
)
from signaldesk.strategy.models import StrategyParameter, TradeSignal


def momentum_direction(
    macd: float,
    signal: float,
    histogram: float,
    rsi: float,
    strength: float,
    momentum: float,
    rsi_buy_below: float = 40.0,
    rsi_sell_above: float = 60.0,
    min_strength: float = 1.2,
) -> Optional[str]:
    """Buy on bullish MACD with room on RSI and rising volume; sell on the mirror."""
    if strength <= min_strength:
        return None
    if macd > signal and histogram > 0 and rsi < rsi_buy_below and momentum > 0:
        return "buy"
    if macd < signal and histogram < 0 and rsi > rsi_sell_above and momentum < 0:
        return "sell"
    return None


class MomentumStrategy(BaseStrategy):
    """MACD momentum with volume confirmation on 1-minute candles.

    The stop is scaled from ``2 × |histogram|`` as the volatility measure.
    """

    id = "ai_momentum"
    name = "AI Momentum Hunter"
    description = "Joins MACD momentum when volume expands and price is moving."
    category = "ai"
    symbol = "EURUSD"
    interval = 10_000
    timeframe = "1m"

    CANDLE_COUNT: int = 30
    STOP_MULTIPLIER: float = 2.0
    RISK_REWARD: float = 1.5  # target 3× volatility against a 2× stop

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("macd_fast", 12, 2, 50, 1, 12, "MACD fast EMA"),
            StrategyParameter("macd_slow", 26, 5, 100, 1, 26, "MACD slow EMA"),
            StrategyParameter("macd_signal", 9, 2, 50, 1, 9, "MACD signal EMA"),
            StrategyParameter("rsi_period", 14, 2, 50, 1, 14, "RSI lookback"),
            StrategyParameter("volume_period", 20, 5, 100, 1, 20,
                              "Volume average lookback"),
            StrategyParameter("momentum_period", 10, 2, 50, 1, 10,
                              "Bars for the momentum percentage"),
            StrategyParameter("min_volume_strength", 1.2, 1.0, 3.0, 0.1, 1.2,
                              "Current/average volume needed to trade"),
        ]

    @property
    def required_candles(self) -> int:
        return max(
            self.param("macd_slow"),
            self.param("rsi_period") + 1,
            self.param("volume_period"),
            self.param("momentum_period") + 1,
        )

    @property
    def candle_count(self) -> int:
        return max(self.CANDLE_COUNT, self.required_candles)

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        closes = [c.close for c in candles]
        macd = calculate_macd(
            closes,
            self.param("macd_fast"),
            self.param("macd_slow"),
            self.param("macd_signal"),
        )
        rsi = calculate_rsi(closes, self.param("rsi_period"))[-1]
        strength = volume_strength(
            [c.volume for c in candles], self.param("volume_period"),
        )
        momentum = calculate_momentum(closes, self.param("momentum_period"))

        self.last_insight["indicators"] = {
            "macd": macd.macd[-1],
            "macd_signal": macd.signal[-1],
            "histogram": macd.histogram[-1],
            "rsi": round(rsi, 2),
            "volume_strength": round(strength, 2),
            "momentum_pct": round(momentum, 4),
        }

        direction = momentum_direction(
            macd.macd[-1], macd.signal[-1], macd.histogram[-1],
            rsi, strength, momentum,
            min_strength=self.param("min_volume_strength"),
        )
        if direction is None:
            return None

        volatility = abs(macd.histogram[-1]) * 2
        levels = calculate_risk_levels(
            direction,
            entry_for(direction, quote),
            volatility,
            multiplier=self.STOP_MULTIPLIER,
            risk_reward=self.RISK_REWARD,
        )
        return self._signal(
            direction, levels,
            f"MACD momentum {direction}, volume x{strength:.2f}",
        )
