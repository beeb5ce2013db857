"""Mean-reversion strategy — Bollinger Bands + RSI + volume.

Fades moves outside the bands when RSI agrees and volume is sufficient,
targeting a return to the middle band.
"""

from typing import Optional

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.risk.sl_tp import RiskLevels, calculate_stop_loss, calculate_take_profit
from signaldesk.strategy.base import BaseStrategy, entry_for
from signaldesk.strategy.indicators import calculate_atr, calculate_bollinger, calculate_rsi
from signaldesk.strategy.models import BollingerBands, StrategyParameter, TradeSignal


def mean_reversion_direction(
    mid_price: float,
    bands: BollingerBands,
    rsi: float,
    avg_volume: float,
    oversold: float,
    overbought: float,
    min_volume: float,
) -> Optional[str]:
    """Buy below the lower band when oversold, sell above the upper band when overbought."""
    if avg_volume <= min_volume:
        return None
    if mid_price < bands.lower and rsi < oversold:
        return "buy"
    if mid_price > bands.upper and rsi > overbought:
        return "sell"
    return None


class MeanReversionStrategy(BaseStrategy):
    """Bollinger/RSI mean reversion on 5-minute candles."""

    id = "ai_mean_reversion"
    name = "AI Mean Reversion"
    description = "Fades band breaks when RSI is stretched and volume is present."
    category = "ai"
    symbol = "EURUSD"
    interval = 15_000
    timeframe = "5m"

    CANDLE_COUNT: int = 50
    FALLBACK_RISK_REWARD: float = 2.0

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("bb_period", 20, 5, 100, 1, 20, "Bollinger lookback"),
            StrategyParameter("bb_std_dev", 2.0, 1.0, 4.0, 0.1, 2.0,
                              "Band width in standard deviations"),
            StrategyParameter("rsi_period", 14, 2, 50, 1, 14, "RSI lookback"),
            StrategyParameter("oversold", 30, 5, 50, 1, 30, "RSI oversold level"),
            StrategyParameter("overbought", 70, 50, 95, 1, 70, "RSI overbought level"),
            StrategyParameter("atr_period", 14, 2, 50, 1, 14, "ATR lookback"),
            StrategyParameter("atr_multiplier", 1.5, 0.5, 5.0, 0.1, 1.5,
                              "Stop distance as a multiple of ATR"),
            StrategyParameter("min_volume", 100, 0, 100000, 10, 100,
                              "Minimum average volume over the band period"),
        ]

    @property
    def required_candles(self) -> int:
        return max(
            self.param("bb_period"),
            self.param("rsi_period") + 1,
            self.param("atr_period"),
        )

    @property
    def candle_count(self) -> int:
        return max(self.CANDLE_COUNT, self.required_candles)

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        closes = [c.close for c in candles]
        period = self.param("bb_period")

        bands = calculate_bollinger(closes, period, self.param("bb_std_dev"))
        rsi = calculate_rsi(closes, self.param("rsi_period"))[-1]
        atr = calculate_atr(
            [c.high for c in candles],
            [c.low for c in candles],
            closes,
            self.param("atr_period"),
            smoothing="simple",
        )[-1]
        avg_volume = sum(c.volume for c in candles[-period:]) / period

        self.last_insight["indicators"] = {
            "bollinger": {"upper": bands.upper, "middle": bands.middle, "lower": bands.lower},
            "rsi": round(rsi, 2),
            "atr": atr,
            "avg_volume": round(avg_volume, 1),
        }

        direction = mean_reversion_direction(
            quote.mid, bands, rsi, avg_volume,
            self.param("oversold"), self.param("overbought"), self.param("min_volume"),
        )
        if direction is None:
            return None

        entry = entry_for(direction, quote)
        sl = calculate_stop_loss(direction, entry, atr, self.param("atr_multiplier"))
        # Target the middle band; fall back to R:R when it is not on the profit side
        in_profit = bands.middle > entry if direction == "buy" else bands.middle < entry
        if in_profit:
            tp = bands.middle
        else:
            tp = calculate_take_profit(direction, entry, sl, self.FALLBACK_RISK_REWARD)
        return self._signal(
            direction,
            RiskLevels(entry=entry, stop_loss=sl, take_profit=tp),
            f"Price outside band, RSI {rsi:.1f}",
        )
