"""Bollinger breakout strategy — trades closes outside the bands on rising volume."""

from typing import Optional

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.risk.sl_tp import calculate_risk_levels
from signaldesk.strategy.base import BaseStrategy, entry_for
from signaldesk.strategy.indicators import calculate_bollinger, mean_abs_return, volume_strength
from signaldesk.strategy.models import StrategyParameter, TradeSignal


class BollingerBreakoutStrategy(BaseStrategy):
    """Breakout in the direction of a band break.

    Requires the last volume to exceed ``volume_threshold`` times its
    average and a minimum mean absolute return.  Stop is half the band
    width, target twice the stop.
    """

    id = "bollinger_breakout"
    name = "Bollinger Bands Breakout"
    description = "Follows price out of the Bollinger envelope on a volume surge."
    category = "traditional"
    symbol = "EURUSD"
    interval = 10_000
    timeframe = "5m"

    STOP_BAND_FRACTION: float = 0.5
    RISK_REWARD: float = 2.0

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("period", 20, 5, 100, 1, 20, "Bollinger lookback"),
            StrategyParameter("std_dev", 2.0, 1.0, 4.0, 0.1, 2.0,
                              "Band width in standard deviations"),
            StrategyParameter("volume_threshold", 1.5, 1.0, 5.0, 0.1, 1.5,
                              "Current/average volume needed to trade"),
            StrategyParameter("min_volatility", 0.0001, 0.0, 0.01, 0.0001, 0.0001,
                              "Minimum mean absolute bar return"),
        ]

    @property
    def required_candles(self) -> int:
        return self.param("period")

    @property
    def candle_count(self) -> int:
        return self.param("period") + 5

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        closes = [c.close for c in candles]
        period = self.param("period")
        bands = calculate_bollinger(closes, period, self.param("std_dev"))
        strength = volume_strength([c.volume for c in candles], period)
        volatility = mean_abs_return(closes)

        self.last_insight["indicators"] = {
            "bollinger": {"upper": bands.upper, "middle": bands.middle, "lower": bands.lower},
            "volume_strength": round(strength, 2),
            "volatility": volatility,
        }

        if volatility < self.param("min_volatility"):
            return None
        if strength <= self.param("volume_threshold"):
            return None

        mid = quote.mid
        if mid > bands.upper:
            direction = "buy"
        elif mid < bands.lower:
            direction = "sell"
        else:
            return None

        levels = calculate_risk_levels(
            direction,
            entry_for(direction, quote),
            bands.width,
            multiplier=self.STOP_BAND_FRACTION,
            risk_reward=self.RISK_REWARD,
        )
        return self._signal(direction, levels, f"Band breakout {direction}")
