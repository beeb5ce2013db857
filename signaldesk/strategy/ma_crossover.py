"""Moving-average crossover strategy — fast SMA crossing the slow SMA."""

from typing import Optional

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.risk.sl_tp import calculate_risk_levels
from signaldesk.strategy.base import BaseStrategy, entry_for
from signaldesk.strategy.indicators import calculate_atr, calculate_sma
from signaldesk.strategy.models import StrategyParameter, TradeSignal


def detect_ma_crossover(fast: list[float], slow: list[float]) -> Optional[str]:
    """Direction of a crossover between the last two aligned values."""
    if len(fast) < 2 or len(slow) < 2:
        return None
    if fast[-2] <= slow[-2] and fast[-1] > slow[-1]:
        return "buy"
    if fast[-2] >= slow[-2] and fast[-1] < slow[-1]:
        return "sell"
    return None


class MACrossoverStrategy(BaseStrategy):
    """SMA 10/20 crossover with a minimum trend-strength gate."""

    id = "ma_crossover"
    name = "Moving Average Crossover"
    description = "Classic fast/slow simple moving average crossover."
    category = "traditional"
    symbol = "EURUSD"
    interval = 15_000
    timeframe = "5m"

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("fast_period", 10, 2, 100, 1, 10, "Fast SMA"),
            StrategyParameter("slow_period", 20, 5, 200, 1, 20, "Slow SMA"),
            StrategyParameter("min_trend_strength", 0.001, 0.0, 0.05, 0.0001, 0.001,
                              "Minimum relative gap between the averages"),
            StrategyParameter("atr_period", 14, 2, 50, 1, 14, "ATR lookback"),
            StrategyParameter("stop_loss_multiplier", 1.5, 0.5, 5.0, 0.1, 1.5,
                              "Stop distance as a multiple of ATR"),
            StrategyParameter("take_profit_multiplier", 2.0, 0.5, 10.0, 0.1, 2.0,
                              "Target distance as a multiple of ATR"),
        ]

    @property
    def required_candles(self) -> int:
        return max(self.param("slow_period") + 1, self.param("atr_period"))

    @property
    def candle_count(self) -> int:
        return self.required_candles + 4

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        closes = [c.close for c in candles]
        fast_period = self.param("fast_period")
        slow_period = self.param("slow_period")
        fast = calculate_sma(closes, fast_period)
        slow = calculate_sma(closes, slow_period)
        # Align the fast series with the shorter slow series
        fast = fast[slow_period - fast_period:] if slow_period > fast_period else fast
        strength = (fast[-1] - slow[-1]) / slow[-1]

        self.last_insight["indicators"] = {
            "fast_sma": fast[-1],
            "slow_sma": slow[-1],
            "trend_strength": round(strength, 6),
        }

        direction = detect_ma_crossover(fast, slow)
        if direction is None or abs(strength) < self.param("min_trend_strength"):
            return None

        atr = calculate_atr(
            [c.high for c in candles],
            [c.low for c in candles],
            closes,
            self.param("atr_period"),
            smoothing="simple",
        )[-1]
        stop_mult = self.param("stop_loss_multiplier")
        levels = calculate_risk_levels(
            direction,
            entry_for(direction, quote),
            atr,
            multiplier=stop_mult,
            risk_reward=self.param("take_profit_multiplier") / stop_mult,
        )
        return self._signal(direction, levels, f"SMA crossover {direction}")
