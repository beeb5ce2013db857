"""AI breakout strategy — Bollinger break out of a tight range on a volume spike."""

from typing import Optional

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.risk.sl_tp import calculate_risk_levels
from signaldesk.strategy.base import BaseStrategy, entry_for
from signaldesk.strategy.indicators import (
    calculate_bollinger,
    calculate_momentum,
    volume_strength,
)
from signaldesk.strategy.models import StrategyParameter, TradeSignal


def consolidation_range(
    highs: list[float], lows: list[float], bars: int,
) -> tuple[float, float]:
    """``(range, range / lowest_low)`` over the *bars* before the latest one."""
    if len(highs) <= bars or len(lows) <= bars:
        raise ValueError(
            f"Need at least {bars + 1} bars for consolidation, got {len(highs)}"
        )
    highest = max(highs[-bars - 1:-1])
    lowest = min(lows[-bars - 1:-1])
    if lowest <= 0:
        raise ValueError("Consolidation low is not positive")
    width = highest - lowest
    return width, width / lowest


def breakout_direction(
    mid: float,
    upper: float,
    lower: float,
    consolidating: bool,
    volume_spike: bool,
    momentum: float,
) -> Optional[str]:
    """Buy a break above the upper band, sell one below the lower band.

    Both sides need a preceding consolidation, a volume spike and momentum
    pointing the same way as the break.
    """
    if not consolidating or not volume_spike:
        return None
    if mid > upper and momentum > 0:
        return "buy"
    if mid < lower and momentum < 0:
        return "sell"
    return None


class AIBreakoutStrategy(BaseStrategy):
    """Breakout detector on 1-minute candles.

    The consolidation is the high/low range of the ``min_consolidation_bars``
    bars preceding the latest one; it counts as tight below
    ``max_range_pct`` of price.  Stop is 1.5 × that range, target 2.5 ×.
    """

    id = "ai_breakout"
    name = "AI Breakout Detector"
    description = "Trades Bollinger breaks out of a tight range on a volume spike."
    category = "ai"
    symbol = "EURUSD"
    interval = 5_000
    timeframe = "1m"

    CANDLE_COUNT: int = 30
    STOP_RANGES: float = 1.5
    TARGET_RANGES: float = 2.5

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("bollinger_period", 20, 5, 100, 1, 20, "Bollinger lookback"),
            StrategyParameter("bollinger_std_dev", 2.0, 1.0, 4.0, 0.1, 2.0,
                              "Band width in standard deviations"),
            StrategyParameter("volume_threshold", 1.5, 1.0, 5.0, 0.1, 1.5,
                              "Current/average volume that counts as a spike"),
            StrategyParameter("momentum_period", 14, 2, 50, 1, 14,
                              "Bars for the momentum percentage"),
            StrategyParameter("min_consolidation_bars", 10, 3, 50, 1, 10,
                              "Bars that must stay inside the range"),
            StrategyParameter("max_range_pct", 0.001, 0.0001, 0.01, 0.0001, 0.001,
                              "Range/price below which the market is consolidating"),
        ]

    @property
    def required_candles(self) -> int:
        return max(
            self.param("bollinger_period"),
            self.param("momentum_period") + 1,
            self.param("min_consolidation_bars") + 1,
        )

    @property
    def candle_count(self) -> int:
        return max(self.CANDLE_COUNT, self.required_candles)

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        closes = [c.close for c in candles]
        period = self.param("bollinger_period")
        bands = calculate_bollinger(closes, period, self.param("bollinger_std_dev"))
        width, width_pct = consolidation_range(
            [c.high for c in candles], [c.low for c in candles],
            self.param("min_consolidation_bars"),
        )
        strength = volume_strength([c.volume for c in candles], period)
        momentum = calculate_momentum(closes, self.param("momentum_period"))
        consolidating = width_pct < self.param("max_range_pct")

        self.last_insight["indicators"] = {
            "bollinger": {"upper": bands.upper, "middle": bands.middle, "lower": bands.lower},
            "consolidation_range": width,
            "consolidating": consolidating,
            "volume_strength": round(strength, 2),
            "momentum_pct": round(momentum, 4),
        }

        direction = breakout_direction(
            quote.mid, bands.upper, bands.lower, consolidating,
            strength > self.param("volume_threshold"), momentum,
        )
        if direction is None or width <= 0:
            return None

        levels = calculate_risk_levels(
            direction,
            entry_for(direction, quote),
            width,
            multiplier=self.STOP_RANGES,
            risk_reward=self.TARGET_RANGES / self.STOP_RANGES,
        )
        return self._signal(
            direction, levels,
            f"Breakout {direction} from {width:.5f} range, volume x{strength:.2f}",
        )
