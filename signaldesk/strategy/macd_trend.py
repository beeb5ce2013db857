"""MACD trend-following strategy — trades MACD/signal crossovers."""

from typing import Optional

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.risk.sl_tp import calculate_risk_levels
from signaldesk.strategy.base import BaseStrategy, entry_for
from signaldesk.strategy.indicators import calculate_atr, calculate_macd
from signaldesk.strategy.models import MACDResult, StrategyParameter, TradeSignal


def detect_macd_crossover(macd: MACDResult, min_histogram: float) -> Optional[str]:
    """Return the direction of a MACD/signal crossover on the last bar.

    The current histogram must be at least *min_histogram* in magnitude.
    """
    if len(macd.macd) < 2:
        return None
    if abs(macd.histogram[-1]) < min_histogram:
        return None
    prev_macd, cur_macd = macd.macd[-2], macd.macd[-1]
    prev_signal, cur_signal = macd.signal[-2], macd.signal[-1]
    if prev_macd <= prev_signal and cur_macd > cur_signal:
        return "buy"
    if prev_macd >= prev_signal and cur_macd < cur_signal:
        return "sell"
    return None


class MACDTrendStrategy(BaseStrategy):
    """MACD 12/26/9 crossover on 5-minute candles with ATR risk."""

    id = "macd_trend"
    name = "MACD Trend Following"
    description = "Enters on MACD crossing its signal line with a meaningful histogram."
    category = "traditional"
    symbol = "EURUSD"
    interval = 15_000
    timeframe = "5m"

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("fast_period", 12, 2, 50, 1, 12, "MACD fast EMA"),
            StrategyParameter("slow_period", 26, 5, 100, 1, 26, "MACD slow EMA"),
            StrategyParameter("signal_period", 9, 2, 50, 1, 9, "MACD signal EMA"),
            StrategyParameter("min_histogram", 0.0001, 0.0, 0.01, 0.0001, 0.0001,
                              "Minimum histogram magnitude"),
            StrategyParameter("atr_period", 14, 2, 50, 1, 14, "ATR lookback"),
            StrategyParameter("stop_loss_multiplier", 1.5, 0.5, 5.0, 0.1, 1.5,
                              "Stop distance as a multiple of ATR"),
            StrategyParameter("take_profit_multiplier", 2.0, 0.5, 10.0, 0.1, 2.0,
                              "Target distance as a multiple of ATR"),
        ]

    @property
    def required_candles(self) -> int:
        return max(self.param("slow_period"), self.param("atr_period"))

    @property
    def candle_count(self) -> int:
        return self.param("slow_period") + 10

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        closes = [c.close for c in candles]
        macd = calculate_macd(
            closes,
            self.param("fast_period"),
            self.param("slow_period"),
            self.param("signal_period"),
        )
        atr = calculate_atr(
            [c.high for c in candles],
            [c.low for c in candles],
            closes,
            self.param("atr_period"),
            smoothing="simple",
        )[-1]

        self.last_insight["indicators"] = {
            "macd": macd.macd[-1],
            "macd_signal": macd.signal[-1],
            "histogram": macd.histogram[-1],
            "atr": atr,
        }

        direction = detect_macd_crossover(macd, self.param("min_histogram"))
        if direction is None:
            return None

        stop_mult = self.param("stop_loss_multiplier")
        levels = calculate_risk_levels(
            direction,
            entry_for(direction, quote),
            atr,
            multiplier=stop_mult,
            risk_reward=self.param("take_profit_multiplier") / stop_mult,
        )
        return self._signal(direction, levels, f"MACD crossover {direction}")
