"""RSI reversal strategy — trades RSI crossing back out of an extreme zone."""

from typing import Optional

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.risk.sl_tp import calculate_risk_levels
from signaldesk.strategy.base import BaseStrategy, entry_for
from signaldesk.strategy.indicators import calculate_atr, calculate_rsi
from signaldesk.strategy.models import StrategyParameter, TradeSignal


def detect_rsi_reversal(
    previous: float,
    current: float,
    oversold: float = 30.0,
    overbought: float = 70.0,
) -> Optional[str]:
    """Return the direction of an RSI zone exit between two consecutive bars.

    Only a crossing counts: being inside the zone is not enough.
    """
    if previous < oversold and current > oversold:
        return "buy"
    if previous > overbought and current < overbought:
        return "sell"
    return None


class RSIReversalStrategy(BaseStrategy):
    """RSI(14) 30/70 reversal on 5-minute candles with ATR risk."""

    id = "rsi_reversal"
    name = "RSI Reversal"
    description = "Buys when RSI leaves oversold, sells when it leaves overbought."
    category = "traditional"
    symbol = "EURUSD"
    interval = 10_000
    timeframe = "5m"

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("rsi_period", 14, 2, 50, 1, 14, "RSI lookback"),
            StrategyParameter("oversold", 30, 5, 50, 1, 30, "RSI oversold level"),
            StrategyParameter("overbought", 70, 50, 95, 1, 70, "RSI overbought level"),
            StrategyParameter("atr_period", 14, 2, 50, 1, 14, "ATR lookback"),
            StrategyParameter("stop_loss_multiplier", 1.5, 0.5, 5.0, 0.1, 1.5,
                              "Stop distance as a multiple of ATR"),
            StrategyParameter("take_profit_multiplier", 2.0, 0.5, 10.0, 0.1, 2.0,
                              "Target distance as a multiple of ATR"),
        ]

    @property
    def required_candles(self) -> int:
        # Two RSI values are needed to see a crossing
        return max(self.param("rsi_period") + 2, self.param("atr_period"))

    @property
    def candle_count(self) -> int:
        return max(self.param("rsi_period") + 5, self.required_candles)

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        closes = [c.close for c in candles]
        rsi = calculate_rsi(closes, self.param("rsi_period"))
        atr = calculate_atr(
            [c.high for c in candles],
            [c.low for c in candles],
            closes,
            self.param("atr_period"),
            smoothing="simple",
        )[-1]

        self.last_insight["indicators"] = {
            "rsi_previous": round(rsi[-2], 2),
            "rsi": round(rsi[-1], 2),
            "atr": atr,
        }

        direction = detect_rsi_reversal(
            rsi[-2], rsi[-1], self.param("oversold"), self.param("overbought"),
        )
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
        return self._signal(
            direction, levels,
            f"RSI crossed {rsi[-2]:.1f} → {rsi[-1]:.1f}",
        )
