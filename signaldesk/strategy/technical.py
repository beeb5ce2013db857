"""Composite technical strategy — RSI, MACD and Bollinger Bands together.

Keeps the last computed RSI/MACD/Bollinger values so dashboards can show
them between analysis cycles.
"""

from typing import Optional

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.risk.sl_tp import calculate_risk_levels
from signaldesk.strategy.base import BaseStrategy, entry_for
from signaldesk.strategy.indicators import calculate_bollinger, calculate_macd, calculate_rsi
from signaldesk.strategy.models import (
    BollingerBands,
    IndicatorSnapshot,
    StrategyParameter,
    TradeSignal,
)


def technical_direction(
    quote: PriceQuote,
    rsi: float,
    histogram: float,
    bands: BollingerBands,
    oversold: float = 30.0,
    overbought: float = 70.0,
) -> Optional[str]:
    """Buy when oversold, MACD rising and the ask is below the lower band; sell on the mirror."""
    if rsi < oversold and histogram > 0 and quote.ask < bands.lower:
        return "buy"
    if rsi > overbought and histogram < 0 and quote.bid > bands.upper:
        return "sell"
    return None


class TechnicalStrategy(BaseStrategy):
    """Confluence of RSI, MACD and Bollinger Bands on 5-minute candles.

    Stop distance is the full band width; the target is 1.5× that.
    """

    id = "ai_technical"
    name = "AI Technical Analysis"
    description = "Requires RSI, MACD and Bollinger Bands to agree before trading."
    category = "ai"
    symbol = "EURUSD"
    interval = 5_000
    timeframe = "5m"

    CANDLE_COUNT: int = 50
    RISK_REWARD: float = 1.5

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._snapshot = IndicatorSnapshot()

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("rsi_period", 14, 2, 50, 1, 14, "RSI lookback"),
            StrategyParameter("oversold", 30, 5, 50, 1, 30, "RSI oversold level"),
            StrategyParameter("overbought", 70, 50, 95, 1, 70, "RSI overbought level"),
            StrategyParameter("bb_period", 20, 5, 100, 1, 20, "Bollinger lookback"),
            StrategyParameter("bb_std_dev", 2.0, 1.0, 4.0, 0.1, 2.0,
                              "Band width in standard deviations"),
        ]

    @property
    def required_candles(self) -> int:
        return max(self.param("bb_period"), self.param("rsi_period") + 1)

    @property
    def candle_count(self) -> int:
        return max(self.CANDLE_COUNT, self.required_candles)

    # ── Indicator accessors ──────────────────────────────────────────────

    def get_rsi(self) -> Optional[float]:
        return self._snapshot.rsi

    def get_macd(self) -> Optional[dict]:
        if self._snapshot.macd is None:
            return None
        return {
            "macd": self._snapshot.macd,
            "signal": self._snapshot.macd_signal,
            "histogram": self._snapshot.macd_histogram,
        }

    def get_bollinger(self) -> Optional[BollingerBands]:
        return self._snapshot.bollinger

    @property
    def snapshot(self) -> IndicatorSnapshot:
        return self._snapshot

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        closes = [c.close for c in candles]
        rsi = calculate_rsi(closes, self.param("rsi_period"))[-1]
        macd = calculate_macd(closes)
        bands = calculate_bollinger(
            closes, self.param("bb_period"), self.param("bb_std_dev"),
        )
        self._snapshot = IndicatorSnapshot(
            rsi=rsi,
            macd=macd.macd[-1],
            macd_signal=macd.signal[-1],
            macd_histogram=macd.histogram[-1],
            bollinger=bands,
        )
        self.last_insight["indicators"] = {
            "rsi": round(rsi, 2),
            "macd": macd.macd[-1],
            "histogram": macd.histogram[-1],
            "bollinger": {"upper": bands.upper, "middle": bands.middle, "lower": bands.lower},
        }

        direction = technical_direction(
            quote, rsi, macd.histogram[-1], bands,
            self.param("oversold"), self.param("overbought"),
        )
        if direction is None:
            return None

        levels = calculate_risk_levels(
            direction,
            entry_for(direction, quote),
            bands.width,
            multiplier=1.0,
            risk_reward=self.RISK_REWARD,
        )
        return self._signal(direction, levels, f"RSI {rsi:.1f} with band break")
