"""Market condition classifier.

Reduces a candle window to a coarse ``MarketCondition``:

- **trend** — relative gap between a fast and a slow EMA of closes;
- **volatility** — ATR as a percentage of price, relative to a reference
  ATR%;
- **volume** — recent average volume relative to the longer average.

Both ratios ``r`` are squashed with ``r / (1 + r)`` so that the reference
level maps to 0.5 and the result stays in ``[0, 1)``.
"""

import logging
from dataclasses import dataclass

from signaldesk.broker.models import Candle
from signaldesk.broker.retry import fetch_with_retry
from signaldesk.catalog.models import MarketCondition
from signaldesk.strategy.indicators import calculate_atr, calculate_ema
from signaldesk.strategy.quote_filter import validate_candles

logger = logging.getLogger("signaldesk.market")


@dataclass(frozen=True)
class ClassifierThresholds:
    """Tunable classification settings."""

    fast_period: int = 20
    slow_period: int = 50
    trend_threshold: float = 0.001  # relative EMA gap for a trend call
    atr_period: int = 14
    reference_atr_pct: float = 0.1  # ATR% treated as "normal" volatility
    volume_recent: int = 10
    volume_long: int = 50

    @property
    def required_candles(self) -> int:
        return max(self.slow_period, self.atr_period, self.volume_long)


def _normalise(ratio: float) -> float:
    if ratio <= 0:
        return 0.0
    return ratio / (1.0 + ratio)


def classify_trend(closes: list[float], thresholds: ClassifierThresholds) -> str:
    fast = calculate_ema(closes, thresholds.fast_period)[-1]
    slow = calculate_ema(closes, thresholds.slow_period)[-1]
    gap = (fast - slow) / slow
    if gap > thresholds.trend_threshold:
        return "bullish"
    if gap < -thresholds.trend_threshold:
        return "bearish"
    return "sideways"


def classify_market(
    candles: list[Candle],
    timeframe: str,
    thresholds: ClassifierThresholds = ClassifierThresholds(),
) -> MarketCondition:
    """Summarise *candles* (oldest first) into a ``MarketCondition``.

    Raises:
        ValidationError: if fewer than ``thresholds.required_candles`` bars.
    """
    validate_candles(candles, thresholds.required_candles)
    closes = [c.close for c in candles]

    trend = classify_trend(closes, thresholds)

    atr = calculate_atr(
        [c.high for c in candles],
        [c.low for c in candles],
        closes,
        thresholds.atr_period,
    )[-1]
    atr_pct = atr / closes[-1] * 100
    volatility = _normalise(atr_pct / thresholds.reference_atr_pct)

    volumes = [c.volume for c in candles]
    recent = sum(volumes[-thresholds.volume_recent:]) / thresholds.volume_recent
    long_avg = sum(volumes[-thresholds.volume_long:]) / thresholds.volume_long
    volume = _normalise(recent / long_avg) if long_avg > 0 else 0.0

    return MarketCondition(
        trend=trend,
        volatility=round(volatility, 4),
        volume=round(volume, 4),
        timeframe=timeframe,
    )


class MarketAnalysisService:
    """Fetches candles from a connection and classifies them.

    Args:
        connection: Any ``ConnectionProtocol`` implementation.
        timeframe: Candle timeframe used for classification.
        count: Number of candles to request.
    """

    def __init__(
        self,
        connection,
        timeframe: str = "5m",
        count: int = 200,
        thresholds: ClassifierThresholds = ClassifierThresholds(),
        retry_delay: float = 1.0,
    ) -> None:
        self._connection = connection
        self.timeframe = timeframe
        self.count = max(count, thresholds.required_candles)
        self.thresholds = thresholds
        self._retry_delay = retry_delay

    async def analyze(self, symbol: str) -> MarketCondition:
        """Classify the current regime of *symbol*.

        Raises:
            DataUnavailableError: if candles could not be fetched.
            ValidationError: if the connection returned too few candles.
        """
        candles = await fetch_with_retry(
            lambda: self._connection.get_candles(symbol, self.timeframe, self.count),
            what=f"{symbol} candles",
            base_delay=self._retry_delay,
        )
        condition = classify_market(candles, self.timeframe, self.thresholds)
        logger.info(
            "%s %s: trend=%s volatility=%.2f volume=%.2f",
            symbol, self.timeframe, condition.trend,
            condition.volatility, condition.volume,
        )
        return condition
