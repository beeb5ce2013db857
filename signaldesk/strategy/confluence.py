"""Indicator confluence analysis for the dashboard's AI analysis panel.

Combines RSI, MACD and Bollinger readings into a direction, a
heuristic probability score and a full set of risk levels.  The first
indicator to express a direction decides it; later indicators only add
confirmations.
"""

from dataclasses import dataclass, field
from typing import Optional

from signaldesk.broker.models import PriceQuote
from signaldesk.risk.sl_tp import (
    calculate_entry_price,
    calculate_risk_levels,
    validate_price_levels,
)
from signaldesk.strategy.models import BollingerBands

DEFAULT_VOLATILITY = 0.0020
MIN_LEVEL_DISTANCE = 0.0010
STRONG_HISTOGRAM = 0.0002


@dataclass(frozen=True)
class ConfluenceInputs:
    """Indicator readings available for one analysis; any may be missing."""

    rsi: Optional[float] = None
    macd: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_histogram: Optional[float] = None
    bollinger: Optional[BollingerBands] = None
    atr: Optional[float] = None
    trend: Optional[str] = None  # "bullish" | "bearish" | "sideways"
    volume_strength: Optional[float] = None


@dataclass(frozen=True)
class ConfluenceAnalysis:
    direction: str
    probability: float
    entry: float
    stop_loss: float
    take_profit: float
    risk_reward: float
    signals: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "direction": self.direction,
            "probability": self.probability,
            "entry": self.entry,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "risk_reward": self.risk_reward,
            "signals": list(self.signals),
        }


def calculate_probability(inputs: ConfluenceInputs) -> float:
    """Score a setup from 0 to 100, starting at 50."""
    probability = 50.0

    if inputs.rsi is not None:
        if inputs.rsi < 30:
            probability += 10
        elif inputs.rsi > 70:
            probability -= 10

    hist = inputs.macd_histogram
    if hist is not None:
        if hist > 0:
            probability += 5
        elif hist < 0:
            probability -= 5
        if abs(hist) > STRONG_HISTOGRAM:
            probability += 5

    if inputs.trend == "bullish":
        probability += 10
    elif inputs.trend == "bearish":
        probability -= 10

    if inputs.volume_strength is not None and inputs.volume_strength > 1.2:
        probability += 10

    return min(max(probability, 0.0), 100.0)


def _vote(direction: Optional[str], vote: str, note: str, signals: list[str]) -> str:
    if direction is None or direction == vote:
        signals.append(note)
        return vote
    return direction


def analyze_confluence(
    quote: PriceQuote,
    inputs: ConfluenceInputs,
    multiplier: float = 1.5,
    risk_reward: float = 2.0,
    min_distance: float = MIN_LEVEL_DISTANCE,
) -> Optional[ConfluenceAnalysis]:
    """Combine indicator readings into one trade proposal, or ``None``.

    Proposals whose stop or target lies closer than *min_distance* to
    the entry are dropped.
    """
    direction: Optional[str] = None
    signals: list[str] = []

    if inputs.rsi is not None:
        if inputs.rsi < 30:
            direction = "buy"
            signals.append("RSI indicates oversold conditions")
        elif inputs.rsi > 70:
            direction = "sell"
            signals.append("RSI indicates overbought conditions")

    if inputs.macd is not None and inputs.macd_signal is not None and inputs.macd_histogram is not None:
        if inputs.macd_histogram > 0 and inputs.macd > inputs.macd_signal:
            direction = _vote(direction, "buy", "MACD confirms bullish momentum", signals)
        elif inputs.macd_histogram < 0 and inputs.macd < inputs.macd_signal:
            direction = _vote(direction, "sell", "MACD confirms bearish momentum", signals)

    if inputs.bollinger is not None:
        mid = quote.mid
        if mid < inputs.bollinger.lower:
            direction = _vote(direction, "buy", "Price below lower Bollinger Band", signals)
        elif mid > inputs.bollinger.upper:
            direction = _vote(direction, "sell", "Price above upper Bollinger Band", signals)

    if direction is None:
        return None

    entry = calculate_entry_price(quote, inputs.bollinger)
    levels = calculate_risk_levels(
        direction,
        entry,
        inputs.atr or DEFAULT_VOLATILITY,
        multiplier=multiplier,
        risk_reward=risk_reward,
    )
    # The entry is derived from the mid, so only the level distances are checked
    if not validate_price_levels(levels, quote, min_distance, check_entry=False):
        return None
    return ConfluenceAnalysis(
        direction=direction,
        probability=calculate_probability(inputs),
        entry=entry,
        stop_loss=levels.stop_loss,
        take_profit=levels.take_profit,
        risk_reward=levels.risk_reward,
        signals=signals,
    )
