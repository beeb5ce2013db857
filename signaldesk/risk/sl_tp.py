"""Stop-loss and take-profit calculation — pure math, no I/O.

Stop distance is volatility-scaled with an optional fixed floor:
    distance = max(min_distance, volatility × multiplier)

Take-profit is derived from the realised stop distance and a
risk-reward ratio, so ``|tp - entry| / |entry - sl| == rr``.
"""

from dataclasses import dataclass
from typing import Optional

from signaldesk.broker.models import PriceQuote
from signaldesk.strategy.models import BollingerBands


@dataclass(frozen=True)
class RiskLevels:
    """Entry, stop-loss and take-profit for one trade."""

    entry: float
    stop_loss: float
    take_profit: float

    @property
    def risk_reward(self) -> float:
        risk = abs(self.entry - self.stop_loss)
        if risk == 0:
            return 0.0
        return abs(self.take_profit - self.entry) / risk


def _check_direction(direction: str) -> None:
    if direction not in ("buy", "sell"):
        raise ValueError(f"direction must be 'buy' or 'sell', got '{direction}'")


def calculate_entry_price(
    quote: PriceQuote,
    bollinger: Optional[BollingerBands] = None,
) -> float:
    """Refine the entry price with Bollinger Bands when available.

    A mid-price above the upper band enters at the upper band, below the
    lower band at the lower band.  Otherwise the mid-price is used.
    """
    mid = quote.mid
    if bollinger is not None:
        if mid > bollinger.upper:
            return bollinger.upper
        if mid < bollinger.lower:
            return bollinger.lower
    return mid


def calculate_stop_loss(
    direction: str,
    entry_price: float,
    volatility: float,
    multiplier: float = 1.5,
    min_distance: float = 0.0,
    digits: Optional[int] = None,
) -> float:
    """Calculate the stop-loss price.

    - **Buy**:  SL = entry − max(min_distance, volatility × multiplier)
    - **Sell**: SL = entry + max(min_distance, volatility × multiplier)

    Args:
        direction: ``"buy"`` or ``"sell"``.
        entry_price: Trade entry price.
        volatility: ATR, band width or any other volatility measure.
        multiplier: Scale applied to *volatility*.
        min_distance: Fixed floor for the stop distance (pip distance
            already converted to price units).
        digits: Round the result to this many decimals when given.

    Raises:
        ValueError: If *direction* is not ``"buy"`` or ``"sell"``.
    """
    _check_direction(direction)
    distance = max(min_distance, volatility * multiplier)
    if direction == "buy":
        sl = entry_price - distance
    else:
        sl = entry_price + distance
    return round(sl, digits) if digits is not None else sl


def calculate_take_profit(
    direction: str,
    entry_price: float,
    stop_loss: float,
    risk_reward: float = 2.0,
    digits: Optional[int] = None,
) -> float:
    """Calculate the take-profit price from the stop distance.

    Reward distance = ``|entry - stop_loss| × risk_reward``; added for a
    buy, subtracted for a sell.

    Raises:
        ValueError: If *direction* is not ``"buy"`` or ``"sell"``.
    """
    _check_direction(direction)
    reward = abs(entry_price - stop_loss) * risk_reward
    if direction == "buy":
        tp = entry_price + reward
    else:
        tp = entry_price - reward
    return round(tp, digits) if digits is not None else tp


def calculate_risk_levels(
    direction: str,
    entry_price: float,
    volatility: float,
    multiplier: float = 1.5,
    risk_reward: float = 2.0,
    min_distance: float = 0.0,
    digits: Optional[int] = None,
) -> RiskLevels:
    """Stop-loss and take-profit in one call."""
    sl = calculate_stop_loss(
        direction, entry_price, volatility, multiplier, min_distance, digits,
    )
    tp = calculate_take_profit(direction, entry_price, sl, risk_reward, digits)
    return RiskLevels(entry=entry_price, stop_loss=sl, take_profit=tp)


def validate_price_levels(
    levels: RiskLevels,
    quote: PriceQuote,
    min_distance: float = 0.0010,
    check_entry: bool = True,
) -> bool:
    """Return ``False`` for an implausible level set.

    Rejects when the stop or the target is closer than *min_distance* to
    the entry, or (with *check_entry*) when the entry sits within one
    spread of the mid-price.
    """
    if abs(levels.entry - levels.stop_loss) < min_distance:
        return False
    if abs(levels.entry - levels.take_profit) < min_distance:
        return False
    if check_entry and abs(levels.entry - quote.mid) < quote.spread:
        return False
    return True
