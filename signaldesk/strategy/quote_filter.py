"""Quote and candle-window validation shared by every strategy."""

from typing import Optional

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.errors import ValidationError


def validate_quote(
    quote: Optional[PriceQuote],
    min_spread: Optional[float] = None,
    max_spread: Optional[float] = None,
) -> PriceQuote:
    """Return *quote* unchanged if it is tradeable.

    Requires ``bid > 0``, ``ask > 0`` and ``ask > bid``.  When spread
    bounds are given the spread must also lie within
    ``[min_spread, max_spread]``.

    Raises:
        ValidationError: describing the first failed check.
    """
    if quote is None:
        raise ValidationError("No quote received")
    if quote.bid <= 0 or quote.ask <= 0:
        raise ValidationError(f"Non-positive quote: bid={quote.bid} ask={quote.ask}")
    if quote.ask <= quote.bid:
        raise ValidationError(f"Crossed quote: bid={quote.bid} ask={quote.ask}")
    if not is_spread_acceptable(quote.bid, quote.ask, min_spread, max_spread):
        raise ValidationError(
            f"Spread {quote.spread:.5f} outside "
            f"[{min_spread}, {max_spread}]"
        )
    return quote


def is_spread_acceptable(
    bid: float,
    ask: float,
    min_spread: Optional[float] = None,
    max_spread: Optional[float] = None,
) -> bool:
    """Return ``True`` if ``ask - bid`` lies within the declared bounds.

    Either bound may be ``None`` to leave that side open.
    """
    spread = ask - bid
    if min_spread is not None and spread < min_spread:
        return False
    if max_spread is not None and spread > max_spread:
        return False
    return True


def validate_candles(candles: Optional[list[Candle]], required: int) -> list[Candle]:
    """Return *candles* if at least *required* bars were delivered.

    Raises:
        ValidationError: when the window is missing or too short.
    """
    if candles is None or (required > 0 and not candles):
        raise ValidationError("No candles received")
    if len(candles) < required:
        raise ValidationError(
            f"Need at least {required} candles, got {len(candles)}"
        )
    return candles
