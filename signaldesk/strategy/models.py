"""Strategy data models — typed representations for strategy outputs."""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class TradeSignal:
    """A directional trade recommendation with its risk levels.

    For ``buy``: ``stop_loss < entry_price < take_profit``.
    For ``sell`` the ordering is inverted.
    """

    type: str  # "buy" or "sell"
    symbol: str
    volume: float
    stop_loss: float
    take_profit: float
    entry_price: float
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "symbol": self.symbol,
            "volume": self.volume,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "entry_price": self.entry_price,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class MACDResult:
    """MACD line, signal line and histogram, aligned by index."""

    macd: list[float]
    signal: list[float]
    histogram: list[float]


@dataclass(frozen=True)
class BollingerBands:
    """Bollinger envelope at the most recent bar."""

    upper: float
    middle: float
    lower: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


@dataclass
class StrategyParameter:
    """A tunable strategy setting with its allowed range."""

    name: str
    value: float
    min: float
    max: float
    step: float
    default: Optional[float] = None
    description: str = ""

    def clamp(self, value: Optional[float]) -> float:
        """Bound *value* to ``[min, max]``.

        A missing value falls back to ``default``, then to ``min``.
        Integer-stepped parameters stay integers.
        """
        if value is None:
            value = self.default if self.default is not None else self.min
        value = max(self.min, min(self.max, value))
        if all(isinstance(x, int) for x in (self.min, self.max, self.step)):
            value = int(round(value))
        return value

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "value": self.value,
            "min": self.min,
            "max": self.max,
            "step": self.step,
            "default": self.default,
            "description": self.description,
        }


def parameter_number(name: str, raw) -> Optional[float]:
    """Convert a submitted parameter value to a float (``None`` stays missing).

    Raises:
        ValueError: if *raw* is not numeric.
    """
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Parameter '{name}' must be a number, got {raw!r}") from None


@dataclass
class GridLevel:
    """One rung of a grid ladder."""

    price: float
    volume: float
    type: str  # "buy" or "sell"
    active: bool = False


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Last-computed indicators of the composite technical strategy."""

    rsi: Optional[float] = None
    macd: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_histogram: Optional[float] = None
    bollinger: Optional[BollingerBands] = None
    extra: dict = field(default_factory=dict)


# ── Instrument metadata ──────────────────────────────────────────────────

INSTRUMENT_CONTRACT_SIZES: dict[str, float] = {
    "XAUUSD": 100.0,
    "XAGUSD": 5_000.0,
}
DEFAULT_CONTRACT_SIZE = 100_000.0

INSTRUMENT_PRICE_DIGITS: dict[str, int] = {
    "USDJPY": 3,
    "XAUUSD": 2,
    "XAGUSD": 3,
}


def contract_size(symbol: str) -> float:
    """Units per lot (100 000 for ordinary currency pairs)."""
    return INSTRUMENT_CONTRACT_SIZES.get(symbol, DEFAULT_CONTRACT_SIZE)


def price_digits(symbol: str) -> int:
    """Quote precision for *symbol* (5 for ordinary currency pairs)."""
    return INSTRUMENT_PRICE_DIGITS.get(symbol, 5)
