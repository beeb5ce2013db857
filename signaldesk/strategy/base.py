"""Strategy protocol and shared strategy machinery.

Defines the interface the supervisor relies on, plus ``BaseStrategy``
which implements the common ``analyze`` pipeline:

    quote → validate → candles → validate → indicators → rule table → risk

Variants only supply their parameters and ``_evaluate``.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.errors import DataUnavailableError, SignalDeskError, ValidationError
from signaldesk.risk.sl_tp import RiskLevels
from signaldesk.strategy.models import (
    StrategyParameter,
    TradeSignal,
    parameter_number,
    price_digits,
)
from signaldesk.strategy.quote_filter import validate_candles, validate_quote

logger = logging.getLogger("signaldesk.strategy")


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all trading strategies must satisfy."""

    name: str
    symbol: str
    interval: int
    volume: float

    async def analyze(self, connection) -> Optional[TradeSignal]:
        """Evaluate market conditions and return a trade signal or None."""
        ...


class BaseStrategy:
    """Common ``analyze`` pipeline for all strategy variants.

    Validation and indicator failures are absorbed and yield ``None``;
    connection failures surface as ``DataUnavailableError``.

    Args:
        symbol: Override the variant's default symbol.
        volume: Override the variant's default order volume.
        **params: Initial parameter values, clamped to their bounds.
    """

    id: str = ""
    name: str = ""
    description: str = ""
    category: str = "traditional"
    symbol: str = "EURUSD"
    interval: int = 10_000  # milliseconds
    volume: float = 0.01
    timeframe: str = "5m"
    min_spread: Optional[float] = None
    max_spread: Optional[float] = None

    def __init__(
        self,
        symbol: Optional[str] = None,
        volume: Optional[float] = None,
        **params: float,
    ) -> None:
        if symbol is not None:
            self.symbol = symbol
        if volume is not None:
            self.volume = volume
        self.parameters: dict[str, StrategyParameter] = {
            p.name: p for p in self.default_parameters()
        }
        for p in self.parameters.values():
            p.value = p.clamp(p.value)
        self.last_insight: dict = {}
        if params:
            self.update_parameters(params)

    # ── Parameters ───────────────────────────────────────────────────────

    def default_parameters(self) -> list[StrategyParameter]:
        """Tunable parameters with their bounds.  Overridden per variant."""
        return []

    def param(self, name: str) -> float:
        return self.parameters[name].value

    def update_parameters(self, values: dict) -> dict[str, float]:
        """Apply new parameter values, clamping each to its bounds.

        Unknown names raise ``KeyError`` and non-numeric values
        ``ValueError``, in both cases before anything is applied.
        Returns the applied values.
        """
        numbers: dict[str, Optional[float]] = {}
        for key, raw in values.items():
            if key not in self.parameters:
                raise KeyError(
                    f"Unknown parameter '{key}' for strategy '{self.id}'. "
                    f"Available: {', '.join(self.parameters.keys())}"
                )
            numbers[key] = parameter_number(key, raw)
        applied: dict[str, float] = {}
        for key, value in numbers.items():
            p = self.parameters[key]
            p.value = p.clamp(value)
            applied[key] = p.value
        return applied

    @property
    def required_candles(self) -> int:
        """Shortest candle window the rule table can work with."""
        return 1

    @property
    def candle_count(self) -> int:
        """How many candles to request per analysis."""
        return self.required_candles

    @property
    def digits(self) -> int:
        return price_digits(self.symbol)

    def describe(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "symbol": self.symbol,
            "interval": self.interval,
            "volume": self.volume,
            "timeframe": self.timeframe,
            "parameters": [p.to_dict() for p in self.parameters.values()],
        }

    # ── Data access ──────────────────────────────────────────────────────

    async def _fetch_quote(self, connection) -> PriceQuote:
        try:
            return await connection.get_symbol_price(self.symbol)
        except SignalDeskError:
            raise
        except Exception as exc:
            raise DataUnavailableError(
                f"Price fetch for {self.symbol} failed: {exc}"
            ) from exc

    async def _fetch_candles(self, connection) -> list[Candle]:
        try:
            return await connection.get_candles(
                self.symbol, self.timeframe, self.candle_count,
            )
        except SignalDeskError:
            raise
        except Exception as exc:
            raise DataUnavailableError(
                f"Candle fetch for {self.symbol} failed: {exc}"
            ) from exc

    # ── Analysis ─────────────────────────────────────────────────────────

    async def analyze(self, connection) -> Optional[TradeSignal]:
        """Run one analysis cycle against *connection*.

        Returns:
            ``TradeSignal`` when the rule table fires, else ``None``.

        Raises:
            DataUnavailableError: if the connection could not deliver data.
        """
        self.last_insight = {
            "strategy": self.name,
            "symbol": self.symbol,
            "checks": {},
        }
        try:
            quote = validate_quote(
                await self._fetch_quote(connection),
                self.min_spread,
                self.max_spread,
            )
            self.last_insight["checks"]["quote_valid"] = True
            candles = validate_candles(
                await self._fetch_candles(connection),
                self.required_candles,
            )
            self.last_insight["checks"]["candles_sufficient"] = True
            signal = await self._evaluate(quote, candles, connection)
        except ValidationError as exc:
            logger.debug("%s: input rejected — %s", self.name, exc.message)
            self.last_insight["result"] = "invalid_input"
            self.last_insight["reason"] = exc.message
            return None
        except (ValueError, ZeroDivisionError) as exc:
            logger.warning("%s: indicator computation failed — %s", self.name, exc)
            self.last_insight["result"] = "indicator_error"
            self.last_insight["reason"] = str(exc)
            return None

        self.last_insight["result"] = signal.type if signal else "no_signal"
        return signal

    async def _evaluate(
        self,
        quote: PriceQuote,
        candles: list[Candle],
        connection,
    ) -> Optional[TradeSignal]:
        raise NotImplementedError

    def _signal(
        self,
        direction: str,
        levels: RiskLevels,
        reason: str = "",
        volume: Optional[float] = None,
    ) -> TradeSignal:
        digits = self.digits
        return TradeSignal(
            type=direction,
            symbol=self.symbol,
            volume=self.volume if volume is None else volume,
            stop_loss=round(levels.stop_loss, digits),
            take_profit=round(levels.take_profit, digits),
            entry_price=round(levels.entry, digits),
            reason=reason,
        )


def entry_for(direction: str, quote: PriceQuote) -> float:
    """Market entry: buys fill at the ask, sells at the bid."""
    return quote.ask if direction == "buy" else quote.bid
