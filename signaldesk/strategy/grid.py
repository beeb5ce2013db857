"""Grid strategies — a persistent ladder of buy levels below and sell levels above a base price.

Two variants share ``GridLadder``:

- ``AdaptiveGridStrategy`` scales spacing with recent range, trades only
  inside a volatility band and when momentum agrees with the level side.
- ``GridGamblingStrategy`` uses geometric level volumes and fires on any
  nearby inactive level until a total-exposure cap is hit.

The ladder is rebuilt when price drifts more than two spacings from the
base or when the share of active levels reaches the rebalance threshold.
"""

import logging
from typing import Callable, Optional

from signaldesk.broker.models import Candle, OrderResult, PriceQuote
from signaldesk.errors import DataUnavailableError, SignalDeskError
from signaldesk.risk.sl_tp import calculate_risk_levels
from signaldesk.strategy.base import BaseStrategy, entry_for
from signaldesk.strategy.indicators import average_range, calculate_momentum
from signaldesk.strategy.models import GridLevel, StrategyParameter, TradeSignal

logger = logging.getLogger("signaldesk.strategy.grid")


class GridLadder:
    """Mutable ladder state owned by one grid strategy instance."""

    def __init__(self) -> None:
        self.levels: list[GridLevel] = []
        self.base_price: float = 0.0
        self.spacing: float = 0.0
        self.total_exposure: float = 0.0
        self.active_positions: int = 0

    @property
    def is_built(self) -> bool:
        return bool(self.levels)

    @property
    def active_ratio(self) -> float:
        if not self.levels:
            return 0.0
        return sum(1 for lvl in self.levels if lvl.active) / len(self.levels)

    def build(
        self,
        base_price: float,
        spacing: float,
        count: int,
        volume_for: Callable[[int], float],
    ) -> None:
        """Lay out *count* buy levels below and *count* sell levels above *base_price*.

        ``volume_for(i)`` gives the volume of the i-th level (1-based) on
        each side.  Exposure counters are kept; only the ladder is replaced.
        """
        self.base_price = base_price
        self.spacing = spacing
        self.levels = []
        for i in range(1, count + 1):
            self.levels.append(
                GridLevel(price=base_price - spacing * i, volume=volume_for(i), type="buy")
            )
        for i in range(1, count + 1):
            self.levels.append(
                GridLevel(price=base_price + spacing * i, volume=volume_for(i), type="sell")
            )

    def needs_rebalance(self, mid_price: float, threshold: float) -> bool:
        """Drift beyond two spacings, or active share at or above *threshold*."""
        if not self.levels:
            return True
        if abs(mid_price - self.base_price) > self.spacing * 2:
            return True
        return self.active_ratio >= threshold

    def nearest_inactive(
        self, mid_price: float, side: Optional[str] = None,
    ) -> Optional[GridLevel]:
        """Closest inactive level within half a spacing of *mid_price*."""
        best: Optional[GridLevel] = None
        best_distance = float("inf")
        for lvl in self.levels:
            if lvl.active or (side is not None and lvl.type != side):
                continue
            distance = abs(mid_price - lvl.price)
            if distance < best_distance:
                best, best_distance = lvl, distance
        if best is None or best_distance > self.spacing / 2:
            return None
        return best

    def activate(self, side: str, price: float, volume: float) -> Optional[GridLevel]:
        """Mark the *side* level near *price* as holding a position."""
        for lvl in self.levels:
            if lvl.type == side and abs(lvl.price - price) < self.spacing / 2:
                if not lvl.active:
                    lvl.active = True
                    self.active_positions += 1
                    self.total_exposure += volume
                return lvl
        return None

    def deactivate(self, price: float) -> Optional[GridLevel]:
        """Free the active level near *price* after its position closed."""
        for lvl in self.levels:
            if lvl.active and abs(lvl.price - price) < self.spacing / 2:
                lvl.active = False
                self.active_positions -= 1
                self.total_exposure = max(0.0, self.total_exposure - lvl.volume)
                return lvl
        return None

    def reset(self) -> None:
        self.levels = []
        self.base_price = 0.0
        self.spacing = 0.0
        self.total_exposure = 0.0
        self.active_positions = 0

    def snapshot(self) -> dict:
        return {
            "base_price": self.base_price,
            "spacing": self.spacing,
            "total_exposure": round(self.total_exposure, 4),
            "active_positions": self.active_positions,
            "levels": [
                {"price": l.price, "volume": l.volume, "type": l.type, "active": l.active}
                for l in self.levels
            ],
        }


class _GridStrategy(BaseStrategy):
    """Ladder ownership and trade feedback shared by both grid variants."""

    category = "grid"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.ladder = GridLadder()

    def on_trade_result(self, signal: TradeSignal, result: OrderResult) -> None:
        """Record a filled grid order against its level."""
        price = result.price if result.price > 0 else signal.entry_price
        level = self.ladder.activate(signal.type, price, result.volume)
        if level is None:
            logger.warning(
                "%s: no %s level near fill %.5f", self.name, signal.type, price,
            )
        self.last_insight["grid"] = self.ladder.snapshot()

    def on_position_closed(self, price: float) -> None:
        self.ladder.deactivate(price)

    def reset(self) -> None:
        self.ladder.reset()


# ── Adaptive grid ────────────────────────────────────────────────────────


class AdaptiveGridStrategy(_GridStrategy):
    """Volatility-scaled grid that trades with short-term momentum reversals.

    Buy levels are taken while momentum is negative (price falling into
    the ladder), sell levels while it is positive.
    """

    id = "ai_grid"
    name = "AI Grid Master"
    description = "Adaptive grid with volatility band and momentum filter."
    symbol = "EURUSD"
    interval = 30_000
    timeframe = "5m"

    CANDLE_COUNT: int = 50

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("grid_levels", 10, 1, 50, 1, 10, "Levels per side"),
            StrategyParameter("grid_spacing", 0.0010, 0.0001, 0.05, 0.0001, 0.0010,
                              "Minimum distance between levels"),
            StrategyParameter("max_positions", 5, 1, 50, 1, 5,
                              "Open positions above which no new level is taken"),
            StrategyParameter("volatility_period", 20, 5, 100, 1, 20,
                              "Bars in the average-range volatility"),
            StrategyParameter("min_volatility", 0.0005, 0.0, 0.05, 0.0001, 0.0005,
                              "Lowest average range that still trades"),
            StrategyParameter("max_volatility", 0.0050, 0.0001, 0.5, 0.0001, 0.0050,
                              "Highest average range that still trades"),
            StrategyParameter("momentum_period", 10, 2, 50, 1, 10,
                              "Bars for the momentum percentage"),
            StrategyParameter("rebalance_threshold", 0.5, 0.1, 1.0, 0.05, 0.5,
                              "Active-level share that triggers a rebuild"),
        ]

    @property
    def required_candles(self) -> int:
        return max(self.param("volatility_period"), self.param("momentum_period") + 1)

    @property
    def candle_count(self) -> int:
        return max(self.CANDLE_COUNT, self.required_candles)

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        # 1 ── Open-position cap
        try:
            positions = await connection.get_positions()
        except SignalDeskError:
            raise
        except Exception as exc:
            raise DataUnavailableError(f"Positions fetch failed: {exc}") from exc
        self.last_insight["open_positions"] = len(positions)
        if len(positions) >= self.param("max_positions"):
            self.last_insight["reason"] = "max_positions"
            return None

        # 2 ── Volatility band
        volatility = average_range(
            [c.high for c in candles], [c.low for c in candles],
            self.param("volatility_period"),
        )
        momentum = calculate_momentum(
            [c.close for c in candles], self.param("momentum_period"),
        )
        self.last_insight["indicators"] = {
            "volatility": volatility,
            "momentum_pct": round(momentum, 4),
        }
        if not self.param("min_volatility") <= volatility <= self.param("max_volatility"):
            self.last_insight["reason"] = "volatility_out_of_range"
            return None

        # 3 ── Ladder maintenance
        mid = quote.mid
        if self.ladder.needs_rebalance(mid, self.param("rebalance_threshold")):
            spacing = max(self.param("grid_spacing"), volatility * 2)
            self.ladder.build(
                mid, spacing, self.param("grid_levels"), lambda i: self.volume,
            )
            logger.info(
                "%s: grid rebuilt at %.5f (spacing %.5f)", self.name, mid, spacing,
            )
        self.last_insight["grid"] = self.ladder.snapshot()

        # 4 ── Level selection with momentum agreement
        side = "buy" if momentum < 0 else "sell" if momentum > 0 else None
        if side is None:
            return None
        level = self.ladder.nearest_inactive(mid, side)
        if level is None:
            return None
        spacing = self.ladder.spacing
        if any(
            p.type == side and abs(p.open_price - level.price) < spacing / 4
            for p in positions
        ):
            return None

        levels = calculate_risk_levels(
            side, level.price, spacing, multiplier=1.0, risk_reward=1.0,
        )
        return self._signal(side, levels, f"Grid {side} level {level.price:.5f}")


# ── Static grid gambling ─────────────────────────────────────────────────


class GridGamblingStrategy(_GridStrategy):
    """Martingale-flavoured grid with geometric level volumes and an exposure cap."""

    id = "hybrid_grid_gambling"
    name = "Hybrid Grid Gambling"
    description = "Static grid with growing level size and a total exposure limit."
    category = "gambling"
    symbol = "EURUSD"
    interval = 5_000
    timeframe = "5m"

    CANDLE_COUNT: int = 20
    STOP_SPACINGS: float = 1.5
    TARGET_SPACINGS: float = 2.0

    def default_parameters(self) -> list[StrategyParameter]:
        return [
            StrategyParameter("levels", 10, 1, 50, 1, 10, "Levels per side"),
            StrategyParameter("base_volume", 0.01, 0.01, 1.0, 0.01, 0.01,
                              "Volume of the first level"),
            StrategyParameter("volume_multiplier", 1.5, 1.0, 3.0, 0.1, 1.5,
                              "Volume growth per level"),
            StrategyParameter("max_volume", 1.0, 0.01, 10.0, 0.01, 1.0,
                              "Largest single-level volume"),
            StrategyParameter("grid_spacing", 0.0020, 0.0001, 0.05, 0.0001, 0.0020,
                              "Minimum distance between levels"),
            StrategyParameter("max_exposure", 5.0, 0.1, 100.0, 0.1, 5.0,
                              "Total open volume at which trading pauses"),
            StrategyParameter("rebalance_threshold", 0.5, 0.1, 1.0, 0.05, 0.5,
                              "Active-level share that triggers a rebuild"),
        ]

    @property
    def required_candles(self) -> int:
        # Volatility is optional here; the configured spacing is the fallback
        return 0

    @property
    def candle_count(self) -> int:
        return self.CANDLE_COUNT

    async def _fetch_candles(self, connection) -> list[Candle]:
        try:
            return await connection.get_candles(
                self.symbol, self.timeframe, self.candle_count,
            )
        except Exception as exc:
            logger.warning("%s: volatility candles unavailable (%s)", self.name, exc)
            return []

    def level_volume(self, i: int) -> float:
        """Volume of the i-th level: ``base × multiplier^(i-1)`` capped at ``max_volume``."""
        vol = self.param("base_volume") * self.param("volume_multiplier") ** (i - 1)
        return round(min(vol, self.param("max_volume")), 2)

    async def _evaluate(
        self, quote: PriceQuote, candles: list[Candle], connection,
    ) -> Optional[TradeSignal]:
        mid = quote.mid

        # 1 ── Ladder maintenance
        if self.ladder.needs_rebalance(mid, self.param("rebalance_threshold")):
            volatility = 0.0
            if candles:
                volatility = average_range(
                    [c.high for c in candles], [c.low for c in candles], len(candles),
                )
            spacing = max(self.param("grid_spacing"), volatility * 2)
            self.ladder.build(mid, spacing, self.param("levels"), self.level_volume)
            logger.info(
                "%s: grid rebuilt at %.5f (spacing %.5f)", self.name, mid, spacing,
            )
        self.last_insight["grid"] = self.ladder.snapshot()

        # 2 ── Exposure cap
        if self.ladder.total_exposure >= self.param("max_exposure"):
            self.last_insight["reason"] = "max_exposure"
            logger.info(
                "%s: exposure %.2f at limit %.2f",
                self.name, self.ladder.total_exposure, self.param("max_exposure"),
            )
            return None

        # 3 ── Closest inactive level
        level = self.ladder.nearest_inactive(mid)
        if level is None:
            return None

        spacing = self.ladder.spacing
        levels = calculate_risk_levels(
            level.type,
            entry_for(level.type, quote),
            spacing,
            multiplier=self.STOP_SPACINGS,
            risk_reward=self.TARGET_SPACINGS / self.STOP_SPACINGS,
        )
        return self._signal(
            level.type, levels, f"Grid level {level.price:.5f}", volume=level.volume,
        )
