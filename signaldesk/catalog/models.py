"""Catalog data models — strategies with their target market regimes."""

from dataclasses import dataclass, field
from typing import Optional

from signaldesk.strategy.models import StrategyParameter

TRENDS = ("bullish", "bearish", "sideways")
STATUSES = ("active", "inactive", "testing")


@dataclass(frozen=True)
class MarketCondition:
    """Coarse market regime.

    ``volatility`` and ``volume`` are normalised to ``[0, 1]`` where 0.5
    is the reference level.
    """

    trend: str
    volatility: float
    volume: float
    timeframe: str

    def to_dict(self) -> dict:
        return {
            "trend": self.trend,
            "volatility": self.volatility,
            "volume": self.volume,
            "timeframe": self.timeframe,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MarketCondition":
        trend = data["trend"]
        if trend not in TRENDS:
            raise ValueError(f"Unknown trend '{trend}'. Expected one of {TRENDS}")
        return cls(
            trend=trend,
            volatility=float(data["volatility"]),
            volume=float(data["volume"]),
            timeframe=str(data["timeframe"]),
        )


@dataclass(frozen=True)
class PerformanceMetrics:
    win_rate: float
    sharpe_ratio: float
    max_drawdown: float

    def to_dict(self) -> dict:
        return {
            "win_rate": self.win_rate,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PerformanceMetrics":
        return cls(
            win_rate=float(data.get("win_rate", 0.0)),
            sharpe_ratio=float(data.get("sharpe_ratio", 0.0)),
            max_drawdown=float(data.get("max_drawdown", 0.0)),
        )


@dataclass
class TradingStrategy:
    """A catalog entry.

    ``performance_metrics`` is ``None`` until the strategy has been
    backtested or traded.
    """

    id: str
    name: str
    description: str
    status: str
    parameters: list[StrategyParameter]
    optimal: MarketCondition
    acceptable: list[MarketCondition] = field(default_factory=list)
    performance_metrics: Optional[PerformanceMetrics] = None
    by_condition: dict[str, PerformanceMetrics] = field(default_factory=dict)

    def parameter_values(self) -> dict[str, float]:
        return {p.name: p.value for p in self.parameters}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "parameters": [p.to_dict() for p in self.parameters],
            "market_conditions": {
                "optimal": self.optimal.to_dict(),
                "acceptable": [c.to_dict() for c in self.acceptable],
            },
            "performance_metrics": (
                {
                    "overall": self.performance_metrics.to_dict(),
                    "by_condition": {
                        k: v.to_dict() for k, v in self.by_condition.items()
                    },
                }
                if self.performance_metrics else None
            ),
        }
