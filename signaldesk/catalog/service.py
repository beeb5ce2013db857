"""Strategy catalog — the set of strategies the selector can choose from.

Catalog entries come from a JSON file (``catalog.json``); parameter
bounds default to the registered strategy's own parameters.  User-saved
parameter values and recorded performance are persisted through
``CatalogRepo`` when one is supplied.
"""

import json
import logging
import pathlib
from typing import Optional

from signaldesk.catalog.models import (
    STATUSES,
    MarketCondition,
    PerformanceMetrics,
    TradingStrategy,
)
from signaldesk.repos.catalog_repo import CatalogRepo
from signaldesk.strategy.base import BaseStrategy
from signaldesk.strategy.models import StrategyParameter, parameter_number
from signaldesk.strategy.registry import STRATEGY_REGISTRY, get_strategy

logger = logging.getLogger("signaldesk.catalog")


def _parse_parameter(data: dict) -> StrategyParameter:
    p = StrategyParameter(
        name=data["name"],
        value=data.get("value", data.get("default")),
        min=data["min"],
        max=data["max"],
        step=data.get("step", 1),
        default=data.get("default"),
        description=data.get("description", ""),
    )
    p.value = p.clamp(p.value)
    return p


def _parse_entry(data: dict) -> TradingStrategy:
    strategy_id = data["id"]
    status = data.get("status", "active")
    if status not in STATUSES:
        raise ValueError(f"Strategy '{strategy_id}': unknown status '{status}'")

    if "parameters" in data:
        parameters = [_parse_parameter(p) for p in data["parameters"]]
    elif strategy_id in STRATEGY_REGISTRY:
        parameters = list(STRATEGY_REGISTRY[strategy_id]().parameters.values())
    else:
        parameters = []

    conditions = data.get("market_conditions", {})
    if "optimal" not in conditions:
        raise ValueError(f"Strategy '{strategy_id}': missing optimal market condition")

    metrics = data.get("performance_metrics")
    overall = None
    by_condition: dict[str, PerformanceMetrics] = {}
    if metrics:
        overall = PerformanceMetrics.from_dict(metrics["overall"])
        by_condition = {
            k: PerformanceMetrics.from_dict(v)
            for k, v in metrics.get("by_condition", {}).items()
        }

    return TradingStrategy(
        id=strategy_id,
        name=data.get("name", strategy_id),
        description=data.get("description", ""),
        status=status,
        parameters=parameters,
        optimal=MarketCondition.from_dict(conditions["optimal"]),
        acceptable=[MarketCondition.from_dict(c) for c in conditions.get("acceptable", [])],
        performance_metrics=overall,
        by_condition=by_condition,
    )


def load_catalog(path: str) -> list[TradingStrategy]:
    """Read catalog entries from a JSON file.

    The file holds either a list of entries or ``{"strategies": [...]}``.

    Raises:
        FileNotFoundError: if *path* does not exist.
        ValueError: on malformed entries.
    """
    raw = json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("strategies", [])
    return [_parse_entry(item) for item in raw]


class StrategyCatalog:
    """Explicitly constructed catalog shared by the supervisor and the API.

    Args:
        entries: Catalog entries.
        repo: Optional persistence for saved parameters and performance.
            Stored values are applied on construction.
    """

    def __init__(
        self,
        entries: list[TradingStrategy],
        repo: Optional[CatalogRepo] = None,
    ) -> None:
        self._entries: dict[str, TradingStrategy] = {e.id: e for e in entries}
        self._repo = repo
        if repo is not None:
            self._restore()

    @classmethod
    def from_json(cls, path: str, repo: Optional[CatalogRepo] = None) -> "StrategyCatalog":
        return cls(load_catalog(path), repo)

    def _restore(self) -> None:
        performance = self._repo.load_performance()
        for entry in self._entries.values():
            saved = self._repo.load_parameters(entry.id)
            for p in entry.parameters:
                if p.name in saved:
                    p.value = p.clamp(saved[p.name])
            if entry.id in performance:
                entry.performance_metrics = PerformanceMetrics.from_dict(
                    performance[entry.id]
                )

    # ── Queries ──────────────────────────────────────────────────────────

    def list_entries(self, status: Optional[str] = None) -> list[TradingStrategy]:
        return [
            e for e in self._entries.values()
            if status is None or e.status == status
        ]

    def get(self, strategy_id: str) -> Optional[TradingStrategy]:
        return self._entries.get(strategy_id)

    def __len__(self) -> int:
        return len(self._entries)

    # ── Mutations ────────────────────────────────────────────────────────

    def update_parameters(self, strategy_id: str, values: dict) -> TradingStrategy:
        """Clamp and store new parameter values for a catalog entry.

        Nothing is changed unless every value is numeric.

        Raises:
            KeyError: unknown strategy or parameter name.
            ValueError: a value is not a number.
        """
        entry = self._entries.get(strategy_id)
        if entry is None:
            raise KeyError(f"Strategy '{strategy_id}' not found")
        by_name = {p.name: p for p in entry.parameters}
        unknown = [k for k in values if k not in by_name]
        if unknown:
            raise KeyError(
                f"Unknown parameter(s) for '{strategy_id}': {', '.join(unknown)}"
            )

        numbers = {name: parameter_number(name, raw) for name, raw in values.items()}
        applied: dict[str, float] = {}
        for name, value in numbers.items():
            p = by_name[name]
            p.value = p.clamp(value)
            applied[name] = p.value

        if self._repo is not None:
            self._repo.save_parameters(strategy_id, applied)
        logger.info("Parameters updated for %s: %s", strategy_id, applied)
        return entry

    def record_performance(self, strategy_id: str, metrics: PerformanceMetrics) -> None:
        entry = self._entries.get(strategy_id)
        if entry is None:
            raise KeyError(f"Strategy '{strategy_id}' not found")
        entry.performance_metrics = metrics
        if self._repo is not None:
            self._repo.save_performance(
                strategy_id, metrics.win_rate, metrics.sharpe_ratio, metrics.max_drawdown,
            )

    # ── Instantiation ────────────────────────────────────────────────────

    def create_strategy(self, strategy_id: str, **kwargs) -> BaseStrategy:
        """Instantiate the registered strategy with the catalog's parameter values.

        Catalog parameters the strategy does not declare are ignored.
        """
        strategy = get_strategy(strategy_id, **kwargs)
        entry = self._entries.get(strategy_id)
        if entry is not None:
            known = {
                k: v for k, v in entry.parameter_values().items()
                if k in strategy.parameters
            }
            if known:
                strategy.update_parameters(known)
        return strategy
