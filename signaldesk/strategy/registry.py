"""Strategy registry — maps strategy ids to classes.

Used by the supervisor, the catalog and the backtest engine to
instantiate strategies by id.
"""

from signaldesk.strategy.ai_breakout import AIBreakoutStrategy
from signaldesk.strategy.base import BaseStrategy
from signaldesk.strategy.bollinger_breakout import BollingerBreakoutStrategy
from signaldesk.strategy.gold import GoldStrategy
from signaldesk.strategy.grid import AdaptiveGridStrategy, GridGamblingStrategy
from signaldesk.strategy.ma_crossover import MACrossoverStrategy
from signaldesk.strategy.macd_trend import MACDTrendStrategy
from signaldesk.strategy.mean_reversion import MeanReversionStrategy
from signaldesk.strategy.momentum import MomentumStrategy
from signaldesk.strategy.rsi_reversal import RSIReversalStrategy
from signaldesk.strategy.technical import TechnicalStrategy


STRATEGY_REGISTRY: dict[str, type[BaseStrategy]] = {
    cls.id: cls
    for cls in (
        GoldStrategy,
        MeanReversionStrategy,
        MomentumStrategy,
        MACDTrendStrategy,
        RSIReversalStrategy,
        AdaptiveGridStrategy,
        GridGamblingStrategy,
        TechnicalStrategy,
        MACrossoverStrategy,
        BollingerBreakoutStrategy,
        AIBreakoutStrategy,
    )
}


def get_strategy(name: str, **kwargs) -> BaseStrategy:
    """Look up and instantiate a strategy by registry key.

    Keyword arguments (``symbol``, ``volume``, parameter values) are passed
    to the constructor.

    Raises ``KeyError`` if the strategy name is not registered.
    """
    if name not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return STRATEGY_REGISTRY[name](**kwargs)


def list_strategies(category: str | None = None) -> list[dict]:
    """Describe every registered strategy, optionally filtered by category."""
    return [
        cls().describe()
        for cls in STRATEGY_REGISTRY.values()
        if category is None or cls.category == category
    ]
