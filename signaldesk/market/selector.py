"""Strategy selector — picks the catalog strategy best suited to a regime."""

import logging
from typing import Iterable, Optional

from signaldesk.catalog.models import MarketCondition, TradingStrategy

logger = logging.getLogger("signaldesk.market")

VOLATILITY_TOLERANCE = 0.2
VOLUME_TOLERANCE = 0.2


def is_condition_matching(current: MarketCondition, target: MarketCondition) -> bool:
    """Trend and timeframe must match exactly; volatility and volume within 0.2."""
    return (
        abs(current.volatility - target.volatility) <= VOLATILITY_TOLERANCE
        and current.trend == target.trend
        and abs(current.volume - target.volume) <= VOLUME_TOLERANCE
        and current.timeframe == target.timeframe
    )


def is_suitable(strategy: TradingStrategy, condition: MarketCondition) -> bool:
    if is_condition_matching(condition, strategy.optimal):
        return True
    return any(is_condition_matching(condition, c) for c in strategy.acceptable)


def select_best_strategy(
    condition: MarketCondition,
    strategies: Iterable[TradingStrategy],
) -> Optional[TradingStrategy]:
    """Return the suitable strategy with the highest overall Sharpe ratio.

    Suitable means the optimal condition or any acceptable condition
    matches.  Entries without performance metrics never displace the
    current best; the first suitable entry is kept when none has metrics.
    Returns ``None`` when nothing matches.
    """
    best: Optional[TradingStrategy] = None
    for strategy in strategies:
        if not is_suitable(strategy, condition):
            continue
        if best is None:
            best = strategy
            continue
        if strategy.performance_metrics is None:
            continue
        if (
            best.performance_metrics is None
            or strategy.performance_metrics.sharpe_ratio
            > best.performance_metrics.sharpe_ratio
        ):
            best = strategy

    if best is None:
        logger.info("No catalog strategy matches %s", condition)
    return best
