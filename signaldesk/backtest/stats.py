"""Backtest statistics — pure functions for trade-series analysis."""

import math
from typing import Optional

TIMEFRAME_MINUTES: dict[str, int] = {
    "1m": 1,
    "5m": 5,
    "15m": 15,
    "30m": 30,
    "1h": 60,
    "4h": 240,
    "1d": 1440,
}

TRADING_DAYS_PER_YEAR = 252


def periods_per_year(timeframe: str) -> float:
    """Number of *timeframe* bars in a trading year.

    Raises ``ValueError`` for an unknown timeframe.
    """
    if timeframe not in TIMEFRAME_MINUTES:
        raise ValueError(
            f"Unknown timeframe '{timeframe}'. "
            f"Available: {', '.join(TIMEFRAME_MINUTES.keys())}"
        )
    return TRADING_DAYS_PER_YEAR * 1440 / TIMEFRAME_MINUTES[timeframe]


def calculate_stats(
    trades: list[dict],
    equity_curve: list[float],
    timeframe: str = "1d",
) -> dict:
    """Compute summary statistics from closed trades and the equity curve.

    Each trade dict must have a ``"pnl"`` key (float).  The equity curve
    holds one marked-to-market value per bar, starting with the initial
    balance.

    Returns:
        Dict matching the ``backtest_runs`` table columns:
        ``trades_count``, ``winning_trades``, ``losing_trades``,
        ``win_rate``, ``profit_factor``, ``profit_loss``,
        ``sharpe_ratio``, ``max_drawdown``, ``max_drawdown_pct``.
    """
    sharpe_ratio = _sharpe(_returns(equity_curve), periods_per_year(timeframe))
    max_dd, max_dd_pct = _max_drawdown(equity_curve)

    if not trades:
        return {
            "trades_count": 0,
            "winning_trades": 0,
            "losing_trades": 0,
            "win_rate": 0.0,
            "profit_factor": None,
            "profit_loss": 0.0,
            "sharpe_ratio": round(sharpe_ratio, 4),
            "max_drawdown": round(max_dd, 2),
            "max_drawdown_pct": round(max_dd_pct, 4),
        }

    pnls = [t["pnl"] for t in trades]
    total = len(pnls)
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p <= 0]

    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    profit_factor: Optional[float] = (
        gross_profit / gross_loss if gross_loss > 0 else None
    )

    return {
        "trades_count": total,
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "win_rate": round(len(winners) / total, 4),
        "profit_factor": round(profit_factor, 4) if profit_factor is not None else None,
        "profit_loss": round(sum(pnls), 2),
        "sharpe_ratio": round(sharpe_ratio, 4),
        "max_drawdown": round(max_dd, 2),
        "max_drawdown_pct": round(max_dd_pct, 4),
    }


# ── Helpers ──────────────────────────────────────────────────────────────


def _returns(equity_curve: list[float]) -> list[float]:
    """Per-bar simple returns, skipping bars that start from zero equity."""
    return [
        equity_curve[i] / equity_curve[i - 1] - 1
        for i in range(1, len(equity_curve))
        if equity_curve[i - 1] != 0
    ]


def _sharpe(returns: list[float], periods: float) -> float:
    """Annualised Sharpe ratio from a per-bar return series.

    Uses sample standard deviation (n − 1).  Returns 0.0 when the series
    has fewer than 2 observations or zero variance.
    """
    n = len(returns)
    if n < 2:
        return 0.0
    mean = sum(returns) / n
    variance = sum((r - mean) ** 2 for r in returns) / (n - 1)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return (mean / std) * math.sqrt(periods)


def _max_drawdown(equity_curve: list[float]) -> tuple[float, float]:
    """Largest peak-to-trough decline of the equity curve.

    Returns ``(absolute, percent_of_peak)``, both non-negative.
    """
    if not equity_curve:
        return 0.0, 0.0
    peak = equity_curve[0]
    max_dd = 0.0
    max_dd_pct = 0.0
    for value in equity_curve:
        if value > peak:
            peak = value
        dd = peak - value
        if dd > max_dd:
            max_dd = dd
            max_dd_pct = dd / peak * 100 if peak > 0 else 0.0
    return max_dd, max_dd_pct
