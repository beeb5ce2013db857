"""Internal API routers — status, events, strategies, market, control, backtest.

No business logic, no DB access. Delegates to the supervisor, the
catalog, repos and the connection injected at startup.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query

from signaldesk.backtest.engine import BacktestRequest, backtest_strategy, compare_strategies
from signaldesk.catalog.models import PerformanceMetrics
from signaldesk.errors import SignalDeskError, SupervisorError
from signaldesk.market.classifier import classify_trend
from signaldesk.market.selector import select_best_strategy
from signaldesk.strategy.confluence import ConfluenceInputs, analyze_confluence
from signaldesk.strategy.indicators import (
    calculate_atr,
    calculate_bollinger,
    calculate_macd,
    calculate_rsi,
    volume_strength,
)
from signaldesk.strategy.registry import get_strategy, list_strategies

logger = logging.getLogger("signaldesk.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_DEFAULT_STATUS: dict = {
    "mode": "idle",
    "running": False,
    "strategy": None,
    "symbol": None,
    "error_count": 0,
    "last_error": None,
    "last_update": None,
    "last_trade_time": None,
    "trades_executed": 0,
    "started_at": None,
    "stopped_at": None,
}

_bot_status: dict = {**_DEFAULT_STATUS}
_event_history: list = []  # Recent supervisor events (max 50 entries)

_supervisor = None       # Set via configure_routers()
_catalog = None          # Set via configure_routers()
_connection = None       # Set via configure_routers()
_market_service = None   # Set via configure_routers()
_trade_repo = None       # Set via configure_routers()
_backtest_repo = None    # Set via configure_routers()
_start_task: Optional[asyncio.Task] = None  # Pending supervisor start

_MAX_EVENTS = 50


def configure_routers(
    supervisor=None,
    catalog=None,
    connection=None,
    market_service=None,
    trade_repo=None,
    backtest_repo=None,
    mode: str = "paper",
) -> None:
    """Inject dependencies from the application startup.

    Args:
        supervisor: A ``BotSupervisor``; its events feed the status store.
        catalog: A ``StrategyCatalog``.
        connection: Broker connection used for positions, analysis and
            backtest candles.
        market_service: A ``MarketAnalysisService``.
        trade_repo: A ``TradeRepo`` instance (or duck-type for tests).
        backtest_repo: A ``BacktestRepo`` instance.
        mode: ``paper`` or ``live``, shown in the status.
    """
    global _supervisor, _catalog, _connection, _market_service  # noqa: PLW0603
    global _trade_repo, _backtest_repo, _start_task  # noqa: PLW0603
    _supervisor = supervisor
    _catalog = catalog
    _connection = connection
    _market_service = market_service
    _trade_repo = trade_repo
    _backtest_repo = backtest_repo
    _start_task = None

    _bot_status.clear()
    _bot_status.update(_DEFAULT_STATUS)
    _event_history.clear()
    update_bot_status(mode=mode)

    if supervisor is not None:
        for kind in ("started", "stopped", "trade", "error"):
            supervisor.subscribe(kind, record_event)
        strategy = supervisor.strategy
        if strategy is not None:
            update_bot_status(strategy=strategy.name, symbol=strategy.symbol)


def update_bot_status(**fields) -> None:
    """Update individual fields of the status dict."""
    _bot_status.update(fields)


def record_event(event) -> None:
    """Supervisor listener: log the event and refresh the status store."""
    data = event.to_dict()
    _event_history.append(data)
    # Cap at 50 entries
    if len(_event_history) > _MAX_EVENTS:
        del _event_history[0]

    kind = data["type"]
    if kind == "started":
        update_bot_status(running=True, started_at=data["time"], stopped_at=None)
    elif kind == "stopped":
        update_bot_status(running=False, stopped_at=data["time"])
    elif kind == "trade":
        update_bot_status(last_trade_time=data["time"])
    elif kind == "error":
        update_bot_status(
            error_count=data["count"],
            last_error={"message": data["message"], "time": data["time"]},
        )


def _active_strategy():
    return _supervisor.strategy if _supervisor is not None else None


# ── Status & events ──────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return the bot status merged with the supervisor's live counters."""
    status = dict(_bot_status)
    if _supervisor is not None:
        status.update(_supervisor.get_status())
        strategy = _supervisor.strategy
        if strategy is not None:
            status["symbol"] = strategy.symbol
    return status


@router.get("/events")
async def get_events(limit: int = Query(default=20, ge=1, le=50)):
    """Return recent supervisor events, newest first."""
    recent = _event_history[-limit:]
    recent.reverse()
    return {"events": recent}


@router.get("/trades")
async def get_trades(
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[str] = Query(default=None),
    strategy: Optional[str] = Query(default=None),
):
    """Return recent trade log entries."""
    if _trade_repo is None:
        return {"trades": [], "total": 0}
    return _trade_repo.get_trades(limit=limit, status_filter=status, strategy=strategy)


@router.get("/positions")
async def get_positions():
    """Return open positions from the connection."""
    if _connection is None:
        return {"positions": []}
    try:
        positions = await _connection.get_positions()
    except Exception as exc:
        logger.warning("Position fetch failed: %s", exc)
        return {"positions": [], "error": str(exc)}
    return {
        "positions": [
            {
                "id": p.position_id,
                "symbol": p.symbol,
                "type": p.type,
                "volume": p.volume,
                "open_price": p.open_price,
                "stop_loss": p.stop_loss,
                "take_profit": p.take_profit,
                "profit": p.profit,
            }
            for p in positions
        ]
    }


# ── Strategies ───────────────────────────────────────────────────────────


@router.get("/strategies")
async def get_strategies(status: Optional[str] = Query(default=None)):
    """Return the strategy catalog, or every registered strategy without one."""
    if _catalog is None:
        return {"strategies": list_strategies()}
    return {"strategies": [e.to_dict() for e in _catalog.list_entries(status)]}


@router.get("/strategies/{strategy_id}")
async def get_strategy_entry(strategy_id: str):
    if _catalog is not None:
        entry = _catalog.get(strategy_id)
        if entry is not None:
            return entry.to_dict()
    try:
        return get_strategy(strategy_id).describe()
    except KeyError as exc:
        return {"error": exc.args[0]}


@router.post("/strategies/{strategy_id}/parameters")
async def post_strategy_parameters(strategy_id: str, body: dict):
    """Clamp and save parameter values; the active strategy picks them up."""
    if _catalog is None:
        return {"error": "No strategy catalog"}
    try:
        entry = _catalog.update_parameters(strategy_id, body)
    except (KeyError, ValueError) as exc:
        return {"error": exc.args[0]}

    active = _active_strategy()
    if active is not None and getattr(active, "id", None) == strategy_id:
        known = {
            k: v for k, v in entry.parameter_values().items()
            if k in active.parameters
        }
        active.update_parameters(known)
    return {"status": "ok", "strategy": entry.to_dict()}


@router.get("/indicators")
async def get_indicators():
    """Return the active strategy's last analysis and cached indicators."""
    strategy = _active_strategy()
    if strategy is None:
        return {"insight": None}
    result: dict = {"insight": dict(getattr(strategy, "last_insight", {}) or {})}
    if hasattr(strategy, "get_rsi"):
        bands = strategy.get_bollinger()
        result["rsi"] = strategy.get_rsi()
        result["macd"] = strategy.get_macd()
        result["bollinger"] = (
            {"upper": bands.upper, "middle": bands.middle, "lower": bands.lower}
            if bands else None
        )
    return result


# ── Market ───────────────────────────────────────────────────────────────


@router.get("/market/condition")
async def get_market_condition(symbol: Optional[str] = Query(default=None)):
    """Classify the current regime and show the catalog's best match."""
    if _market_service is None:
        return {"error": "No market analysis service"}
    active = _active_strategy()
    symbol = symbol or (active.symbol if active else None)
    if symbol is None:
        return {"error": "No symbol given"}
    try:
        condition = await _market_service.analyze(symbol)
    except SignalDeskError as exc:
        return {"error": exc.message}

    best = select_best_strategy(condition, _catalog.list_entries("active")) if _catalog else None
    return {
        "symbol": symbol,
        "condition": condition.to_dict(),
        "recommended": best.id if best else None,
    }


@router.post("/market/select")
async def post_market_select(body: dict):
    """Classify the market and switch the supervisor to the best strategy."""
    if _market_service is None or _catalog is None or _supervisor is None:
        return {"error": "Market selection is not configured"}
    active = _supervisor.strategy
    symbol = body.get("symbol") or (active.symbol if active else None)
    if symbol is None:
        return {"error": "No symbol given"}
    try:
        condition = await _market_service.analyze(symbol)
    except SignalDeskError as exc:
        return {"error": exc.message}

    best = select_best_strategy(condition, _catalog.list_entries("active"))
    if best is None:
        return {"status": "no_match", "condition": condition.to_dict()}
    _supervisor.set_strategy(_catalog.create_strategy(best.id, symbol=symbol))
    update_bot_status(strategy=_supervisor.strategy.name, symbol=symbol)
    return {"status": "ok", "strategy": best.id, "condition": condition.to_dict()}


@router.get("/analysis/{symbol}")
async def get_analysis(symbol: str, timeframe: str = Query(default="5m")):
    """Indicator confluence for *symbol* with probability and risk levels."""
    if _connection is None:
        return {"error": "No connection"}
    try:
        quote = await _connection.get_symbol_price(symbol)
        candles = await _connection.get_candles(symbol, timeframe, 100)
    except Exception as exc:
        logger.warning("Analysis data fetch failed for %s: %s", symbol, exc)
        return {"error": str(exc)}
    if len(candles) < 50:
        return {"error": f"Need at least 50 candles, got {len(candles)}"}

    closes = [c.close for c in candles]
    macd = calculate_macd(closes)
    trend = classify_trend(closes, _market_service.thresholds) if _market_service else None
    inputs = ConfluenceInputs(
        rsi=calculate_rsi(closes)[-1],
        macd=macd.macd[-1],
        macd_signal=macd.signal[-1],
        macd_histogram=macd.histogram[-1],
        bollinger=calculate_bollinger(closes),
        atr=calculate_atr(
            [c.high for c in candles], [c.low for c in candles], closes,
        )[-1],
        trend=trend,
        volume_strength=volume_strength([c.volume for c in candles]),
    )
    analysis = analyze_confluence(quote, inputs)
    return {
        "symbol": symbol,
        "timeframe": timeframe,
        "analysis": analysis.to_dict() if analysis else None,
    }


# ── Control actions ──────────────────────────────────────────────────────


@router.post("/control/start")
async def start_bot():
    """Begin starting the supervisor; it ticks once the terminal is synchronised."""
    global _start_task  # noqa: PLW0603
    if _supervisor is None:
        return {"error": "No supervisor"}
    if _supervisor.running or (_start_task is not None and not _start_task.done()):
        return {"error": "Bot is already running"}
    if _connection is None:
        return {"error": "No connection available"}
    if _supervisor.strategy is None:
        return {"error": "No strategy selected"}

    _start_task = asyncio.create_task(_supervisor.start(_connection))
    _start_task.add_done_callback(_log_start_outcome)
    logger.info("Bot start requested via dashboard.")
    return {"status": "starting"}


def _log_start_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.warning("Bot start cancelled.")
        return
    exc = task.exception()
    if isinstance(exc, SupervisorError):
        logger.warning("Bot start refused: %s", exc.message)
        update_bot_status(last_error={"message": exc.message, "time": exc.time.isoformat()})
    elif exc is not None:
        logger.error("Bot start failed: %s", exc, exc_info=exc)
        update_bot_status(last_error={
            "message": str(exc), "time": datetime.now(timezone.utc).isoformat(),
        })


@router.post("/control/stop")
async def stop_bot():
    """Stop the supervisor and wait for any in-flight tick."""
    if _supervisor is None:
        return {"error": "No supervisor"}
    _supervisor.stop()
    await _supervisor.wait_stopped()
    logger.info("Bot stopped via dashboard.")
    return {"status": "stopped"}


@router.post("/control/strategy")
async def switch_strategy(body: dict):
    """Replace the active strategy by id."""
    if _supervisor is None:
        return {"error": "No supervisor"}
    strategy_id = body.get("strategy_id", "")
    symbol = body.get("symbol")
    kwargs = {"symbol": symbol} if symbol else {}
    try:
        if _catalog is not None:
            strategy = _catalog.create_strategy(strategy_id, **kwargs)
        else:
            strategy = get_strategy(strategy_id, **kwargs)
    except KeyError as exc:
        return {"error": exc.args[0]}
    _supervisor.set_strategy(strategy)
    update_bot_status(strategy=strategy.name, symbol=strategy.symbol)
    return {"status": "ok", "strategy": strategy.describe()}


# ── Backtest ─────────────────────────────────────────────────────────────


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@router.post("/backtest")
async def run_backtest(body: dict):
    """Backtest one strategy on candles fetched from the connection."""
    if _connection is None:
        return {"error": "No connection"}
    try:
        request = BacktestRequest(
            strategy_id=body["strategy_id"],
            timeframe=body.get("timeframe", "5m"),
            parameters=body.get("parameters", {}),
            start_date=_parse_date(body.get("start_date")),
            end_date=_parse_date(body.get("end_date")),
            initial_balance=float(body.get("initial_balance", 10_000.0)),
            symbol=body.get("symbol"),
        )
        symbol = request.symbol or get_strategy(request.strategy_id).symbol
        candles = await _connection.get_candles(
            symbol, request.timeframe, int(body.get("count", 1000)),
        )
        result = await backtest_strategy(request, candles)
    except (KeyError, ValueError) as exc:
        return {"error": str(exc.args[0]) if exc.args else str(exc)}

    if _backtest_repo is not None:
        _backtest_repo.insert_run(
            strategy_id=result.strategy_id,
            symbol=result.symbol,
            timeframe=result.timeframe,
            initial_balance=request.initial_balance,
            stats=result.stats,
            parameters=request.parameters,
            start_date=result.period["start"],
            end_date=result.period["end"],
        )
    if _catalog is not None and _catalog.get(result.strategy_id) is not None:
        _catalog.record_performance(
            result.strategy_id,
            PerformanceMetrics(
                win_rate=result.win_rate,
                sharpe_ratio=result.sharpe_ratio,
                max_drawdown=result.max_drawdown,
            ),
        )
    return result.to_dict()


@router.post("/backtest/compare")
async def run_comparison(body: dict):
    """Backtest several strategies on the same candles, best Sharpe first."""
    if _connection is None:
        return {"error": "No connection"}
    strategy_ids = body.get("strategy_ids", [])
    if not strategy_ids:
        return {"error": "strategy_ids is required"}
    timeframe = body.get("timeframe", "5m")
    try:
        symbol = body.get("symbol") or get_strategy(strategy_ids[0]).symbol
        candles = await _connection.get_candles(symbol, timeframe, int(body.get("count", 1000)))
        results = await compare_strategies(
            strategy_ids,
            candles,
            timeframe=timeframe,
            initial_balance=float(body.get("initial_balance", 10_000.0)),
            symbol=symbol,
        )
    except (KeyError, ValueError) as exc:
        return {"error": str(exc.args[0]) if exc.args else str(exc)}
    return {"results": [r.to_dict(include_series=False) for r in results]}


@router.get("/backtest/runs")
async def get_backtest_runs(
    limit: int = Query(default=10, ge=1, le=100),
    strategy: Optional[str] = Query(default=None),
):
    if _backtest_repo is None:
        return {"runs": []}
    return {"runs": _backtest_repo.get_runs(limit=limit, strategy_id=strategy)}
