"""SignalDesk — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
paper, live, and backtest modes.
"""

import logging
import pathlib

from fastapi import FastAPI

from signaldesk.api.routers import router

app = FastAPI(title="SignalDesk Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("signaldesk")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def warn_if_live(mode: str) -> bool:
    """Log a prominent warning when running in live mode.

    Returns ``True`` if *mode* is ``"live"``.
    """
    if mode == "live":
        logger.warning(
            "LIVE TRADING MODE — Real money at risk! Starting in 5 seconds..."
        )
        return True
    return False


def build_connection(config, mode: str, seed=None):
    """Bridge client for live trading, paper connection otherwise.

    Backtests use the bridge when credentials are configured so they run
    on real history.
    """
    from signaldesk.broker.bridge_client import BridgeClient
    from signaldesk.broker.paper import PaperConnection

    if mode == "live" or (mode == "backtest" and config.has_bridge):
        return BridgeClient(config)
    return PaperConnection(seed=seed)


def build_catalog(config):
    from signaldesk.catalog.service import StrategyCatalog
    from signaldesk.repos.catalog_repo import CatalogRepo

    repo = CatalogRepo(config.db_path)
    if pathlib.Path(config.catalog_path).exists():
        return StrategyCatalog.from_json(config.catalog_path, repo)
    logger.warning("Catalog file %s not found — starting with an empty catalog",
                   config.catalog_path)
    return StrategyCatalog([], repo)


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    import time

    from signaldesk.config import load_config
    from signaldesk.repos.db import init_db

    parser = argparse.ArgumentParser(description="SignalDesk trading assistant")
    parser.add_argument(
        "--mode",
        choices=["paper", "live", "backtest"],
        default="paper",
        help="Trading mode (default: paper)",
    )
    parser.add_argument("--strategy", help="Strategy id (default: ACTIVE_STRATEGY)")
    parser.add_argument("--symbol", help="Instrument (default: TRADE_SYMBOL)")
    parser.add_argument("--timeframe", default="5m", help="Backtest timeframe")
    parser.add_argument("--count", type=int, default=1000, help="Backtest candles")
    parser.add_argument("--start", help="Backtest start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="Backtest end date (YYYY-MM-DD)")
    parser.add_argument(
        "--compare", nargs="+", metavar="STRATEGY",
        help="Backtest several strategies and rank them by Sharpe ratio",
    )
    parser.add_argument("--seed", type=int, help="Paper price-walk seed")
    args = parser.parse_args()

    config = load_config(require_bridge=args.mode == "live")

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    init_db(config.db_path)

    if warn_if_live(args.mode):
        time.sleep(5)

    connection = build_connection(config, args.mode, args.seed)
    strategy_id = args.strategy or config.strategy
    symbol = args.symbol or config.symbol

    if args.mode == "backtest":
        asyncio.run(_run_backtest(config, connection, args, strategy_id, symbol))
        return

    asyncio.run(_run_bot(config, connection, args.mode, strategy_id, symbol))


async def _run_bot(config, connection, mode: str, strategy_id: str, symbol: str) -> None:
    """Start the API server and the supervisor concurrently."""
    import asyncio

    import uvicorn

    from signaldesk.api.routers import configure_routers
    from signaldesk.market.classifier import MarketAnalysisService
    from signaldesk.repos.backtest_repo import BacktestRepo
    from signaldesk.repos.trade_repo import TradeRepo
    from signaldesk.supervisor import BotSupervisor

    catalog = build_catalog(config)
    strategy = catalog.create_strategy(strategy_id, symbol=symbol)
    trade_repo = TradeRepo(config.db_path)
    supervisor = BotSupervisor.from_config(config, strategy, trade_repo, mode)

    configure_routers(
        supervisor=supervisor,
        catalog=catalog,
        connection=connection,
        market_service=MarketAnalysisService(connection),
        trade_repo=trade_repo,
        backtest_repo=BacktestRepo(config.db_path),
        mode=mode,
    )

    logger.info("Starting SignalDesk in %s mode with %s on %s.",
                mode, strategy.name, strategy.symbol)

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=config.api_port,
        log_level="info",
    )
    server = uvicorn.Server(uvi_config)

    async def _run_server():
        try:
            await server.serve()
        finally:
            supervisor.stop()

    async def _run_supervisor():
        await supervisor.start(connection)
        await supervisor.wait_stopped()

    logger.info("Dashboard API available at http://localhost:%d", config.api_port)
    results = await asyncio.gather(
        _run_server(),
        _run_supervisor(),
        return_exceptions=True,
    )
    logger.info("SignalDesk stopped. Results: %s", results)


async def _run_backtest(config, connection, args, strategy_id: str, symbol: str) -> None:
    """Fetch historical candles and run a backtest (or a comparison)."""
    from datetime import datetime

    from signaldesk.backtest.engine import BacktestRequest, backtest_strategy, compare_strategies
    from signaldesk.repos.backtest_repo import BacktestRepo

    candles = await connection.get_candles(symbol, args.timeframe, args.count)
    repo = BacktestRepo(config.db_path)

    if args.compare:
        results = await compare_strategies(
            args.compare, candles, timeframe=args.timeframe, symbol=symbol,
        )
    else:
        request = BacktestRequest(
            strategy_id=strategy_id,
            timeframe=args.timeframe,
            start_date=datetime.fromisoformat(args.start) if args.start else None,
            end_date=datetime.fromisoformat(args.end) if args.end else None,
            symbol=symbol,
        )
        results = [await backtest_strategy(request, candles)]

    for result in results:
        repo.insert_run(
            strategy_id=result.strategy_id,
            symbol=result.symbol,
            timeframe=result.timeframe,
            initial_balance=result.equity_curve[0] if result.equity_curve else 0.0,
            stats=result.stats,
            start_date=result.period["start"],
            end_date=result.period["end"],
        )
        logger.info(
            "Backtest %s: %d trades, P&L: $%.2f, Win rate: %.1f%%, "
            "Sharpe: %.2f, Max DD: $%.2f",
            result.strategy_id,
            result.trades_count,
            result.profit_loss,
            result.win_rate * 100,
            result.sharpe_ratio,
            result.max_drawdown,
        )


if __name__ == "__main__":
    _run_cli()
