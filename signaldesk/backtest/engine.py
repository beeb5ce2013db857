"""Backtest engine — replays historical candles through a strategy.

Iterates candle data chronologically.  At every bar the strategy sees a
replay connection whose candle window ends at that bar and whose quote
sits around its close; signals open a virtual position that later bars
close at its stop-loss or take-profit.  No real orders are placed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from signaldesk.backtest.stats import calculate_stats, periods_per_year
from signaldesk.broker.connection import TerminalState
from signaldesk.broker.models import Candle, OrderResult, Position, PriceQuote
from signaldesk.strategy.base import BaseStrategy
from signaldesk.strategy.models import DEFAULT_CONTRACT_SIZE, contract_size
from signaldesk.strategy.registry import get_strategy

logger = logging.getLogger("signaldesk.backtest")

DEFAULT_SPREAD_FRACTION = 0.0001


class ReplayConnection:
    """Connection over a fixed candle history, advanced by the engine.

    Args:
        symbol: Instrument the candles belong to.
        candles: Full history, oldest first.
        spread: Absolute bid/ask spread around each close.
    """

    def __init__(self, symbol: str, candles: list[Candle], spread: float) -> None:
        self.symbol = symbol
        self._candles = candles
        self._spread = spread
        self.cursor = 0
        self.terminal_state = TerminalState(synchronized=True)
        self.positions: list[Position] = []
        self._order_seq = 0

    @property
    def current(self) -> Candle:
        return self._candles[self.cursor]

    def quote(self) -> PriceQuote:
        close = self.current.close
        return PriceQuote(bid=close - self._spread / 2, ask=close + self._spread / 2)

    async def get_symbol_price(self, symbol: str) -> PriceQuote:
        return self.quote()

    async def get_candles(self, symbol: str, timeframe: str, count: int) -> list[Candle]:
        end = self.cursor + 1
        return self._candles[max(0, end - count):end]

    async def get_positions(self) -> list[Position]:
        return list(self.positions)

    async def create_market_buy_order(
        self, symbol: str, volume: float, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        return self._fill("buy", symbol, volume, stop_loss, take_profit)

    async def create_market_sell_order(
        self, symbol: str, volume: float, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        return self._fill("sell", symbol, volume, stop_loss, take_profit)

    def _fill(
        self, side: str, symbol: str, volume: float, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        self._order_seq += 1
        quote = self.quote()
        price = quote.ask if side == "buy" else quote.bid
        order_id = f"bt-{self._order_seq}"
        self.positions = [
            Position(
                position_id=order_id,
                symbol=symbol,
                type=side,
                volume=volume,
                open_price=price,
                stop_loss=stop_loss,
                take_profit=take_profit,
            )
        ]
        return OrderResult(
            order_id=order_id,
            symbol=symbol,
            type=side,
            volume=volume,
            price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            time=self.current.timestamp,
        )


@dataclass(frozen=True)
class BacktestRequest:
    """What to backtest: a strategy id, its parameters and the window."""

    strategy_id: str
    timeframe: str = "5m"
    parameters: dict = field(default_factory=dict)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    initial_balance: float = 10_000.0
    symbol: Optional[str] = None
    volume: Optional[float] = None


@dataclass
class BacktestResult:
    strategy_id: str
    symbol: str
    timeframe: str
    profit_loss: float
    win_rate: float
    sharpe_ratio: float
    max_drawdown: float
    max_drawdown_pct: float
    trades_count: int
    period: dict
    stats: dict = field(default_factory=dict)
    equity_curve: list[float] = field(default_factory=list)
    trades: list[dict] = field(default_factory=list)

    def to_dict(self, include_series: bool = True) -> dict:
        data = {
            "strategy_id": self.strategy_id,
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "profit_loss": self.profit_loss,
            "win_rate": self.win_rate,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
            "max_drawdown_pct": self.max_drawdown_pct,
            "trades_count": self.trades_count,
            "period": self.period,
        }
        if include_series:
            data["equity_curve"] = self.equity_curve
            data["trades"] = self.trades
        return data


class BacktestEngine:
    """Simulates trading one strategy on historical candle data.

    Args:
        spread: Absolute spread of the synthetic quotes.  When ``None``
            the midpoint of the strategy's declared spread bounds is used,
            or ``close × 0.0001`` for strategies without bounds.
    """

    def __init__(self, spread: Optional[float] = None) -> None:
        self._spread = spread

    # ── Public API ───────────────────────────────────────────────────────

    async def run(
        self,
        strategy: BaseStrategy,
        candles: list[Candle],
        initial_balance: float = 10_000.0,
        timeframe: Optional[str] = None,
    ) -> dict:
        """Execute a full backtest.

        Args:
            strategy: Strategy to replay; its grid ladder (if any) is reset.
            candles: Historical candles, oldest first.
            initial_balance: Starting virtual balance.
            timeframe: Bar timeframe for Sharpe annualisation.  Defaults
                to the strategy's own timeframe.

        Returns:
            Dict with ``trades`` (closed-trade dicts), ``final_equity``,
            ``equity_curve`` (one point per bar plus the starting balance)
            and ``stats``.
        """
        timeframe = timeframe or strategy.timeframe
        periods_per_year(timeframe)  # reject unknown timeframes up front
        if hasattr(strategy, "reset"):
            strategy.reset()

        replay = ReplayConnection(strategy.symbol, candles, self._spread_for(strategy, candles))
        size = contract_size(strategy.symbol)

        balance = initial_balance
        open_trade: Optional[dict] = None
        closed_trades: list[dict] = []
        equity_curve: list[float] = [initial_balance]

        for i, candle in enumerate(candles):
            replay.cursor = i

            # 1. Check open trade for SL / TP exit
            if open_trade is not None:
                exit_ = self._check_exit(open_trade, candle, size)
                if exit_ is not None:
                    balance += self._close(open_trade, *exit_, candle.timestamp)
                    closed_trades.append(open_trade)
                    self._notify_closed(strategy, open_trade)
                    replay.positions = []
                    open_trade = None

            # 2. One position at a time
            if open_trade is None:
                signal = await strategy.analyze(replay)
                if signal is not None:
                    if signal.type == "buy":
                        fill = await replay.create_market_buy_order(
                            signal.symbol, signal.volume, signal.stop_loss, signal.take_profit,
                        )
                    else:
                        fill = await replay.create_market_sell_order(
                            signal.symbol, signal.volume, signal.stop_loss, signal.take_profit,
                        )
                    on_trade_result = getattr(strategy, "on_trade_result", None)
                    if on_trade_result is not None:
                        on_trade_result(signal, fill)
                    open_trade = {
                        "direction": signal.type,
                        "symbol": signal.symbol,
                        "volume": signal.volume,
                        "entry_price": fill.price,
                        "sl": signal.stop_loss,
                        "tp": signal.take_profit,
                        "reason": signal.reason,
                        "opened_at": candle.timestamp,
                        "exit_price": None,
                        "exit_reason": None,
                        "pnl": None,
                        "closed_at": None,
                    }

            # 3. Mark to market at the close
            unrealised = (
                self._calc_pnl(open_trade, candle.close, size) if open_trade else 0.0
            )
            equity_curve.append(balance + unrealised)

        # Close any remaining position at last candle close
        if open_trade is not None and candles:
            last = candles[-1]
            balance += self._close(open_trade, last.close, "end_of_data", None, last.timestamp, size)
            closed_trades.append(open_trade)
            self._notify_closed(strategy, open_trade)
            equity_curve[-1] = balance

        stats = calculate_stats(closed_trades, equity_curve, timeframe)
        logger.info(
            "Backtest %s on %d bars: %d trades, P&L %.2f, Sharpe %.2f",
            strategy.id, len(candles), stats["trades_count"],
            stats["profit_loss"], stats["sharpe_ratio"],
        )
        return {
            "trades": closed_trades,
            "final_equity": balance,
            "equity_curve": equity_curve,
            "stats": stats,
        }

    # ── Helpers ──────────────────────────────────────────────────────────

    def _spread_for(self, strategy: BaseStrategy, candles: list[Candle]) -> float:
        if self._spread is not None:
            return self._spread
        if strategy.min_spread is not None and strategy.max_spread is not None:
            return (strategy.min_spread + strategy.max_spread) / 2
        reference = candles[0].close if candles else 0.0
        return reference * DEFAULT_SPREAD_FRACTION

    @staticmethod
    def _check_exit(
        trade: dict, candle: Candle, size: float,
    ) -> Optional[tuple[float, str, float]]:
        """Check if *candle* triggers an SL or TP exit.

        Returns ``(exit_price, reason, pnl)`` or ``None``.
        When both are hit in the same candle, SL is assumed first
        (conservative).
        """
        direction = trade["direction"]
        sl = trade["sl"]
        tp = trade["tp"]

        if direction == "buy":
            sl_hit = candle.low <= sl
            tp_hit = candle.high >= tp
        else:
            sl_hit = candle.high >= sl
            tp_hit = candle.low <= tp

        if sl_hit:
            return sl, "SL hit", BacktestEngine._calc_pnl(trade, sl, size)
        if tp_hit:
            return tp, "TP hit", BacktestEngine._calc_pnl(trade, tp, size)
        return None

    @staticmethod
    def _calc_pnl(trade: dict, exit_price: float, size: float) -> float:
        """P&L = price move × volume × contract size."""
        if trade["direction"] == "buy":
            move = exit_price - trade["entry_price"]
        else:
            move = trade["entry_price"] - exit_price
        return move * trade["volume"] * size

    @classmethod
    def _close(
        cls,
        trade: dict,
        exit_price: float,
        reason: str,
        pnl: Optional[float],
        closed_at: str,
        size: float = DEFAULT_CONTRACT_SIZE,
    ) -> float:
        if pnl is None:
            pnl = cls._calc_pnl(trade, exit_price, size)
        trade["exit_price"] = exit_price
        trade["exit_reason"] = reason
        trade["pnl"] = pnl
        trade["closed_at"] = closed_at
        return pnl

    @staticmethod
    def _notify_closed(strategy: BaseStrategy, trade: dict) -> None:
        on_position_closed = getattr(strategy, "on_position_closed", None)
        if on_position_closed is not None:
            on_position_closed(trade["entry_price"])


# ── Contract entry points ────────────────────────────────────────────────


def _parse_time(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def filter_candles(
    candles: list[Candle],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[Candle]:
    """Keep candles whose timestamp lies in ``[start, end]``.

    Candles with unparseable timestamps are kept.
    """
    start, end = _as_utc(start), _as_utc(end)
    if start is None and end is None:
        return list(candles)
    kept = []
    for c in candles:
        ts = _parse_time(c.timestamp)
        if ts is not None:
            if start is not None and ts < start:
                continue
            if end is not None and ts > end:
                continue
        kept.append(c)
    return kept


async def backtest_strategy(
    request: BacktestRequest,
    candles: list[Candle],
    engine: Optional[BacktestEngine] = None,
) -> BacktestResult:
    """Backtest the registered strategy described by *request*.

    Raises:
        KeyError: unknown strategy id or parameter name.
        ValueError: unknown timeframe.
    """
    kwargs: dict = dict(request.parameters)
    if request.symbol is not None:
        kwargs["symbol"] = request.symbol
    if request.volume is not None:
        kwargs["volume"] = request.volume
    strategy = get_strategy(request.strategy_id, **kwargs)

    window = filter_candles(candles, request.start_date, request.end_date)
    engine = engine or BacktestEngine()
    outcome = await engine.run(strategy, window, request.initial_balance, request.timeframe)
    stats = outcome["stats"]

    return BacktestResult(
        strategy_id=request.strategy_id,
        symbol=strategy.symbol,
        timeframe=request.timeframe,
        profit_loss=stats["profit_loss"],
        win_rate=stats["win_rate"],
        sharpe_ratio=stats["sharpe_ratio"],
        max_drawdown=stats["max_drawdown"],
        max_drawdown_pct=stats["max_drawdown_pct"],
        trades_count=stats["trades_count"],
        period={
            "start": window[0].timestamp if window else None,
            "end": window[-1].timestamp if window else None,
        },
        stats=stats,
        equity_curve=outcome["equity_curve"],
        trades=outcome["trades"],
    )


async def compare_strategies(
    strategy_ids: list[str],
    candles: list[Candle],
    timeframe: str = "5m",
    initial_balance: float = 10_000.0,
    symbol: Optional[str] = None,
    parameters: Optional[dict[str, dict]] = None,
) -> list[BacktestResult]:
    """Backtest each strategy on the same candles, best Sharpe ratio first."""
    parameters = parameters or {}
    engine = BacktestEngine()
    results = []
    for strategy_id in strategy_ids:
        request = BacktestRequest(
            strategy_id=strategy_id,
            timeframe=timeframe,
            parameters=parameters.get(strategy_id, {}),
            initial_balance=initial_balance,
            symbol=symbol,
        )
        results.append(await backtest_strategy(request, candles, engine))
    return sorted(results, key=lambda r: r.sharpe_ratio, reverse=True)
