"""SignalDesk — bot supervisor (orchestration loop).

Connects the active strategy and the broker connection into a single
polling loop.  Strategy analyses → supervisor enforces the trade-rate
limit, places the order and reports the outcome to its listeners.
Positions it opened are tracked until the broker stops reporting them;
the closure is then handed back to the strategy and the trade log.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from signaldesk.broker.models import OrderResult, Position, PriceQuote
from signaldesk.config import Config
from signaldesk.errors import (
    DataUnavailableError,
    ExecutionError,
    FatalThresholdError,
    SignalDeskError,
    SupervisorError,
)
from signaldesk.repos.trade_repo import TradeRepo
from signaldesk.strategy.base import StrategyProtocol
from signaldesk.strategy.models import TradeSignal, contract_size

logger = logging.getLogger("signaldesk.supervisor")


# ── Events ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StartedEvent:
    time: datetime

    def to_dict(self) -> dict:
        return {"type": "started", "time": self.time.isoformat()}


@dataclass(frozen=True)
class StoppedEvent:
    time: datetime

    def to_dict(self) -> dict:
        return {"type": "stopped", "time": self.time.isoformat()}


@dataclass(frozen=True)
class TradeEvent:
    signal: TradeSignal
    result: OrderResult
    time: datetime

    def to_dict(self) -> dict:
        return {
            "type": "trade",
            "signal": self.signal.to_dict(),
            "result": {
                "order_id": self.result.order_id,
                "price": self.result.price,
                "volume": self.result.volume,
            },
            "time": self.time.isoformat(),
        }


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    count: int
    time: datetime
    fatal: bool = False

    def to_dict(self) -> dict:
        return {
            "type": "error",
            "message": self.message,
            "count": self.count,
            "time": self.time.isoformat(),
            "fatal": self.fatal,
        }


EVENT_KINDS = ("started", "stopped", "trade", "error")


@dataclass
class _OpenTrade:
    """A position this supervisor opened and has not yet seen close."""

    order_id: str
    symbol: str
    type: str
    volume: float
    open_price: float
    stop_loss: float
    take_profit: float
    strategy: object
    trade_id: Optional[int] = None

    def exit_at(self, quote: PriceQuote) -> tuple[float, str]:
        """Infer exit price and reason from the quote after the position vanished."""
        if self.type == "buy":
            price = quote.bid
            if price >= self.take_profit:
                return self.take_profit, "TP hit"
            if price <= self.stop_loss:
                return self.stop_loss, "SL hit"
        else:
            price = quote.ask
            if price <= self.take_profit:
                return self.take_profit, "TP hit"
            if price >= self.stop_loss:
                return self.stop_loss, "SL hit"
        return price, "closed"

    def pnl(self, exit_price: float) -> float:
        move = exit_price - self.open_price
        if self.type == "sell":
            move = -move
        return move * self.volume * contract_size(self.symbol)


class BotSupervisor:
    """Runs one strategy against one connection on a fixed tick.

    Args:
        strategy: The active strategy (anything satisfying
            ``StrategyProtocol``).
        check_interval: Seconds between ticks.
        min_trade_interval: Minimum seconds between executed trades.
        max_errors: Consecutive tick errors that stop the bot.
        sync_poll_interval: Seconds between synchronisation checks in
            ``start``.
        max_positions: Skip ticks while this many positions are open
            (0 disables the check).
        trade_repo: Optional trade log.
        mode: Recorded with each logged trade (``paper`` / ``live``).
    """

    def __init__(
        self,
        strategy: Optional[StrategyProtocol] = None,
        check_interval: float = 5.0,
        min_trade_interval: float = 300.0,
        max_errors: int = 15,
        sync_poll_interval: float = 3.0,
        max_positions: int = 0,
        trade_repo: Optional[TradeRepo] = None,
        mode: str = "paper",
    ) -> None:
        self._strategy = strategy
        self._check_interval = check_interval
        self._min_trade_interval = min_trade_interval
        self._max_errors = max_errors
        self._sync_poll_interval = sync_poll_interval
        self._max_positions = max_positions
        self._trade_repo = trade_repo
        self._mode = mode

        self._connection = None
        self._running: bool = False
        self._starting: bool = False
        self._in_tick: bool = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

        self._error_count: int = 0
        self._last_error: Optional[dict] = None
        self._last_update: Optional[datetime] = None
        self._last_trade_time: Optional[datetime] = None
        self._trades_executed: int = 0
        self._open_trades: dict[str, _OpenTrade] = {}

        self._listeners: dict[str, list[Callable]] = {k: [] for k in EVENT_KINDS}

    @classmethod
    def from_config(
        cls,
        config: Config,
        strategy: Optional[StrategyProtocol] = None,
        trade_repo: Optional[TradeRepo] = None,
        mode: str = "paper",
    ) -> "BotSupervisor":
        return cls(
            strategy=strategy,
            check_interval=config.check_interval_seconds,
            min_trade_interval=config.min_trade_interval_seconds,
            max_errors=config.max_errors,
            sync_poll_interval=config.sync_poll_seconds,
            max_positions=config.max_positions,
            trade_repo=trade_repo,
            mode=mode,
        )

    # ── Properties ───────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def strategy(self) -> Optional[StrategyProtocol]:
        return self._strategy

    @property
    def connection(self):
        return self._connection

    @property
    def error_count(self) -> int:
        return self._error_count

    def set_strategy(self, strategy: StrategyProtocol) -> None:
        """Swap the active strategy; takes effect on the next tick."""
        self._strategy = strategy
        logger.info("Active strategy set to %s", strategy.name)

    # ── Events ───────────────────────────────────────────────────────────

    def subscribe(self, kind: str, callback: Callable) -> None:
        """Register *callback* for one of ``started``, ``stopped``, ``trade``, ``error``."""
        if kind not in self._listeners:
            raise ValueError(
                f"Unknown event kind '{kind}'. Expected one of {EVENT_KINDS}"
            )
        self._listeners[kind].append(callback)

    def unsubscribe(self, kind: str, callback: Callable) -> None:
        if callback in self._listeners.get(kind, []):
            self._listeners[kind].remove(callback)

    def _emit(self, kind: str, event) -> None:
        for callback in list(self._listeners[kind]):
            try:
                callback(event)
            except Exception:
                logger.exception("Listener for '%s' event failed", kind)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self, connection) -> None:
        """Wait for the terminal to synchronise, then begin ticking.

        Raises:
            SupervisorError: if already running, or no connection or
                strategy is set.
        """
        if self._running or self._starting:
            raise SupervisorError("Bot is already running")
        if connection is None:
            raise SupervisorError("No connection available")
        if self._strategy is None:
            raise SupervisorError("No strategy selected")

        self._starting = True
        try:
            # A loop stopped mid-tick finishes that tick before a new one starts
            previous = self._task
            if previous is not None and not previous.done():
                await previous
            synced = await self._wait_synchronized(connection)
        finally:
            self._starting = False
        if not synced:
            logger.info("Start cancelled before the terminal synchronised")
            return

        self._connection = connection
        self._running = True
        self._error_count = 0
        self._last_error = None
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event))
        logger.info(
            "Bot started: %s on %s every %.1fs",
            self._strategy.name, self._strategy.symbol, self._check_interval,
        )
        self._emit("started", StartedEvent(time=datetime.now(timezone.utc)))

    async def _wait_synchronized(self, connection) -> bool:
        while self._starting:
            refresh = getattr(connection, "refresh_state", None)
            if refresh is not None:
                try:
                    await refresh()
                except Exception as exc:
                    logger.warning("Terminal state refresh failed: %s", exc)
            if connection.terminal_state.synchronized:
                return True
            logger.info(
                "Waiting for terminal synchronisation (next check in %.1fs)",
                self._sync_poll_interval,
            )
            await asyncio.sleep(self._sync_poll_interval)
        return False

    def stop(self) -> None:
        """Stop ticking.  Idempotent; an in-flight tick runs to completion."""
        if self._starting:
            self._starting = False
            return
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        logger.info("Bot stopped after %d trade(s)", self._trades_executed)
        self._emit("stopped", StoppedEvent(time=datetime.now(timezone.utc)))

    async def wait_stopped(self) -> None:
        """Wait for the tick loop (and any in-flight tick) to finish."""
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        await task

    # ── Polling loop ─────────────────────────────────────────────────────

    async def _loop(self, stop_event: asyncio.Event) -> None:
        # Each loop owns its stop event, so a restart never revives it
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._check_interval)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            result = await self.run_once()
            logger.debug("Tick: %s", result.get("action", "unknown"))

    # ── Single tick ──────────────────────────────────────────────────────

    async def run_once(self, now: Optional[datetime] = None) -> dict:
        """Execute one tick.

        Returns a dict describing the action taken:

        - ``{"action": "skipped", "reason": "..."}``
        - ``{"action": "order_placed", ...}``
        - ``{"action": "error", "reason": "...", "count": n, "fatal": bool}``

        Args:
            now: Current UTC datetime.  Defaults to ``datetime.now(UTC)``.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if not self._running:
            return {"action": "skipped", "reason": "not_running"}
        if self._in_tick:
            return {"action": "skipped", "reason": "tick_in_progress"}

        self._in_tick = True
        try:
            result = await self._tick(now)
            self._error_count = 0
        except Exception as exc:
            result = self._record_error(exc, now)
        finally:
            self._in_tick = False
            self._last_update = now
        return result

    async def _tick(self, now: datetime) -> dict:
        connection = self._connection
        synchronized = connection.terminal_state.synchronized

        # 1 ── Closed-position bookkeeping
        positions: Optional[list[Position]] = None
        if self._open_trades and synchronized:
            positions = await self._fetch_positions()
            await self._reconcile(positions, now)

        # 2 ── Trade-rate limit
        if self._last_trade_time is not None:
            elapsed = (now - self._last_trade_time).total_seconds()
            if elapsed < self._min_trade_interval:
                return {
                    "action": "skipped",
                    "reason": "min_trade_interval",
                    "wait_seconds": round(self._min_trade_interval - elapsed, 1),
                }

        # 3 ── Terminal synchronisation
        if not synchronized:
            return {"action": "skipped", "reason": "not_synchronized"}

        # 4 ── Open-position guard
        if self._max_positions > 0:
            if positions is None:
                positions = await self._fetch_positions()
            if len(positions) >= self._max_positions:
                return {"action": "skipped", "reason": "max_positions"}

        # 5 ── Strategy analysis
        strategy = self._strategy
        signal = await strategy.analyze(connection)
        if signal is None:
            return {"action": "skipped", "reason": "no_signal"}

        # 6 ── Place order
        result = await self._place_order(signal)
        entry = result.price or signal.entry_price
        self._last_trade_time = now
        self._trades_executed += 1
        logger.info(
            "%s %s %.2f @ %.5f (SL %.5f, TP %.5f): %s",
            signal.type.upper(), signal.symbol, signal.volume, entry,
            signal.stop_loss, signal.take_profit, signal.reason,
        )
        self._emit("trade", TradeEvent(signal=signal, result=result, time=now))

        # 7 ── Bookkeeping; the order is already live, so failures are logged only
        trade = _OpenTrade(
            order_id=result.order_id,
            symbol=signal.symbol,
            type=signal.type,
            volume=signal.volume,
            open_price=entry,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            strategy=strategy,
        )
        if result.order_id:
            self._open_trades[result.order_id] = trade

        on_trade_result = getattr(strategy, "on_trade_result", None)
        if on_trade_result is not None:
            try:
                on_trade_result(signal, result)
            except Exception:
                logger.exception("%s failed to record order %s", strategy.name, result.order_id)

        if self._trade_repo is not None:
            try:
                trade.trade_id = self._trade_repo.insert_trade(
                    mode=self._mode,
                    strategy=getattr(strategy, "id", strategy.name),
                    symbol=signal.symbol,
                    direction=signal.type,
                    volume=signal.volume,
                    entry_price=entry,
                    stop_loss=signal.stop_loss,
                    take_profit=signal.take_profit,
                    opened_at=now.isoformat(),
                    order_id=result.order_id,
                    reason=signal.reason,
                )
            except Exception:
                logger.exception("Failed to log order %s", result.order_id)

        return {
            "action": "order_placed",
            "order_id": result.order_id,
            "direction": signal.type,
            "volume": signal.volume,
            "entry": entry,
            "sl": signal.stop_loss,
            "tp": signal.take_profit,
            "reason": signal.reason,
        }

    async def _fetch_positions(self) -> list[Position]:
        try:
            return await self._connection.get_positions()
        except SignalDeskError:
            raise
        except Exception as exc:
            raise DataUnavailableError(f"Position fetch failed: {exc}") from exc

    async def _reconcile(self, positions: list[Position], now: datetime) -> None:
        """Settle tracked trades whose position is no longer reported."""
        open_ids = {p.position_id for p in positions}
        gone = [t for oid, t in self._open_trades.items() if oid not in open_ids]
        quotes: dict[str, PriceQuote] = {}
        for trade in gone:
            exit_price, reason = await self._exit_details(trade, quotes)
            del self._open_trades[trade.order_id]
            pnl = trade.pnl(exit_price)
            logger.info(
                "Position %s %s %s closed (%s) @ %.5f, P&L %.2f",
                trade.order_id, trade.type, trade.symbol, reason, exit_price, pnl,
            )

            on_position_closed = getattr(trade.strategy, "on_position_closed", None)
            if on_position_closed is not None:
                try:
                    on_position_closed(trade.open_price)
                except Exception:
                    logger.exception("Strategy failed to release position %s", trade.order_id)

            if self._trade_repo is not None and trade.trade_id is not None:
                try:
                    self._trade_repo.close_trade(
                        trade.trade_id, exit_price, reason, pnl, closed_at=now.isoformat(),
                    )
                except Exception:
                    logger.exception("Failed to log closure of %s", trade.order_id)

    async def _exit_details(
        self, trade: _OpenTrade, quotes: dict[str, PriceQuote],
    ) -> tuple[float, str]:
        lookup = getattr(self._connection, "closed_position", None)
        closed = lookup(trade.order_id) if lookup is not None else None
        if closed is not None:
            return closed.exit_price, closed.reason
        if trade.symbol not in quotes:
            try:
                quotes[trade.symbol] = await self._connection.get_symbol_price(trade.symbol)
            except SignalDeskError:
                raise
            except Exception as exc:
                raise DataUnavailableError(
                    f"Quote for closed position {trade.order_id} failed: {exc}"
                ) from exc
        return trade.exit_at(quotes[trade.symbol])

    async def _place_order(self, signal: TradeSignal) -> OrderResult:
        connection = self._connection
        if signal.type == "buy":
            place = connection.create_market_buy_order
        else:
            place = connection.create_market_sell_order
        try:
            return await place(
                signal.symbol, signal.volume, signal.stop_loss, signal.take_profit,
            )
        except ExecutionError:
            raise
        except Exception as exc:
            raise ExecutionError(
                f"{signal.type} order for {signal.symbol} failed: {exc}"
            ) from exc

    def _record_error(self, exc: Exception, now: datetime) -> dict:
        self._error_count += 1
        message = exc.message if isinstance(exc, SignalDeskError) else str(exc)
        when = exc.time if isinstance(exc, SignalDeskError) else now
        self._last_error = {"message": message, "time": when.isoformat()}
        logger.error(
            "Tick error (%d/%d): %s", self._error_count, self._max_errors, message,
        )

        fatal = self._error_count >= self._max_errors
        self._emit(
            "error",
            ErrorEvent(message=message, count=self._error_count, time=when, fatal=fatal),
        )
        if fatal:
            halt = FatalThresholdError(
                f"Stopping after {self._error_count} consecutive errors"
            )
            logger.critical(halt.message)
            self._last_error = {"message": halt.message, "time": halt.time.isoformat()}
            self.stop()
        return {
            "action": "error",
            "reason": message,
            "count": self._error_count,
            "fatal": fatal,
        }

    # ── Status ───────────────────────────────────────────────────────────

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "strategy": self._strategy.name if self._strategy else None,
            "error_count": self._error_count,
            "last_error": self._last_error,
            "last_update": self._last_update.isoformat() if self._last_update else None,
            "last_trade_time": (
                self._last_trade_time.isoformat() if self._last_trade_time else None
            ),
            "trades_executed": self._trades_executed,
        }
