"""MetaTrader bridge REST API async client.

Talks to the bridge server that holds the terminal RPC connection:
quotes, candles, positions, market orders and the synchronisation state.
Satisfies ``ConnectionProtocol``.
"""

import asyncio
import logging
from typing import Optional

import httpx

from signaldesk.broker.connection import TerminalState
from signaldesk.broker.models import (
    AccountSummary,
    Candle,
    OrderResult,
    Position,
    PriceQuote,
)
from signaldesk.config import Config

logger = logging.getLogger("signaldesk.bridge")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


class BridgeClient:
    """Async client wrapping the bridge REST API for one connection id."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.bridge_url.rstrip("/")
        self._connection_id = config.bridge_connection_id
        self._headers = {
            "Authorization": f"Bearer {config.bridge_api_token}",
            "Content-Type": "application/json",
        }
        self.terminal_state = TerminalState(synchronized=False)

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=30.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Bridge %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Bridge %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    # ── Connection state ─────────────────────────────────────────────────

    async def refresh_state(self) -> bool:
        """Poll the bridge for the terminal synchronisation flag.

        A 404 means the bridge dropped the connection; it is reported as
        unsynchronised rather than raised.
        """
        url = f"{self._base_url}/api/connection/{self._connection_id}"
        try:
            resp = await self._request_with_retry("get", url)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                self.terminal_state.synchronized = False
                return False
            raise

        data = resp.json()
        synced = data.get("status") == "connected" and bool(
            data.get("synchronized", True)
        )
        self.terminal_state.synchronized = synced
        return synced

    async def get_account_summary(self) -> AccountSummary:
        """Query the bridge for balance, equity and margin."""
        url = f"{self._base_url}/api/account/{self._connection_id}"

        resp = await self._request_with_retry("get", url)

        acct = resp.json()
        return AccountSummary(
            balance=float(acct["balance"]),
            equity=float(acct["equity"]),
            margin=float(acct.get("margin", 0)),
            free_margin=float(acct.get("freeMargin", 0)),
            leverage=float(acct.get("leverage", 0)),
            currency=acct.get("currency", "USD"),
        )

    # ── Market data ──────────────────────────────────────────────────────

    async def get_symbol_price(self, symbol: str) -> PriceQuote:
        """Fetch the current bid/ask for *symbol*."""
        url = f"{self._base_url}/api/price/{self._connection_id}/{symbol}"

        resp = await self._request_with_retry("get", url)

        data = resp.json()
        return PriceQuote(bid=float(data["bid"]), ask=float(data["ask"]))

    async def get_candles(
        self,
        symbol: str,
        timeframe: str,
        count: int,
    ) -> list[Candle]:
        """Fetch candlestick data from the bridge.

        Args:
            symbol: e.g. ``"XAUUSD"``
            timeframe: e.g. ``"1m"``, ``"5m"``
            count: number of candles to request

        Returns:
            List of ``Candle`` objects ordered oldest-first.
        """
        url = f"{self._base_url}/api/candles/{self._connection_id}/{symbol}"
        params = {"timeframe": timeframe, "count": count}

        resp = await self._request_with_retry("get", url, params=params)

        candles: list[Candle] = []
        for c in resp.json():
            candles.append(
                Candle(
                    open=float(c["open"]),
                    high=float(c["high"]),
                    low=float(c["low"]),
                    close=float(c["close"]),
                    volume=float(c.get("tickVolume", c.get("volume", 0))),
                    timestamp=c["time"],
                )
            )
        candles.sort(key=lambda c: c.timestamp)
        return candles

    # ── Positions ────────────────────────────────────────────────────────

    async def get_positions(self) -> list[Position]:
        """Return all open positions on the account."""
        url = f"{self._base_url}/api/positions/{self._connection_id}"

        resp = await self._request_with_retry("get", url)

        positions: list[Position] = []
        for p in resp.json():
            raw_type = str(p.get("type", "")).lower()
            positions.append(
                Position(
                    position_id=str(p["id"]),
                    symbol=p["symbol"],
                    type="buy" if "buy" in raw_type else "sell",
                    volume=float(p["volume"]),
                    open_price=float(p["openPrice"]),
                    stop_loss=(
                        float(p["stopLoss"]) if p.get("stopLoss") is not None else None
                    ),
                    take_profit=(
                        float(p["takeProfit"])
                        if p.get("takeProfit") is not None else None
                    ),
                    profit=float(p.get("profit", 0)),
                )
            )
        return positions

    # ── Orders ───────────────────────────────────────────────────────────

    async def create_market_buy_order(
        self, symbol: str, volume: float, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        """Place a market buy with stop-loss and take-profit."""
        return await self._place_order("buy", symbol, volume, stop_loss, take_profit)

    async def create_market_sell_order(
        self, symbol: str, volume: float, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        """Place a market sell with stop-loss and take-profit."""
        return await self._place_order("sell", symbol, volume, stop_loss, take_profit)

    async def _place_order(
        self,
        order_type: str,
        symbol: str,
        volume: float,
        stop_loss: float,
        take_profit: float,
    ) -> OrderResult:
        url = f"{self._base_url}/api/orders/{self._connection_id}"
        body = {
            "type": order_type,
            "symbol": symbol,
            "volume": volume,
            "stopLoss": stop_loss,
            "takeProfit": take_profit,
        }

        resp = await self._request_with_retry("post", url, json=body)

        data = resp.json()
        return OrderResult(
            # positionId matches the id reported by get_positions
            order_id=str(data.get("positionId", data.get("orderId", ""))),
            symbol=symbol,
            type=order_type,
            volume=volume,
            price=float(data.get("price", 0)),
            stop_loss=stop_loss,
            take_profit=take_profit,
            time=data.get("time", ""),
        )

    async def disconnect(self) -> None:
        """Ask the bridge to drop this connection."""
        url = f"{self._base_url}/api/disconnect/{self._connection_id}"
        await self._request_with_retry("post", url)
        self.terminal_state.synchronized = False
