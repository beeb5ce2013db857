"""Tests for signaldesk.broker — bridge client with mocked HTTP, paper connection, retry."""

import httpx
import pytest

from signaldesk.broker import bridge_client
from signaldesk.broker.bridge_client import BridgeClient
from signaldesk.broker.connection import ConnectionProtocol
from signaldesk.broker.models import AccountSummary, Candle, OrderResult, Position, PriceQuote
from signaldesk.broker.paper import PaperConnection
from signaldesk.broker.retry import fetch_with_retry
from signaldesk.config import Config
from signaldesk.errors import DataUnavailableError


def _make_config() -> Config:
    return Config(
        bridge_url="http://bridge:3001/",
        bridge_api_token="test-token",
        bridge_connection_id="conn-1",
        symbol="XAUUSD",
        strategy="xauusd",
        check_interval_seconds=5,
        min_trade_interval_seconds=300,
        max_errors=15,
        sync_poll_seconds=3,
        max_positions=5,
        db_path=":memory:",
        catalog_path="catalog.json",
        log_level="INFO",
        api_port=8080,
    )


# ── Mock bridge responses ────────────────────────────────────────────────

MOCK_CANDLES_RESPONSE = [
    {"time": "2025-01-10T00:05:00Z", "open": 2001.0, "high": 2003.5,
     "low": 2000.5, "close": 2002.0, "tickVolume": 310},
    {"time": "2025-01-10T00:00:00Z", "open": 2000.0, "high": 2001.5,
     "low": 1999.0, "close": 2001.0, "tickVolume": 280},
]

MOCK_POSITIONS_RESPONSE = [
    {"id": 777, "symbol": "XAUUSD", "type": "POSITION_TYPE_BUY", "volume": 0.02,
     "openPrice": 2001.2, "stopLoss": 1999.0, "takeProfit": None, "profit": 4.5},
]

MOCK_ACCOUNT_RESPONSE = {
    "balance": 10000, "equity": 10012.5, "margin": 40.0,
    "freeMargin": 9972.5, "leverage": 100, "currency": "USD",
}


def _ok(url: str, payload, method: str = "GET") -> httpx.Response:
    return httpx.Response(200, json=payload, request=httpx.Request(method, url))


# ── Bridge client ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_price_quote(monkeypatch):
    client = BridgeClient(_make_config())
    seen = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        seen["url"] = url
        seen["auth"] = headers["Authorization"]
        return _ok(url, {"bid": 2000.1, "ask": 2000.8})

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    quote = await client.get_symbol_price("XAUUSD")
    assert isinstance(quote, PriceQuote)
    assert quote.spread == pytest.approx(0.7)
    assert seen["url"] == "http://bridge:3001/api/price/conn-1/XAUUSD"
    assert seen["auth"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_candles_sorted_oldest_first(monkeypatch):
    client = BridgeClient(_make_config())
    seen = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        seen["params"] = params
        return _ok(url, MOCK_CANDLES_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    candles = await client.get_candles("XAUUSD", "5m", 2)
    assert seen["params"] == {"timeframe": "5m", "count": 2}
    assert [c.timestamp for c in candles] == ["2025-01-10T00:00:00Z", "2025-01-10T00:05:00Z"]
    assert isinstance(candles[0], Candle)
    assert candles[0].volume == 280.0


@pytest.mark.asyncio
async def test_positions(monkeypatch):
    client = BridgeClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _ok(url, MOCK_POSITIONS_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    positions = await client.get_positions()
    assert len(positions) == 1
    pos = positions[0]
    assert isinstance(pos, Position)
    assert pos.position_id == "777"
    assert pos.type == "buy"
    assert pos.stop_loss == pytest.approx(1999.0)
    assert pos.take_profit is None


@pytest.mark.asyncio
async def test_account_summary(monkeypatch):
    client = BridgeClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _ok(url, MOCK_ACCOUNT_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    summary = await client.get_account_summary()
    assert isinstance(summary, AccountSummary)
    assert summary.equity == pytest.approx(10012.5)
    assert summary.free_margin == pytest.approx(9972.5)


@pytest.mark.asyncio
async def test_order_payload(monkeypatch):
    client = BridgeClient(_make_config())
    captured = {}

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        captured["url"] = url
        captured["body"] = json
        return _ok(url, {"orderId": "555", "price": 2000.8}, "POST")

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    result = await client.create_market_sell_order("XAUUSD", 0.01, 2003.0, 1996.0)

    assert isinstance(result, OrderResult)
    assert result.order_id == "555"
    assert result.type == "sell"
    assert result.price == pytest.approx(2000.8)
    assert captured["url"] == "http://bridge:3001/api/orders/conn-1"
    assert captured["body"] == {
        "type": "sell", "symbol": "XAUUSD", "volume": 0.01,
        "stopLoss": 2003.0, "takeProfit": 1996.0,
    }


@pytest.mark.asyncio
async def test_order_id_prefers_position_id(monkeypatch):
    client = BridgeClient(_make_config())

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        return _ok(url, {"orderId": "555", "positionId": "777", "price": 1.1}, "POST")

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    result = await client.create_market_buy_order("EURUSD", 0.01, 1.09, 1.12)
    assert result.order_id == "777"


@pytest.mark.asyncio
async def test_refresh_state_synchronised(monkeypatch):
    client = BridgeClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _ok(url, {"status": "connected", "synchronized": True})

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert client.terminal_state.synchronized is False
    assert await client.refresh_state() is True
    assert client.terminal_state.synchronized is True


@pytest.mark.asyncio
async def test_refresh_state_404_unsynchronised(monkeypatch):
    client = BridgeClient(_make_config())
    client.terminal_state.synchronized = True

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return httpx.Response(404, json={}, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.refresh_state() is False
    assert client.terminal_state.synchronized is False


@pytest.mark.asyncio
async def test_retries_transient_errors(monkeypatch):
    monkeypatch.setattr(bridge_client, "_RETRY_BASE_DELAY", 0.0)
    client = BridgeClient(_make_config())
    calls = {"n": 0}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503, request=httpx.Request("GET", url))
        return _ok(url, {"bid": 1.1, "ask": 1.1002})

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    quote = await client.get_symbol_price("EURUSD")
    assert calls["n"] == 3
    assert quote.bid == pytest.approx(1.1)


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(monkeypatch):
    monkeypatch.setattr(bridge_client, "_RETRY_BASE_DELAY", 0.0)
    client = BridgeClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return httpx.Response(502, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.HTTPStatusError):
        await client.get_positions()


def test_bridge_client_satisfies_protocol():
    assert isinstance(BridgeClient(_make_config()), ConnectionProtocol)


# ── Paper connection ─────────────────────────────────────────────────────


class TestPaperConnection:
    @pytest.mark.asyncio
    async def test_seeded_walk_is_reproducible(self):
        a = await PaperConnection(seed=7).get_candles("EURUSD", "5m", 20)
        b = await PaperConnection(seed=7).get_candles("EURUSD", "5m", 20)
        assert [c.close for c in a] == [c.close for c in b]

    @pytest.mark.asyncio
    async def test_candle_shape(self):
        candles = await PaperConnection(seed=1).get_candles("XAUUSD", "1m", 50)
        assert len(candles) == 50
        assert all(c.low <= min(c.open, c.close) for c in candles)
        assert all(c.high >= max(c.open, c.close) for c in candles)
        assert candles[0].timestamp < candles[-1].timestamp

    @pytest.mark.asyncio
    async def test_gold_spread_fits_gold_strategy(self):
        quote = await PaperConnection(seed=3).get_symbol_price("XAUUSD")
        assert quote.spread == pytest.approx(0.70)

    @pytest.mark.asyncio
    async def test_orders_become_positions(self):
        conn = PaperConnection(seed=5)
        result = await conn.create_market_buy_order("EURUSD", 0.05, 1.09, 1.12)

        positions = await conn.get_positions()
        assert [p.position_id for p in positions] == [result.order_id]
        assert positions[0].type == "buy"
        assert positions[0].volume == 0.05

        assert conn.close_position(result.order_id).position_id == result.order_id
        assert await conn.get_positions() == []
        assert conn.close_position("unknown") is None
        assert conn.closed_position(result.order_id).reason == "closed"

    @pytest.mark.asyncio
    async def test_walk_settles_stop_loss(self):
        conn = PaperConnection(seed=5, volatility=0.0)
        result = await conn.create_market_buy_order("EURUSD", 0.1, 1.0950, 1.1100)
        await conn.get_symbol_price("EURUSD")
        assert len(await conn.get_positions()) == 1

        conn._last_price["EURUSD"] = 1.0900
        await conn.get_symbol_price("EURUSD")

        assert await conn.get_positions() == []
        closed = conn.closed_position(result.order_id)
        assert closed.reason == "SL hit"
        assert closed.exit_price == pytest.approx(1.0950)
        assert closed.position.open_price == pytest.approx(result.price)

    @pytest.mark.asyncio
    async def test_walk_settles_sell_take_profit(self):
        conn = PaperConnection(seed=5, volatility=0.0)
        kept = await conn.create_market_buy_order("GBPUSD", 0.1, 1.2600, 1.2800)
        result = await conn.create_market_sell_order("EURUSD", 0.1, 1.1050, 1.0950)

        conn._last_price["EURUSD"] = 1.0900
        await conn.get_candles("EURUSD", "1m", 3)

        assert [p.position_id for p in await conn.get_positions()] == [kept.order_id]
        closed = conn.closed_position(result.order_id)
        assert closed.reason == "TP hit"
        assert closed.exit_price == pytest.approx(1.0950)

    def test_satisfies_protocol(self):
        assert isinstance(PaperConnection(), ConnectionProtocol)


# ── Retry helper ─────────────────────────────────────────────────────────


class TestFetchWithRetry:
    @pytest.mark.asyncio
    async def test_recovers_after_failure(self):
        attempts = {"n": 0}

        async def _flaky():
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise ConnectionError("reset")
            return "ok"

        assert await fetch_with_retry(_flaky, base_delay=0.0) == "ok"
        assert attempts["n"] == 2

    @pytest.mark.asyncio
    async def test_raises_data_unavailable(self):
        async def _down():
            raise TimeoutError("timed out")

        with pytest.raises(DataUnavailableError, match="quotes after 3 attempts") as exc_info:
            await fetch_with_retry(_down, what="quotes", base_delay=0.0)
        assert isinstance(exc_info.value.__cause__, TimeoutError)
