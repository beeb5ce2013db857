"""Tests for the grid ladder and both grid strategies."""

import pytest

from signaldesk.broker.connection import TerminalState
from signaldesk.broker.models import Candle, OrderResult, Position, PriceQuote
from signaldesk.strategy import grid
from signaldesk.strategy.grid import AdaptiveGridStrategy, GridGamblingStrategy, GridLadder


# ── Helpers ──────────────────────────────────────────────────────────────


class MockConnection:
    def __init__(self, quote, candles=None, positions=None):
        self.terminal_state = TerminalState(synchronized=True)
        self.quote = quote
        self._candles = candles or []
        self._positions = positions or []

    async def get_symbol_price(self, symbol):
        return self.quote

    async def get_candles(self, symbol, timeframe, count):
        return self._candles[-count:]

    async def get_positions(self):
        return list(self._positions)


def _flat_candles(n: int, price: float = 1.1000, wick: float = 0.0005) -> list[Candle]:
    return [
        Candle(price, price + wick, price - wick, price, 100.0, f"2025-03-01T00:{i:02d}:00Z")
        for i in range(n)
    ]


def _fill(signal) -> OrderResult:
    return OrderResult(
        order_id="1",
        symbol=signal.symbol,
        type=signal.type,
        volume=signal.volume,
        price=signal.entry_price,
        stop_loss=signal.stop_loss,
        take_profit=signal.take_profit,
    )


# ── Ladder ───────────────────────────────────────────────────────────────


class TestGridLadder:
    def test_build_layout(self):
        ladder = GridLadder()
        ladder.build(1.1000, 0.0010, 3, lambda i: 0.01 * i)

        buys = [l for l in ladder.levels if l.type == "buy"]
        sells = [l for l in ladder.levels if l.type == "sell"]
        assert len(buys) == len(sells) == 3
        assert all(l.price < 1.1000 for l in buys)
        assert all(l.price > 1.1000 for l in sells)
        assert buys[2].price == pytest.approx(1.0970)
        assert buys[2].volume == pytest.approx(0.03)

    def test_empty_ladder_needs_rebalance(self):
        assert GridLadder().needs_rebalance(1.1, 0.5) is True

    def test_drift_beyond_two_spacings(self):
        ladder = GridLadder()
        ladder.build(1.1000, 0.0010, 3, lambda i: 0.01)
        assert ladder.needs_rebalance(1.1015, 0.5) is False
        assert ladder.needs_rebalance(1.1025, 0.5) is True

    def test_active_share_at_threshold(self):
        ladder = GridLadder()
        ladder.build(1.1000, 0.0010, 1, lambda i: 0.01)
        ladder.activate("buy", 1.0990, 0.01)
        # one of two levels active: 0.5 >= 0.5
        assert ladder.needs_rebalance(1.1000, 0.5) is True

    def test_nearest_inactive_within_half_spacing(self):
        ladder = GridLadder()
        ladder.build(1.1000, 0.0010, 3, lambda i: 0.01)
        assert ladder.nearest_inactive(1.1000) is None
        level = ladder.nearest_inactive(1.0991)
        assert level.type == "buy"
        assert level.price == pytest.approx(1.0990)

    def test_activate_and_deactivate_track_exposure(self):
        ladder = GridLadder()
        ladder.build(1.1000, 0.0010, 2, lambda i: 0.05)
        ladder.activate("sell", 1.1010, 0.05)
        assert ladder.active_positions == 1
        assert ladder.total_exposure == pytest.approx(0.05)

        ladder.deactivate(1.1010)
        assert ladder.active_positions == 0
        assert ladder.total_exposure == pytest.approx(0.0)

    def test_rebuild_keeps_exposure(self):
        ladder = GridLadder()
        ladder.build(1.1000, 0.0010, 2, lambda i: 0.05)
        ladder.activate("buy", 1.0990, 0.05)
        ladder.build(1.2000, 0.0010, 2, lambda i: 0.05)
        assert ladder.total_exposure == pytest.approx(0.05)


# ── Grid gambling ────────────────────────────────────────────────────────


class TestGridGambling:
    def test_level_volume_geometric_and_capped(self):
        strategy = GridGamblingStrategy(
            base_volume=0.1, volume_multiplier=2.0, max_volume=0.5,
        )
        assert [strategy.level_volume(i) for i in range(1, 5)] == [0.1, 0.2, 0.4, 0.5]

    @pytest.mark.asyncio
    async def test_first_tick_builds_then_trades_level(self):
        strategy = GridGamblingStrategy()
        conn = MockConnection(PriceQuote(bid=1.0999, ask=1.1001))

        assert await strategy.analyze(conn) is None
        assert strategy.ladder.is_built
        assert strategy.ladder.spacing == pytest.approx(0.0020)

        conn.quote = PriceQuote(bid=1.0979, ask=1.0981)
        signal = await strategy.analyze(conn)

        assert signal.type == "buy"
        assert signal.volume == pytest.approx(0.01)
        assert signal.stop_loss == pytest.approx(1.0981 - 0.0030)
        assert signal.take_profit == pytest.approx(1.0981 + 0.0040)

    @pytest.mark.asyncio
    async def test_filled_level_is_not_repeated(self):
        strategy = GridGamblingStrategy()
        conn = MockConnection(PriceQuote(bid=1.0999, ask=1.1001))
        await strategy.analyze(conn)
        conn.quote = PriceQuote(bid=1.0979, ask=1.0981)
        signal = await strategy.analyze(conn)

        strategy.on_trade_result(signal, _fill(signal))

        assert strategy.ladder.active_positions == 1
        assert await strategy.analyze(conn) is None

    @pytest.mark.asyncio
    async def test_exposure_cap(self):
        strategy = GridGamblingStrategy(max_exposure=0.1)
        conn = MockConnection(PriceQuote(bid=1.0999, ask=1.1001))
        await strategy.analyze(conn)
        strategy.ladder.total_exposure = 0.2

        conn.quote = PriceQuote(bid=1.0979, ask=1.0981)
        assert await strategy.analyze(conn) is None
        assert strategy.last_insight["reason"] == "max_exposure"

    def test_reset_clears_ladder(self):
        strategy = GridGamblingStrategy()
        strategy.ladder.build(1.1, 0.002, 2, lambda i: 0.01)
        strategy.reset()
        assert not strategy.ladder.is_built


# ── Adaptive grid ────────────────────────────────────────────────────────


class TestAdaptiveGrid:
    @pytest.mark.asyncio
    async def test_position_cap_blocks(self):
        positions = [
            Position(str(i), "EURUSD", "buy", 0.01, 1.1) for i in range(5)
        ]
        strategy = AdaptiveGridStrategy()
        conn = MockConnection(
            PriceQuote(bid=1.0999, ask=1.1001), _flat_candles(50), positions,
        )
        assert await strategy.analyze(conn) is None
        assert strategy.last_insight["reason"] == "max_positions"

    @pytest.mark.asyncio
    async def test_quiet_market_outside_volatility_band(self):
        strategy = AdaptiveGridStrategy()
        conn = MockConnection(
            PriceQuote(bid=1.0999, ask=1.1001), _flat_candles(50, wick=0.0001),
        )
        # average range 0.0002 is below the 0.0005 minimum
        assert await strategy.analyze(conn) is None
        assert strategy.last_insight["reason"] == "volatility_out_of_range"

    @pytest.fixture
    def falling(self, monkeypatch):
        monkeypatch.setattr(grid, "calculate_momentum", lambda prices, period: -0.05)

    @pytest.fixture
    def rising(self, monkeypatch):
        monkeypatch.setattr(grid, "calculate_momentum", lambda prices, period: 0.05)

    async def _built(self, strategy, conn):
        """First tick lays the ladder around 1.1000 without trading."""
        assert await strategy.analyze(conn) is None
        # average range 0.0010 doubles past the 0.0010 configured spacing
        assert strategy.ladder.spacing == pytest.approx(0.0020)
        assert strategy.ladder.base_price == pytest.approx(1.1000)

    @pytest.mark.asyncio
    async def test_falling_momentum_buys_nearest_level(self, falling):
        strategy = AdaptiveGridStrategy()
        conn = MockConnection(PriceQuote(bid=1.0999, ask=1.1001), _flat_candles(50))
        await self._built(strategy, conn)

        conn.quote = PriceQuote(bid=1.0980, ask=1.0982)
        signal = await strategy.analyze(conn)

        assert signal.type == "buy"
        assert signal.volume == pytest.approx(0.01)
        assert signal.entry_price == pytest.approx(1.0980)
        assert signal.stop_loss == pytest.approx(1.0960)
        assert signal.take_profit == pytest.approx(1.1000)
        assert signal.reason == "Grid buy level 1.09800"

    @pytest.mark.asyncio
    async def test_rising_momentum_sells_nearest_level(self, rising):
        strategy = AdaptiveGridStrategy()
        conn = MockConnection(PriceQuote(bid=1.0999, ask=1.1001), _flat_candles(50))
        await self._built(strategy, conn)

        conn.quote = PriceQuote(bid=1.1018, ask=1.1020)
        signal = await strategy.analyze(conn)

        assert signal.type == "sell"
        assert signal.entry_price == pytest.approx(1.1020)
        assert signal.stop_loss == pytest.approx(1.1040)
        assert signal.take_profit == pytest.approx(1.1000)

    @pytest.mark.asyncio
    async def test_rising_momentum_ignores_buy_levels(self, rising):
        strategy = AdaptiveGridStrategy()
        conn = MockConnection(PriceQuote(bid=1.0999, ask=1.1001), _flat_candles(50))
        await self._built(strategy, conn)

        conn.quote = PriceQuote(bid=1.0980, ask=1.0982)
        assert await strategy.analyze(conn) is None

    @pytest.mark.asyncio
    async def test_existing_position_near_level_blocks(self, falling):
        strategy = AdaptiveGridStrategy()
        conn = MockConnection(PriceQuote(bid=1.0999, ask=1.1001), _flat_candles(50))
        await self._built(strategy, conn)
        conn.quote = PriceQuote(bid=1.0980, ask=1.0982)

        # 0.0002 from the 1.0980 level, inside a quarter spacing
        conn._positions = [Position("p1", "EURUSD", "buy", 0.01, 1.0982)]
        assert await strategy.analyze(conn) is None

        # A sell at the same price does not count against a buy level
        conn._positions = [Position("p2", "EURUSD", "sell", 0.01, 1.0982)]
        assert (await strategy.analyze(conn)).type == "buy"

        # Same side but beyond a quarter spacing
        conn._positions = [Position("p3", "EURUSD", "buy", 0.01, 1.0986)]
        assert (await strategy.analyze(conn)).type == "buy"

    @pytest.mark.asyncio
    async def test_drift_rebuilds_ladder(self, falling):
        strategy = AdaptiveGridStrategy()
        conn = MockConnection(PriceQuote(bid=1.0999, ask=1.1001), _flat_candles(50))
        await self._built(strategy, conn)

        # 0.0050 away: beyond two spacings
        conn.quote = PriceQuote(bid=1.1049, ask=1.1051)
        assert await strategy.analyze(conn) is None

        assert strategy.ladder.base_price == pytest.approx(1.1050)
        buys = [l.price for l in strategy.ladder.levels if l.type == "buy"]
        assert buys[0] == pytest.approx(1.1030)
        assert strategy.last_insight["grid"]["base_price"] == pytest.approx(1.1050)

    @pytest.mark.asyncio
    async def test_closed_position_reopens_level(self, falling):
        strategy = AdaptiveGridStrategy()
        conn = MockConnection(PriceQuote(bid=1.0999, ask=1.1001), _flat_candles(50))
        await self._built(strategy, conn)
        conn.quote = PriceQuote(bid=1.0980, ask=1.0982)
        signal = await strategy.analyze(conn)

        strategy.on_trade_result(signal, _fill(signal))
        assert await strategy.analyze(conn) is None

        strategy.on_position_closed(signal.entry_price)
        assert strategy.ladder.active_positions == 0
        assert (await strategy.analyze(conn)).type == "buy"
