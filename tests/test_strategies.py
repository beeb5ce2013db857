"""Tests for the strategy variants — rule tables and the analyze pipeline.

Uses a mock connection with canned quotes and candles; indicator
functions are patched where a test needs an exact indicator snapshot.
"""

import pytest

from signaldesk.broker.connection import TerminalState
from signaldesk.broker.models import Candle, PriceQuote
from signaldesk.errors import DataUnavailableError
from signaldesk.strategy import gold, macd_trend, momentum, rsi_reversal
from signaldesk.strategy.ai_breakout import AIBreakoutStrategy, consolidation_range
from signaldesk.strategy.base import BaseStrategy, StrategyProtocol
from signaldesk.strategy.bollinger_breakout import BollingerBreakoutStrategy
from signaldesk.strategy.gold import GoldStrategy, gold_direction
from signaldesk.strategy.ma_crossover import MACrossoverStrategy, detect_ma_crossover
from signaldesk.strategy.macd_trend import MACDTrendStrategy, detect_macd_crossover
from signaldesk.strategy.mean_reversion import MeanReversionStrategy, mean_reversion_direction
from signaldesk.strategy.models import BollingerBands, MACDResult, StrategyParameter
from signaldesk.strategy.momentum import MomentumStrategy, momentum_direction
from signaldesk.strategy.registry import STRATEGY_REGISTRY, get_strategy, list_strategies
from signaldesk.strategy.rsi_reversal import RSIReversalStrategy, detect_rsi_reversal
from signaldesk.strategy.technical import TechnicalStrategy, technical_direction


# ── Helpers ──────────────────────────────────────────────────────────────


class MockConnection:
    """Duck-typed connection returning canned data."""

    def __init__(self, quote=None, candles=None, positions=None, fail_candles=False):
        self.terminal_state = TerminalState(synchronized=True)
        self._quote = quote
        self._candles = candles or []
        self._positions = positions or []
        self._fail_candles = fail_candles
        self.candle_requests: list[int] = []

    async def get_symbol_price(self, symbol):
        return self._quote

    async def get_candles(self, symbol, timeframe, count):
        self.candle_requests.append(count)
        if self._fail_candles:
            raise ConnectionError("bridge unreachable")
        return self._candles[-count:]

    async def get_positions(self):
        return list(self._positions)


def _candles(closes: list[float], wick: float = 0.0005, volume: float = 200.0) -> list[Candle]:
    return [
        Candle(
            open=c,
            high=c + wick,
            low=c - wick,
            close=c,
            volume=volume,
            timestamp=f"2025-03-01T{i // 60:02d}:{i % 60:02d}:00+00:00",
        )
        for i, c in enumerate(closes)
    ]


# ── Gold ─────────────────────────────────────────────────────────────────


class TestGoldDirection:
    def test_bullish_stack_buys(self):
        assert gold_direction(
            1.2100, 1.2080, 1.2050, 25, 0.0003, 0.0001, 0.0002, 0.0030, 0.0010,
        ) == "buy"

    def test_bearish_stack_sells(self):
        assert gold_direction(
            1.2050, 1.2080, 1.2100, 75, -0.0003, -0.0001, -0.0002, 0.0030, 0.0010,
        ) == "sell"

    def test_low_atr_blocks(self):
        assert gold_direction(
            1.2100, 1.2080, 1.2050, 25, 0.0003, 0.0001, 0.0002, 0.0020, 0.0010,
        ) is None

    def test_rsi_not_oversold(self):
        assert gold_direction(
            1.2100, 1.2080, 1.2050, 45, 0.0003, 0.0001, 0.0002, 0.0030, 0.0010,
        ) is None


class TestGoldStrategy:
    @pytest.fixture
    def snapshot(self, monkeypatch):
        """Patch the gold indicators to a fixed bullish snapshot."""
        emas = {5: 1.2100, 13: 1.2080, 21: 1.2050}
        monkeypatch.setattr(gold, "calculate_ema", lambda prices, period: [emas[period]])
        monkeypatch.setattr(gold, "calculate_rsi", lambda prices, period: [25.0])
        monkeypatch.setattr(gold, "calculate_atr", lambda h, l, c, period: [0.0030])
        monkeypatch.setattr(
            gold, "calculate_macd",
            lambda prices, fast, slow, signal: MACDResult([0.0003], [0.0001], [0.0002]),
        )

    @pytest.mark.asyncio
    async def test_bullish_snapshot_returns_buy(self, snapshot):
        strategy = GoldStrategy(
            symbol="EURUSD", pip_size=0.0001, min_spread=0.0010, max_spread=0.0030,
            stop_loss_pips=10,
        )
        quote = PriceQuote(bid=1.2095, ask=1.2107)
        conn = MockConnection(quote=quote, candles=_candles([1.21] * 40))

        signal = await strategy.analyze(conn)

        assert signal is not None
        assert signal.type == "buy"
        assert signal.stop_loss < quote.ask < signal.take_profit
        # distance = max(10 pips, 1.5 × ATR) = 0.0045; target 2 × distance
        assert signal.stop_loss == pytest.approx(1.2062)
        assert signal.take_profit == pytest.approx(1.2197)
        assert signal.entry_price == pytest.approx(1.2107)

    @pytest.mark.asyncio
    async def test_pip_floor_applies(self, snapshot, monkeypatch):
        monkeypatch.setattr(gold, "calculate_atr", lambda h, l, c, period: [1.20])
        strategy = GoldStrategy(stop_loss_pips=300)
        quote = PriceQuote(bid=2000.00, ask=2000.70)
        conn = MockConnection(quote=quote, candles=_candles([2000.0] * 40))

        signal = await strategy.analyze(conn)

        # 300 pips × 0.01 = 3.00 beats 1.5 × 1.20
        assert signal.stop_loss == pytest.approx(1997.70)
        assert signal.take_profit == pytest.approx(2006.70)

    @pytest.mark.asyncio
    async def test_wide_spread_returns_none(self):
        strategy = GoldStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=2000.00, ask=2001.20),
            candles=_candles([2000.0] * 40),
        )

        assert await strategy.analyze(conn) is None
        assert strategy.last_insight["result"] == "invalid_input"
        assert conn.candle_requests == []

    @pytest.mark.asyncio
    async def test_short_candle_window_returns_none(self):
        strategy = GoldStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=2000.00, ask=2000.70),
            candles=_candles([2000.0] * 10),
        )
        assert await strategy.analyze(conn) is None
        assert conn.candle_requests == [strategy.required_candles]

    @pytest.mark.asyncio
    async def test_candle_failure_raises_after_retries(self, monkeypatch):
        monkeypatch.setattr(GoldStrategy, "RETRY_DELAY", 0.0)
        strategy = GoldStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=2000.00, ask=2000.70), fail_candles=True,
        )
        with pytest.raises(DataUnavailableError, match="after 3 attempts"):
            await strategy.analyze(conn)
        assert len(conn.candle_requests) == 3

    def test_required_candles(self):
        # MACD slow + signal dominates the EMA and RSI windows
        assert GoldStrategy().required_candles == 35


# ── RSI reversal ─────────────────────────────────────────────────────────


class TestRSIReversal:
    def test_upward_cross_buys(self):
        assert detect_rsi_reversal(28, 32) == "buy"

    def test_downward_move_is_not_a_cross(self):
        assert detect_rsi_reversal(32, 28) is None

    def test_overbought_exit_sells(self):
        assert detect_rsi_reversal(72, 68) == "sell"

    def test_touching_threshold_is_not_a_cross(self):
        assert detect_rsi_reversal(30, 35) is None

    @pytest.mark.asyncio
    async def test_strategy_buys_on_cross(self, monkeypatch):
        monkeypatch.setattr(
            rsi_reversal, "calculate_rsi", lambda prices, period: [40.0, 28.0, 32.0],
        )
        strategy = RSIReversalStrategy()
        quote = PriceQuote(bid=1.1000, ask=1.1002)
        conn = MockConnection(quote=quote, candles=_candles([1.1] * 20, wick=0.001))

        signal = await strategy.analyze(conn)

        assert signal.type == "buy"
        # ATR = 0.002; stop 1.5 × ATR, target 2 × ATR
        assert signal.stop_loss == pytest.approx(1.1002 - 0.0030)
        assert signal.take_profit == pytest.approx(1.1002 + 0.0040)

    @pytest.mark.asyncio
    async def test_strategy_ignores_falling_rsi(self, monkeypatch):
        monkeypatch.setattr(
            rsi_reversal, "calculate_rsi", lambda prices, period: [40.0, 32.0, 28.0],
        )
        strategy = RSIReversalStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=1.1000, ask=1.1002), candles=_candles([1.1] * 20),
        )
        assert await strategy.analyze(conn) is None
        assert strategy.last_insight["result"] == "no_signal"


# ── Mean reversion ───────────────────────────────────────────────────────


class TestMeanReversion:
    def test_rule_requires_volume(self):
        bands = BollingerBands(upper=1.11, middle=1.10, lower=1.09)
        assert mean_reversion_direction(1.08, bands, 20, 50, 30, 70, 100) is None
        assert mean_reversion_direction(1.08, bands, 20, 150, 30, 70, 100) == "buy"
        assert mean_reversion_direction(1.12, bands, 80, 150, 30, 70, 100) == "sell"

    @pytest.mark.asyncio
    async def test_drop_below_band_targets_middle(self):
        closes = [1.1000] * 49 + [1.0900]
        strategy = MeanReversionStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=1.0899, ask=1.0901), candles=_candles(closes),
        )

        signal = await strategy.analyze(conn)

        assert signal.type == "buy"
        assert signal.take_profit == pytest.approx(1.0995)
        assert signal.stop_loss < signal.entry_price < signal.take_profit


# ── Momentum / MACD / MA crossover / technical ──────────────────────────


class TestRuleFunctions:
    def test_momentum_buy(self):
        assert momentum_direction(0.0003, 0.0001, 0.0002, 35, 1.5, 0.2) == "buy"

    def test_momentum_needs_volume(self):
        assert momentum_direction(0.0003, 0.0001, 0.0002, 35, 1.1, 0.2) is None

    def test_momentum_sell(self):
        assert momentum_direction(-0.0003, -0.0001, -0.0002, 65, 1.5, -0.2) == "sell"

    def test_macd_crossover_up(self):
        macd = MACDResult(macd=[0.0, 0.0003], signal=[0.0001, 0.0001], histogram=[-0.0001, 0.0002])
        assert detect_macd_crossover(macd, 0.0001) == "buy"

    def test_macd_crossover_small_histogram(self):
        macd = MACDResult(macd=[0.0, 0.00015], signal=[0.0001, 0.0001], histogram=[-0.0001, 0.00005])
        assert detect_macd_crossover(macd, 0.0001) is None

    def test_ma_crossover(self):
        assert detect_ma_crossover([1.0, 1.2], [1.1, 1.1]) == "buy"
        assert detect_ma_crossover([1.2, 1.0], [1.1, 1.1]) == "sell"
        assert detect_ma_crossover([1.2, 1.3], [1.1, 1.1]) is None

    def test_technical_buy(self):
        bands = BollingerBands(upper=1.11, middle=1.10, lower=1.09)
        quote = PriceQuote(bid=1.0880, ask=1.0882)
        assert technical_direction(quote, 25, 0.0001, bands) == "buy"
        assert technical_direction(quote, 25, -0.0001, bands) is None


class TestMACrossoverStrategy:
    @pytest.mark.asyncio
    async def test_fresh_golden_cross_buys(self):
        closes = [1.1010] * 10 + [1.1000] * 14 + [1.1400]
        strategy = MACrossoverStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=1.1399, ask=1.1401), candles=_candles(closes),
        )
        signal = await strategy.analyze(conn)
        assert signal.type == "buy"
        assert signal.stop_loss < 1.1401 < signal.take_profit


class TestTechnicalStrategy:
    def test_accessors_empty_before_analysis(self):
        strategy = TechnicalStrategy()
        assert strategy.get_rsi() is None
        assert strategy.get_macd() is None
        assert strategy.get_bollinger() is None

    @pytest.mark.asyncio
    async def test_accessors_cache_last_analysis(self):
        strategy = TechnicalStrategy()
        closes = [1.1000 + (0.0005 if i % 2 else 0.0) for i in range(50)]
        conn = MockConnection(
            quote=PriceQuote(bid=1.1001, ask=1.1003), candles=_candles(closes),
        )
        await strategy.analyze(conn)

        assert 0 <= strategy.get_rsi() <= 100
        assert set(strategy.get_macd()) == {"macd", "signal", "histogram"}
        assert strategy.get_bollinger().lower < strategy.get_bollinger().upper


class TestMomentumStrategy:
    @pytest.fixture
    def bullish(self, monkeypatch):
        monkeypatch.setattr(
            momentum, "calculate_macd",
            lambda prices, fast, slow, signal: MACDResult([0.0003], [0.0001], [0.0002]),
        )
        monkeypatch.setattr(momentum, "calculate_rsi", lambda prices, period: [35.0])
        monkeypatch.setattr(momentum, "volume_strength", lambda volumes, period: 1.5)
        monkeypatch.setattr(momentum, "calculate_momentum", lambda prices, period: 0.2)

    @pytest.mark.asyncio
    async def test_bullish_snapshot_buys(self, bullish):
        strategy = MomentumStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=1.0999, ask=1.1001), candles=_candles([1.1] * 40),
        )
        signal = await strategy.analyze(conn)

        assert signal.type == "buy"
        assert signal.entry_price == pytest.approx(1.1001)
        # volatility 2 × |histogram| = 0.0004; stop 2×, target 3×
        assert signal.stop_loss == pytest.approx(1.0993)
        assert signal.take_profit == pytest.approx(1.1013)
        assert signal.reason == "MACD momentum buy, volume x1.50"
        assert conn.candle_requests == [30]
        assert strategy.last_insight["indicators"]["rsi"] == 35.0

    @pytest.mark.asyncio
    async def test_bearish_snapshot_sells(self, bullish, monkeypatch):
        monkeypatch.setattr(
            momentum, "calculate_macd",
            lambda prices, fast, slow, signal: MACDResult([-0.0003], [-0.0001], [-0.0002]),
        )
        monkeypatch.setattr(momentum, "calculate_rsi", lambda prices, period: [65.0])
        monkeypatch.setattr(momentum, "calculate_momentum", lambda prices, period: -0.2)
        conn = MockConnection(
            quote=PriceQuote(bid=1.0999, ask=1.1001), candles=_candles([1.1] * 40),
        )
        signal = await MomentumStrategy().analyze(conn)

        assert signal.type == "sell"
        assert signal.stop_loss == pytest.approx(1.1007)
        assert signal.take_profit == pytest.approx(1.0987)

    @pytest.mark.asyncio
    async def test_quiet_volume_holds(self, bullish, monkeypatch):
        monkeypatch.setattr(momentum, "volume_strength", lambda volumes, period: 1.1)
        conn = MockConnection(
            quote=PriceQuote(bid=1.0999, ask=1.1001), candles=_candles([1.1] * 40),
        )
        strategy = MomentumStrategy()
        assert await strategy.analyze(conn) is None
        assert strategy.last_insight["result"] == "no_signal"

    @pytest.mark.asyncio
    async def test_short_history_rejected(self):
        conn = MockConnection(
            quote=PriceQuote(bid=1.0999, ask=1.1001), candles=_candles([1.1] * 10),
        )
        strategy = MomentumStrategy()
        assert await strategy.analyze(conn) is None
        assert strategy.last_insight["result"] == "invalid_input"


class TestMACDTrendStrategy:
    @pytest.fixture
    def atr(self, monkeypatch):
        monkeypatch.setattr(
            macd_trend, "calculate_atr",
            lambda highs, lows, closes, period, smoothing="wilder": [0.0010],
        )

    @pytest.mark.asyncio
    async def test_bullish_cross_buys_with_atr_levels(self, atr, monkeypatch):
        monkeypatch.setattr(
            macd_trend, "calculate_macd",
            lambda prices, fast, slow, signal: MACDResult(
                [0.0001, 0.0004], [0.0002, 0.0002], [-0.0001, 0.0002],
            ),
        )
        strategy = MACDTrendStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=1.0999, ask=1.1001), candles=_candles([1.1] * 40),
        )
        signal = await strategy.analyze(conn)

        assert signal.type == "buy"
        assert signal.stop_loss == pytest.approx(1.1001 - 0.0015)
        assert signal.take_profit == pytest.approx(1.1001 + 0.0020)
        assert signal.reason == "MACD crossover buy"
        assert conn.candle_requests == [36]
        assert strategy.last_insight["indicators"]["atr"] == 0.0010

    @pytest.mark.asyncio
    async def test_bearish_cross_sells(self, atr, monkeypatch):
        monkeypatch.setattr(
            macd_trend, "calculate_macd",
            lambda prices, fast, slow, signal: MACDResult(
                [0.0003, -0.0001], [0.0002, 0.0002], [0.0001, -0.0003],
            ),
        )
        conn = MockConnection(
            quote=PriceQuote(bid=1.0999, ask=1.1001), candles=_candles([1.1] * 40),
        )
        signal = await MACDTrendStrategy().analyze(conn)

        assert signal.type == "sell"
        assert signal.entry_price == pytest.approx(1.0999)
        assert signal.stop_loss == pytest.approx(1.0999 + 0.0015)

    @pytest.mark.asyncio
    async def test_weak_histogram_holds(self, atr, monkeypatch):
        monkeypatch.setattr(
            macd_trend, "calculate_macd",
            lambda prices, fast, slow, signal: MACDResult(
                [0.0001, 0.00025], [0.0002, 0.0002], [-0.0001, 0.00005],
            ),
        )
        conn = MockConnection(
            quote=PriceQuote(bid=1.0999, ask=1.1001), candles=_candles([1.1] * 40),
        )
        assert await MACDTrendStrategy().analyze(conn) is None

    @pytest.mark.asyncio
    async def test_real_indicators_on_flat_market(self):
        conn = MockConnection(
            quote=PriceQuote(bid=1.0999, ask=1.1001), candles=_candles([1.1] * 40),
        )
        strategy = MACDTrendStrategy()
        assert await strategy.analyze(conn) is None
        assert strategy.last_insight["indicators"]["histogram"] == pytest.approx(0.0)


# ── AI breakout ──────────────────────────────────────────────────────────


def _breakout_candles(last_close: float, last_volume: float = 400.0, wick: float = 0.0001):
    """29 quiet bars at 1.1000, then one bar closing at *last_close*."""
    quiet = _candles([1.1000] * 29, wick=wick, volume=100.0)
    last = Candle(
        open=1.1000,
        high=max(1.1000, last_close) + 0.0002,
        low=min(1.1000, last_close) - 0.0002,
        close=last_close,
        volume=last_volume,
        timestamp="2025-03-01T00:29:00+00:00",
    )
    return quiet + [last]


class TestAIBreakout:
    def test_consolidation_excludes_latest_bar(self):
        highs = [1.1001] * 10 + [1.1050]
        lows = [1.0999] * 10 + [1.0990]
        width, pct = consolidation_range(highs, lows, 10)
        assert width == pytest.approx(0.0002)
        assert pct == pytest.approx(0.0002 / 1.0999)

    def test_consolidation_needs_history(self):
        with pytest.raises(ValueError, match="11 bars"):
            consolidation_range([1.1] * 10, [1.1] * 10, 10)

    @pytest.mark.asyncio
    async def test_upside_breakout_buys(self):
        strategy = AIBreakoutStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=1.1009, ask=1.1011), candles=_breakout_candles(1.1010),
        )
        signal = await strategy.analyze(conn)

        assert signal.type == "buy"
        assert signal.entry_price == pytest.approx(1.1011)
        # range 0.0002: stop 1.5×, target 2.5×
        assert signal.stop_loss == pytest.approx(1.1008)
        assert signal.take_profit == pytest.approx(1.1016)
        assert strategy.last_insight["indicators"]["consolidating"] is True
        assert conn.candle_requests == [30]

    @pytest.mark.asyncio
    async def test_downside_breakout_sells(self):
        conn = MockConnection(
            quote=PriceQuote(bid=1.0989, ask=1.0991), candles=_breakout_candles(1.0990),
        )
        signal = await AIBreakoutStrategy().analyze(conn)

        assert signal.type == "sell"
        assert signal.entry_price == pytest.approx(1.0989)
        assert signal.stop_loss == pytest.approx(1.0992)
        assert signal.take_profit == pytest.approx(1.0984)

    @pytest.mark.asyncio
    async def test_no_volume_spike_holds(self):
        conn = MockConnection(
            quote=PriceQuote(bid=1.1009, ask=1.1011),
            candles=_breakout_candles(1.1010, last_volume=100.0),
        )
        assert await AIBreakoutStrategy().analyze(conn) is None

    @pytest.mark.asyncio
    async def test_wide_range_is_not_consolidation(self):
        strategy = AIBreakoutStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=1.1049, ask=1.1051),
            candles=_breakout_candles(1.1050, wick=0.0010),
        )
        assert await strategy.analyze(conn) is None
        assert strategy.last_insight["indicators"]["consolidating"] is False


class TestBollingerBreakout:
    @pytest.mark.asyncio
    async def test_needs_volume_surge(self):
        closes = [1.1000 + (0.0004 if i % 2 else 0.0) for i in range(24)] + [1.1100]
        strategy = BollingerBreakoutStrategy()
        conn = MockConnection(
            quote=PriceQuote(bid=1.1099, ask=1.1101), candles=_candles(closes),
        )
        # Flat volume: strength 1.0 never beats the 1.5 threshold
        assert await strategy.analyze(conn) is None


# ── Parameters ───────────────────────────────────────────────────────────


class TestParameters:
    def test_clamped_on_construction(self):
        strategy = RSIReversalStrategy(rsi_period=500)
        assert strategy.param("rsi_period") == 50

    def test_integer_steps_stay_integers(self):
        strategy = RSIReversalStrategy(rsi_period=9.6)
        assert strategy.param("rsi_period") == 10
        assert isinstance(strategy.param("rsi_period"), int)

    def test_unknown_parameter_raises(self):
        with pytest.raises(KeyError, match="Unknown parameter"):
            RSIReversalStrategy().update_parameters({"nope": 1})

    def test_non_numeric_value_applies_nothing(self):
        strategy = RSIReversalStrategy()
        with pytest.raises(ValueError, match="overbought"):
            strategy.update_parameters({"oversold": 20, "overbought": "high"})
        assert strategy.param("oversold") == 30

    def test_clamp_none_falls_back_to_default(self):
        p = StrategyParameter("x", 5, 1, 10, 1, 7)
        assert p.clamp(None) == 7


# ── Registry ─────────────────────────────────────────────────────────────


class TestRegistry:
    def test_all_variants_registered(self):
        assert set(STRATEGY_REGISTRY) == {
            "xauusd", "ai_mean_reversion", "ai_momentum", "macd_trend",
            "rsi_reversal", "ai_grid", "hybrid_grid_gambling", "ai_technical",
            "ma_crossover", "bollinger_breakout", "ai_breakout",
        }

    def test_get_strategy_passes_kwargs(self):
        strategy = get_strategy("rsi_reversal", symbol="GBPUSD", oversold=25)
        assert strategy.symbol == "GBPUSD"
        assert strategy.param("oversold") == 25

    def test_unknown_id(self):
        with pytest.raises(KeyError, match="Unknown strategy 'nope'"):
            get_strategy("nope")

    def test_every_strategy_satisfies_protocol(self):
        for cls in STRATEGY_REGISTRY.values():
            strategy = cls()
            assert isinstance(strategy, BaseStrategy)
            assert isinstance(strategy, StrategyProtocol)

    def test_list_by_category(self):
        assert [s["id"] for s in list_strategies("grid")] == ["ai_grid"]
        assert [s["id"] for s in list_strategies("gambling")] == ["hybrid_grid_gambling"]
