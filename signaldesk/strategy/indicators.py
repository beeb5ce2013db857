"""Technical indicators — EMA, SMA, RSI, MACD, ATR, Bollinger Bands. Pure functions, no I/O.

Every function takes plain ``list[float]`` series ordered oldest-first and
returns new values; nothing is cached between calls.
"""

import math

from signaldesk.strategy.models import BollingerBands, MACDResult


def calculate_ema(prices: list[float], period: int) -> list[float]:
    """Calculate an Exponential Moving Average series.

    The first value is seeded with ``prices[0]`` (no warm-up truncation),
    then ``ema[i] = (price[i] - ema[i-1]) × k + ema[i-1]`` with
    ``k = 2 / (period + 1)``.

    Returns a list the same length as *prices*.

    Raises ``ValueError`` on an empty series or a non-positive period.
    """
    if period < 1:
        raise ValueError(f"EMA period must be positive, got {period}")
    if not prices:
        raise ValueError("Need at least 1 price for EMA, got 0")

    k = 2.0 / (period + 1)
    ema: list[float] = [prices[0]]
    for i in range(1, len(prices)):
        ema.append((prices[i] - ema[i - 1]) * k + ema[i - 1])
    return ema


def calculate_sma(prices: list[float], period: int) -> list[float]:
    """Simple moving average, one value per complete window.

    Returns ``len(prices) - period + 1`` values.
    """
    if len(prices) < period:
        raise ValueError(
            f"Need at least {period} prices for SMA({period}), "
            f"got {len(prices)}"
        )
    return [
        sum(prices[i - period + 1 : i + 1]) / period
        for i in range(period - 1, len(prices))
    ]


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(prices: list[float], period: int = 14) -> list[float]:
    """Calculate Wilder's Relative Strength Index.

    Algorithm:
        1. delta = price[i] - price[i-1]
        2. Separate gains (positive) and losses (|negative|).
        3. Seed average gain/loss = simple mean of the first *period* deltas.
        4. Subsequent: avg = avg × (period-1)/period + value/period
        5. RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    A zero average loss is replaced by 1 before dividing.  In a strictly
    rising series this keeps RSI below 100 rather than pinning it there;
    thresholds downstream were tuned against this behaviour.

    Requires more than *period* prices.  Returns ``len(prices) - period``
    values, the first aligned with ``prices[period]``.
    """
    if len(prices) <= period:
        raise ValueError(
            f"Need at least {period + 1} prices for RSI({period}), "
            f"got {len(prices)}"
        )

    deltas = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    gains = [d if d > 0 else 0.0 for d in deltas]
    losses = [-d if d < 0 else 0.0 for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    def _rsi_from_avgs(ag: float, al: float) -> float:
        return 100.0 - 100.0 / (1.0 + ag / (al or 1.0))

    rsi: list[float] = [_rsi_from_avgs(avg_gain, avg_loss)]
    for i in range(period, len(deltas)):
        avg_gain = avg_gain * (period - 1) / period + gains[i] / period
        avg_loss = avg_loss * (period - 1) / period + losses[i] / period
        rsi.append(_rsi_from_avgs(avg_gain, avg_loss))
    return rsi


# ── MACD ─────────────────────────────────────────────────────────────────


def calculate_macd(
    prices: list[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MACDResult:
    """Moving-average convergence/divergence.

    ``macd = EMA(fast) - EMA(slow)``, ``signal = EMA(macd, signal)``,
    ``histogram = macd - signal``.  All three series have the input length.
    """
    fast_ema = calculate_ema(prices, fast)
    slow_ema = calculate_ema(prices, slow)
    macd_line = [f - s for f, s in zip(fast_ema, slow_ema)]
    signal_line = calculate_ema(macd_line, signal)
    histogram = [m - s for m, s in zip(macd_line, signal_line)]
    return MACDResult(macd=macd_line, signal=signal_line, histogram=histogram)


# ── ATR ──────────────────────────────────────────────────────────────────


def true_ranges(
    highs: list[float], lows: list[float], closes: list[float],
) -> list[float]:
    """True range per bar; the first bar uses ``high - low``."""
    if not (len(highs) == len(lows) == len(closes)):
        raise ValueError("highs, lows and closes must have equal length")
    tr: list[float] = []
    for i in range(len(highs)):
        if i == 0:
            tr.append(highs[i] - lows[i])
            continue
        prev_close = closes[i - 1]
        tr.append(max(
            highs[i] - lows[i],
            abs(highs[i] - prev_close),
            abs(lows[i] - prev_close),
        ))
    return tr


def calculate_atr(
    highs: list[float],
    lows: list[float],
    closes: list[float],
    period: int = 14,
    smoothing: str = "wilder",
) -> list[float]:
    """Calculate an Average True Range series.

    ``smoothing="wilder"`` seeds with the first true range and applies
    ``atr[i] = ((period-1) × atr[i-1] + tr[i]) / period``, producing one
    value per bar.  ``smoothing="simple"`` returns the rolling mean of the
    last *period* true ranges, one value per complete window.
    """
    if not highs:
        raise ValueError("Need at least 1 bar for ATR, got 0")
    tr = true_ranges(highs, lows, closes)

    if smoothing == "wilder":
        atr: list[float] = [tr[0]]
        for i in range(1, len(tr)):
            atr.append(((period - 1) * atr[i - 1] + tr[i]) / period)
        return atr
    if smoothing == "simple":
        return calculate_sma(tr, period)
    raise ValueError(f"smoothing must be 'wilder' or 'simple', got '{smoothing}'")


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_bollinger(
    prices: list[float],
    period: int = 20,
    std_dev: float = 2.0,
) -> BollingerBands:
    """Bollinger Bands over the last *period* prices.

    Middle = SMA(*period*)
    Upper  = middle + *std_dev* × σ
    Lower  = middle − *std_dev* × σ

    σ is the population standard deviation of the window.
    """
    if len(prices) < period:
        raise ValueError(
            f"Need at least {period} prices for Bollinger({period}), "
            f"got {len(prices)}"
        )
    window = prices[-period:]
    sma = sum(window) / period
    sigma = math.sqrt(sum((x - sma) ** 2 for x in window) / period)
    return BollingerBands(
        upper=sma + std_dev * sigma,
        middle=sma,
        lower=sma - std_dev * sigma,
    )


# ── Volatility / momentum / volume helpers ───────────────────────────────


def average_range(
    highs: list[float], lows: list[float], period: int = 20,
) -> float:
    """Mean ``high - low`` over the last *period* bars."""
    if len(highs) < period or len(lows) < period:
        raise ValueError(
            f"Need at least {period} bars for average range, got {len(highs)}"
        )
    ranges = [h - l for h, l in zip(highs[-period:], lows[-period:])]
    return sum(ranges) / period


def calculate_momentum(prices: list[float], period: int = 10) -> float:
    """Percentage change between the last price and the one *period* bars back."""
    if len(prices) <= period:
        raise ValueError(
            f"Need at least {period + 1} prices for momentum({period}), "
            f"got {len(prices)}"
        )
    past = prices[-period - 1]
    if past == 0:
        raise ValueError("Momentum reference price is zero")
    return (prices[-1] - past) / past * 100


def volume_strength(volumes: list[float], period: int = 20) -> float:
    """Latest volume relative to the average of the last *period* volumes."""
    if len(volumes) < period:
        raise ValueError(
            f"Need at least {period} volumes for volume strength, "
            f"got {len(volumes)}"
        )
    avg = sum(volumes[-period:]) / period
    if avg == 0:
        return 0.0
    return volumes[-1] / avg


def mean_abs_return(prices: list[float]) -> float:
    """Mean absolute bar-to-bar relative return."""
    if len(prices) < 2:
        raise ValueError("Need at least 2 prices for returns")
    returns = [
        abs((prices[i] - prices[i - 1]) / prices[i - 1])
        for i in range(1, len(prices))
    ]
    return sum(returns) / len(returns)
