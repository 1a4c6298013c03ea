"""Technical indicators — ATR, SMA, EMA, RSI, ADX/DI, Bollinger, MACD, PSAR.

Pure functions over candle lists, no I/O.  Each raises ``ValueError`` when
given fewer candles than it needs; series outputs are padded with
``float('nan')`` until the indicator is defined.  Agents treat both cases
as "inconclusive" rather than failing the run.
"""

import math

from tradesim.strategy.models import Candle

NAN = float("nan")


def last_defined(values: list[float]) -> float:
    """Return the final element of an indicator series.

    Raises ``ValueError`` if the series is empty or the last value is NaN.
    """
    if not values or math.isnan(values[-1]):
        raise ValueError("Indicator value is not yet defined")
    return values[-1]


def _true_ranges(candles: list[Candle]) -> list[float]:
    ranges: list[float] = []
    for prev, cur in zip(candles, candles[1:]):
        ranges.append(max(
            cur.high - cur.low,
            abs(cur.high - prev.close),
            abs(cur.low - prev.close),
        ))
    return ranges


def calculate_atr(candles: list[Candle], period: int = 14) -> float:
    """Wilder-smoothed Average True Range of the latest candle.

    Seeds with the simple mean of the first *period* true ranges, then
    applies ``atr = (prev × (period − 1) + tr) / period``.

    Requires at least ``period + 1`` candles.
    """
    if len(candles) < period + 1:
        raise ValueError(
            f"Need at least {period + 1} candles for ATR({period}), "
            f"got {len(candles)}"
        )
    ranges = _true_ranges(candles)
    atr = sum(ranges[:period]) / period
    for tr in ranges[period:]:
        atr = (atr * (period - 1) + tr) / period
    return atr


def calculate_sma(values: list[float], period: int) -> list[float]:
    """Simple moving average of *values*, NaN-padded to the input length."""
    if len(values) < period:
        raise ValueError(
            f"Need at least {period} values for SMA({period}), got {len(values)}"
        )
    out = [NAN] * len(values)
    window_sum = sum(values[:period])
    out[period - 1] = window_sum / period
    for i in range(period, len(values)):
        window_sum += values[i] - values[i - period]
        out[i] = window_sum / period
    return out


def ema_of(values: list[float], period: int) -> list[float]:
    """EMA of a raw value series, seeded with the SMA of the first *period*."""
    if len(values) < period:
        raise ValueError(
            f"Need at least {period} values for EMA({period}), got {len(values)}"
        )
    k = 2.0 / (period + 1)
    out = [NAN] * len(values)
    out[period - 1] = sum(values[:period]) / period
    for i in range(period, len(values)):
        out[i] = values[i] * k + out[i - 1] * (1 - k)
    return out


def calculate_ema(candles: list[Candle], period: int) -> list[float]:
    """Exponential moving average of closes (same length as *candles*)."""
    return ema_of([c.close for c in candles], period)


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(candles: list[Candle], period: int = 14) -> list[float]:
    """Wilder's Relative Strength Index of closes.

    Requires at least ``period + 1`` candles.  Entries before the seed are
    NaN.
    """
    if len(candles) < period + 1:
        raise ValueError(
            f"Need at least {period + 1} candles for RSI({period}), "
            f"got {len(candles)}"
        )

    closes = [c.close for c in candles]
    deltas = [b - a for a, b in zip(closes, closes[1:])]
    gains = [max(d, 0.0) for d in deltas]
    losses = [max(-d, 0.0) for d in deltas]

    def _rsi(avg_gain: float, avg_loss: float) -> float:
        if avg_loss == 0:
            return 100.0
        return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)

    rsi = [NAN] * len(candles)
    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    rsi[period] = _rsi(avg_gain, avg_loss)

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        rsi[i + 1] = _rsi(avg_gain, avg_loss)
    return rsi


# ── ADX / DI ─────────────────────────────────────────────────────────────


def calculate_adx(
    candles: list[Candle], period: int = 14,
) -> tuple[list[float], list[float], list[float]]:
    """Average Directional Index with its directional indicators.

    Returns ``(adx, plus_di, minus_di)``, each the length of *candles*.
    DI values are defined from index *period*, ADX from ``2 × period − 1``.

    Requires at least ``2 × period + 1`` candles.
    """
    n = len(candles)
    if n < 2 * period + 1:
        raise ValueError(
            f"Need at least {2 * period + 1} candles for ADX({period}), got {n}"
        )

    plus_dm = [0.0]
    minus_dm = [0.0]
    tr = [0.0] + _true_ranges(candles)
    for prev, cur in zip(candles, candles[1:]):
        up = cur.high - prev.high
        down = prev.low - cur.low
        plus_dm.append(up if up > down and up > 0 else 0.0)
        minus_dm.append(down if down > up and down > 0 else 0.0)

    plus_di = [NAN] * n
    minus_di = [NAN] * n
    dx: list[float] = []

    s_pdm = sum(plus_dm[1:period + 1])
    s_mdm = sum(minus_dm[1:period + 1])
    s_tr = sum(tr[1:period + 1])

    for i in range(period, n):
        if i > period:
            s_pdm = s_pdm - s_pdm / period + plus_dm[i]
            s_mdm = s_mdm - s_mdm / period + minus_dm[i]
            s_tr = s_tr - s_tr / period + tr[i]
        pdi = 100.0 * s_pdm / s_tr if s_tr else 0.0
        mdi = 100.0 * s_mdm / s_tr if s_tr else 0.0
        plus_di[i] = pdi
        minus_di[i] = mdi
        di_sum = pdi + mdi
        dx.append(100.0 * abs(pdi - mdi) / di_sum if di_sum else 0.0)

    adx = [NAN] * n
    prev = sum(dx[:period]) / period
    adx[2 * period - 1] = prev
    for j in range(period, len(dx)):
        prev = (prev * (period - 1) + dx[j]) / period
        adx[period + j] = prev
    return adx, plus_di, minus_di


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_bollinger(
    candles: list[Candle],
    period: int = 20,
    std_dev: float = 2.0,
) -> tuple[list[float], list[float], list[float]]:
    """Bollinger Bands of closes as ``(upper, middle, lower)``.

    Uses the population standard deviation of each window.
    """
    if len(candles) < period:
        raise ValueError(
            f"Need at least {period} candles for Bollinger({period}), "
            f"got {len(candles)}"
        )
    closes = [c.close for c in candles]
    n = len(closes)
    upper = [NAN] * n
    middle = [NAN] * n
    lower = [NAN] * n
    for i in range(period - 1, n):
        window = closes[i - period + 1:i + 1]
        sma = sum(window) / period
        sigma = math.sqrt(sum((x - sma) ** 2 for x in window) / period)
        middle[i] = sma
        upper[i] = sma + std_dev * sigma
        lower[i] = sma - std_dev * sigma
    return upper, middle, lower


# ── MACD ─────────────────────────────────────────────────────────────────


def calculate_macd(
    candles: list[Candle],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> tuple[list[float], list[float]]:
    """MACD line and signal line, both NaN-padded to the input length.

    Requires at least ``slow_period + signal_period − 1`` candles so that
    the signal line has at least one defined value.
    """
    needed = slow_period + signal_period - 1
    if len(candles) < needed:
        raise ValueError(
            f"Need at least {needed} candles for MACD({fast_period},"
            f"{slow_period},{signal_period}), got {len(candles)}"
        )
    closes = [c.close for c in candles]
    fast = ema_of(closes, fast_period)
    slow = ema_of(closes, slow_period)
    macd = [f - s for f, s in zip(fast, slow)]

    start = slow_period - 1
    signal_tail = ema_of(macd[start:], signal_period)
    signal = [NAN] * start + signal_tail
    return macd, signal


# ── Parabolic SAR ────────────────────────────────────────────────────────


def calculate_psar(
    candles: list[Candle],
    step: float = 0.02,
    maximum: float = 0.2,
) -> list[float]:
    """Parabolic Stop-and-Reverse, one value per candle.

    The first candle seeds an uptrend with SAR at its low.
    """
    if len(candles) < 2:
        raise ValueError(f"Need at least 2 candles for PSAR, got {len(candles)}")

    rising = True
    sar = candles[0].low
    extreme = candles[0].high
    af = step
    out = [sar]

    for i in range(1, len(candles)):
        cur = candles[i]
        prev = candles[i - 1]
        sar = sar + af * (extreme - sar)

        if rising:
            sar = min(sar, prev.low, candles[i - 2].low if i > 1 else prev.low)
            if cur.low < sar:
                rising = False
                sar = extreme
                extreme = cur.low
                af = step
            elif cur.high > extreme:
                extreme = cur.high
                af = min(af + step, maximum)
        else:
            sar = max(sar, prev.high, candles[i - 2].high if i > 1 else prev.high)
            if cur.high > sar:
                rising = True
                sar = extreme
                extreme = cur.high
                af = step
            elif cur.low < extreme:
                extreme = cur.low
                af = min(af + step, maximum)
        out.append(sar)
    return out
