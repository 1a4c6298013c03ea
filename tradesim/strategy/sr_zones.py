"""Support/resistance detection from swing pivots — pure functions."""

import math

from tradesim.strategy.models import Candle, SRLevels


def _find_pivots(candles: list[Candle], lookback: int) -> list[tuple[float, str, int]]:
    """Identify swing pivots as ``(price, kind, index)`` tuples.

    A pivot high is a candle whose high is the highest of the
    ``2 × lookback + 1`` window centred on it (likewise for lows).  After a
    pivot is found the scan skips *lookback* candles so the same swing is
    not reported twice.
    """
    pivots: list[tuple[float, str, int]] = []
    i = lookback
    while i < len(candles) - lookback:
        window = candles[i - lookback:i + lookback + 1]
        if candles[i].high == max(c.high for c in window):
            pivots.append((candles[i].high, "resistance", i))
            i += lookback
        elif candles[i].low == min(c.low for c in window):
            pivots.append((candles[i].low, "support", i))
            i += lookback
        i += 1
    return pivots


def detect_sr_levels(
    candles: list[Candle],
    lookback: int = 10,
    threshold_pct: float = 0.0075,
) -> SRLevels:
    """Cluster swing pivots into support and resistance levels.

    Pivots of the same kind within *threshold_pct* (relative) of an
    existing level merge into it; the level price becomes the
    score-weighted average.  Each pivot scores ``1 + ln(volume + 1)`` so
    high-volume turning points dominate.

    Args:
        candles: Price history, oldest first.
        lookback: Half-window for pivot confirmation.
        threshold_pct: Relative clustering distance (0.0075 = 0.75 %).

    Returns:
        ``SRLevels`` with each list sorted by significance, strongest first.
        Empty lists when the history is shorter than ``2 × lookback + 1``.
    """
    if len(candles) < lookback * 2 + 1:
        return SRLevels()

    levels: list[dict] = []
    for price, kind, index in _find_pivots(candles, lookback):
        score = 1 + math.log(candles[index].volume + 1)
        for level in levels:
            if level["kind"] == kind and abs(level["price"] - price) / price < threshold_pct:
                level["price"] = (level["price"] * level["score"] + price * score) / (level["score"] + score)
                level["score"] += score
                break
        else:
            levels.append({"price": price, "score": score, "kind": kind})

    ranked = sorted(levels, key=lambda lv: lv["score"], reverse=True)
    return SRLevels(
        supports=[lv["price"] for lv in ranked if lv["kind"] == "support"],
        resistances=[lv["price"] for lv in ranked if lv["kind"] == "resistance"],
    )
