"""Candle aggregation — rebuckets base candles into a coarser timeframe."""

from typing import Optional

from tradesim.strategy.models import Candle

_UNIT_MS = {
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
    "w": 604_800_000,
}

BASE_TIMEFRAME_MS = 60_000


def timeframe_to_ms(timeframe: str) -> int:
    """Duration of *timeframe* (e.g. ``"15m"``, ``"4h"``) in milliseconds.

    Returns 0 for anything unparsable.
    """
    if not timeframe:
        return 0
    unit = timeframe[-1]
    try:
        value = int(timeframe[:-1])
    except ValueError:
        return 0
    return value * _UNIT_MS.get(unit, 0)


def aggregate_candles(candles: list[Candle], timeframe: str) -> list[Candle]:
    """Aggregate *candles* into buckets of *timeframe*.

    Buckets start at ``floor(time / d) × d``.  Open is the first candle's
    open, close the last candle's close, high/low the extremes and volume
    the sum.  The trailing partial bucket is kept.  Timeframes at or below
    one minute return the input unchanged.
    """
    duration = timeframe_to_ms(timeframe)
    if duration <= BASE_TIMEFRAME_MS:
        return candles

    aggregated: list[Candle] = []
    bucket: Optional[dict] = None
    for candle in candles:
        start = (candle.time // duration) * duration
        if bucket is None or bucket["time"] != start:
            if bucket is not None:
                aggregated.append(Candle(**bucket))
            bucket = {
                "time": start,
                "open": candle.open,
                "high": candle.high,
                "low": candle.low,
                "close": candle.close,
                "volume": candle.volume,
                "is_final": True,
            }
        else:
            bucket["high"] = max(bucket["high"], candle.high)
            bucket["low"] = min(bucket["low"], candle.low)
            bucket["close"] = candle.close
            bucket["volume"] += candle.volume
    if bucket is not None:
        aggregated.append(Candle(**bucket))
    return aggregated
