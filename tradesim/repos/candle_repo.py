"""Candle CSV loading — turns exported OHLCV files into ``Candle`` lists.

Expected columns: ``time, open, high, low, close`` and optionally
``volume``.  ``time`` may be epoch milliseconds or any timestamp string
pandas can parse (naive values are taken as UTC).
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from tradesim.strategy.models import Candle

logger = logging.getLogger("tradesim.repos.candles")

REQUIRED_COLUMNS = ["time", "open", "high", "low", "close"]

_EPOCH = pd.Timestamp(0, tz="UTC")


def _time_to_ms(col: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(col):
        return col.astype("int64")
    ts = pd.to_datetime(col, utc=True)
    return (ts - _EPOCH) // pd.Timedelta(milliseconds=1)


def frame_to_candles(df: pd.DataFrame) -> list[Candle]:
    """Convert an OHLCV frame to candles sorted by time.

    Duplicate timestamps keep the last row; rows with missing prices are
    dropped.

    Raises:
        ValueError: If a required column is missing.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Candle data is missing column(s): {', '.join(missing)}")
    if df.empty:
        return []

    df = df.copy()
    if "volume" not in df.columns:
        df["volume"] = 0.0

    before = len(df)
    df = df.dropna(subset=REQUIRED_COLUMNS)
    df["time"] = _time_to_ms(df["time"])
    df = df.drop_duplicates(subset="time", keep="last").sort_values("time")
    if len(df) != before:
        logger.warning("Dropped %d malformed or duplicate candle rows", before - len(df))

    return [
        Candle(
            time=int(row.time),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume) if pd.notna(row.volume) else 0.0,
        )
        for row in df.itertuples(index=False)
    ]


def load_candles(path: str | Path) -> list[Candle]:
    """Read a CSV file of candles."""
    df = pd.read_csv(path)
    candles = frame_to_candles(df)
    logger.info("Loaded %d candles from %s", len(candles), path)
    return candles
