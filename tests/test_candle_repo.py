"""Tests for CSV candle loading."""

import pandas as pd
import pytest

from tradesim.repos.candle_repo import frame_to_candles, load_candles


class TestFrameToCandles:
    def test_epoch_ms_sorted_and_deduplicated(self):
        df = pd.DataFrame({
            "time": [120_000, 0, 60_000, 60_000],
            "open": [3.0, 1.0, 2.0, 2.5],
            "high": [3.5, 1.5, 2.5, 3.0],
            "low": [2.5, 0.5, 1.5, 2.0],
            "close": [3.2, 1.2, 2.2, 2.7],
            "volume": [30, 10, 20, 25],
        })
        candles = frame_to_candles(df)
        assert [c.time for c in candles] == [0, 60_000, 120_000]
        # duplicate timestamp keeps the last row
        assert candles[1].close == 2.7
        assert candles[1].volume == 25.0

    def test_timestamp_strings_parsed_as_utc(self):
        df = pd.DataFrame({
            "time": ["1970-01-01 00:01:00", "1970-01-01 00:02:00"],
            "open": [1.0, 2.0], "high": [1.0, 2.0],
            "low": [1.0, 2.0], "close": [1.0, 2.0],
        })
        candles = frame_to_candles(df)
        assert [c.time for c in candles] == [60_000, 120_000]
        assert candles[0].volume == 0.0

    def test_rows_with_missing_prices_dropped(self):
        df = pd.DataFrame({
            "time": [0, 60_000],
            "open": [1.0, None], "high": [1.0, 2.0],
            "low": [1.0, 2.0], "close": [1.0, 2.0],
        })
        assert len(frame_to_candles(df)) == 1

    def test_missing_column(self):
        df = pd.DataFrame({"time": [0], "open": [1.0], "high": [1.0], "low": [1.0]})
        with pytest.raises(ValueError, match="close"):
            frame_to_candles(df)

    def test_empty_frame(self):
        df = pd.DataFrame(columns=["time", "open", "high", "low", "close"])
        assert frame_to_candles(df) == []


class TestLoadCandles:
    def test_reads_csv(self, tmp_path):
        path = tmp_path / "candles.csv"
        path.write_text(
            "time,open,high,low,close,volume\n"
            "0,100,101,99,100.5,12\n"
            "60000,100.5,102,100,101.5,8\n"
        )
        candles = load_candles(path)
        assert len(candles) == 2
        assert candles[1].high == 102.0
        assert candles[0].is_final is True
