"""Tests for backtest statistics and duration formatting."""

import math

import pytest

from tradesim.backtest.position import SimulatedTrade
from tradesim.backtest.stats import BacktestResult, calculate_stats, format_duration
from tradesim.strategy.models import Direction, StopLossReason


def _make_trade(pnl, entry_time=0, exit_time=3_600_000, fees=1.0, invested=1000.0):
    return SimulatedTrade(
        id=1, pair="ETH/USDT", direction=Direction.LONG,
        entry_price=100.0, exit_price=100.0 + pnl / 10.0,
        entry_time=entry_time, exit_time=exit_time,
        size=10.0, invested_amount=invested, pnl=pnl, fees=fees,
        exit_reason="Take Profit Hit", stop_reason=StopLossReason.AGENT_LOGIC,
    )


class TestFormatDuration:
    @pytest.mark.parametrize("ms,expected", [
        ((2 * 86_400 + 3 * 3_600) * 1000, "2d 3h"),
        ((3_600 + 5 * 60) * 1000, "1h 5m"),
        ((3 * 60 + 20) * 1000, "3m 20s"),
        (45_000, "45s"),
        (0, "0s"),
        (999, "0s"),
    ])
    def test_two_largest_units(self, ms, expected):
        assert format_duration(ms) == expected


class TestCalculateStats:
    def test_no_trades(self):
        result = calculate_stats([], [10_000.0, 10_000.0], 10_000.0)
        assert result.total_trades == 0
        assert result.win_rate == 0.0
        assert result.profit_factor == 0.0
        assert result.average_trade_duration == "N/A"
        assert result.final_equity == 10_000.0

    def test_counts_and_rates(self):
        trades = [_make_trade(50.0), _make_trade(-25.0), _make_trade(0.0), _make_trade(25.0)]
        result = calculate_stats(trades, [10_000.0, 10_050.0, 10_025.0, 10_050.0], 10_000.0)
        assert result.total_trades == 4
        assert (result.wins, result.losses, result.break_evens) == (2, 1, 1)
        assert result.win_rate == pytest.approx(50.0)
        assert result.total_pnl == pytest.approx(50.0)
        assert result.total_fees == pytest.approx(4.0)
        assert result.gross_pnl == pytest.approx(54.0)
        assert result.profit_factor == pytest.approx(75.0 / 25.0)
        assert result.max_drawdown == pytest.approx(25.0)
        assert result.average_trade_duration == "1h 0m"
        assert result.final_equity == 10_050.0

    def test_no_losses_is_infinite_profit_factor(self):
        result = calculate_stats([_make_trade(10.0)], [10_010.0], 10_000.0)
        assert math.isinf(result.profit_factor)
        assert result.to_dict()["profitFactor"] is None

    def test_sharpe_population_std(self):
        trades = [_make_trade(10.0), _make_trade(30.0)]
        result = calculate_stats(trades, [10_040.0], 10_000.0)
        # returns 0.01, 0.03 → mean 0.02, population std 0.01
        assert result.sharpe_ratio == pytest.approx(2.0 * math.sqrt(252))

    def test_sharpe_zero_for_single_trade(self):
        result = calculate_stats([_make_trade(10.0)], [10_010.0], 10_000.0)
        assert result.sharpe_ratio == 0.0

    def test_final_equity_without_curve(self):
        result = calculate_stats([_make_trade(10.0)], [], 10_000.0)
        assert result.final_equity == pytest.approx(10_010.0)

    def test_to_dict_wire_keys(self):
        d = calculate_stats([_make_trade(-5.0)], [9_995.0], 10_000.0).to_dict()
        for key in ("totalPnl", "winRate", "totalTrades", "breakEvens", "maxDrawdown",
                    "profitFactor", "sharpeRatio", "averageTradeDuration", "equityCurve",
                    "finalEquity", "grossPnl", "totalFees"):
            assert key in d
        assert d["trades"][0]["exitReason"] == "Take Profit Hit"

    def test_default_result_is_empty(self):
        assert BacktestResult().to_dict()["trades"] == []
