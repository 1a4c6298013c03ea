"""Backtest statistics — pure functions for trade-series analysis."""

import math
from dataclasses import dataclass, field

import numpy as np

from tradesim.backtest.position import SimulatedTrade
from tradesim.risk.drawdown import DrawdownTracker


@dataclass(frozen=True)
class BacktestResult:
    """Performance report for one backtest run."""

    trades: list[SimulatedTrade] = field(default_factory=list)
    total_pnl: float = 0.0
    gross_pnl: float = 0.0
    total_fees: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    break_evens: int = 0
    max_drawdown: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    average_trade_duration: str = "N/A"
    equity_curve: list[float] = field(default_factory=list)
    final_equity: float = 0.0

    def to_dict(self) -> dict:
        """Wire form.  An infinite profit factor (no losses) becomes ``None``."""
        return {
            "trades": [t.to_dict() for t in self.trades],
            "totalPnl": self.total_pnl,
            "grossPnl": self.gross_pnl,
            "totalFees": self.total_fees,
            "winRate": self.win_rate,
            "totalTrades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "breakEvens": self.break_evens,
            "maxDrawdown": self.max_drawdown,
            "profitFactor": None if math.isinf(self.profit_factor) else self.profit_factor,
            "sharpeRatio": self.sharpe_ratio,
            "averageTradeDuration": self.average_trade_duration,
            "equityCurve": list(self.equity_curve),
            "finalEquity": self.final_equity,
        }


def calculate_stats(
    trades: list[SimulatedTrade],
    equity_curve: list[float],
    starting_capital: float,
) -> BacktestResult:
    """Compute summary statistics from a closed-trade ledger.

    Returns:
        ``BacktestResult``.  With no trades every metric is zero, the
        profit factor included, and the duration is ``"N/A"``.
    """
    if not trades:
        return BacktestResult(
            equity_curve=list(equity_curve),
            final_equity=equity_curve[-1] if equity_curve else starting_capital,
        )

    pnls = [t.pnl for t in trades]
    total = len(pnls)
    wins = sum(1 for p in pnls if p > 0)
    losses = sum(1 for p in pnls if p < 0)
    break_evens = total - wins - losses

    gross_profit = sum(p for p in pnls if p > 0)
    gross_loss = abs(sum(p for p in pnls if p < 0))
    profit_factor = gross_profit / gross_loss if gross_loss > 0 else math.inf

    total_fees = sum(t.fees for t in trades)
    total_pnl = sum(pnls)

    avg_duration = sum(t.duration_ms for t in trades) / total

    return BacktestResult(
        trades=list(trades),
        total_pnl=total_pnl,
        gross_pnl=total_pnl + total_fees,
        total_fees=total_fees,
        win_rate=wins / total * 100.0,
        total_trades=total,
        wins=wins,
        losses=losses,
        break_evens=break_evens,
        max_drawdown=_max_drawdown(equity_curve),
        profit_factor=profit_factor,
        sharpe_ratio=_sharpe([t.pnl / t.invested_amount for t in trades]),
        average_trade_duration=format_duration(avg_duration),
        equity_curve=list(equity_curve),
        final_equity=equity_curve[-1] if equity_curve else starting_capital + total_pnl,
    )


def format_duration(ms: float) -> str:
    """Render a duration as its two largest units: ``"2d 3h"``, ``"1h 5m"``,
    ``"3m 20s"`` or ``"45s"``."""
    if ms < 0:
        return "0s"
    total_seconds = int(ms // 1000)
    days, rem = divmod(total_seconds, 86_400)
    hours, rem = divmod(rem, 3_600)
    minutes, seconds = divmod(rem, 60)
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


# ── Helpers ──────────────────────────────────────────────────────────────


def _sharpe(returns: list[float]) -> float:
    """Annualised Sharpe ratio from per-trade returns.

    Uses population standard deviation.  Returns 0.0 when the series has
    fewer than 2 observations or zero variance.
    """
    if len(returns) < 2:
        return 0.0
    arr = np.asarray(returns, dtype=float)
    std = float(arr.std())
    if std == 0:
        return 0.0
    return float(arr.mean() / std * math.sqrt(252))


def _max_drawdown(equity_curve: list[float]) -> float:
    """Largest peak-to-trough decline of *equity_curve*, as a positive number."""
    tracker = DrawdownTracker()
    for equity in equity_curve:
        tracker.update(equity)
    return tracker.max_drawdown
