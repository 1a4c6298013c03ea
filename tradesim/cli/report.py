"""CLI report — prints backtest and optimization summaries to the console."""

from tradesim.backtest.optimizer import OptimizationResultItem
from tradesim.backtest.stats import BacktestResult


def _pf(value: float) -> str:
    return "inf" if value == float("inf") else f"{value:.2f}"


def print_report(result: BacktestResult, title: str = "Backtest") -> str:
    """Format and print a backtest result.

    Returns:
        The formatted string (also printed to stdout).
    """
    lines = [
        f"──────────────── {title} ────────────────",
        f"  Trades:          {result.total_trades} "
        f"({result.wins}W / {result.losses}L / {result.break_evens}BE)",
        f"  Win Rate:        {result.win_rate:.1f}%",
        f"  Net PnL:         ${result.total_pnl:,.2f}",
        f"  Fees:            ${result.total_fees:,.2f}",
        f"  Profit Factor:   {_pf(result.profit_factor)}",
        f"  Sharpe:          {result.sharpe_ratio:.2f}",
        f"  Max Drawdown:    ${result.max_drawdown:,.2f}",
        f"  Avg Duration:    {result.average_trade_duration}",
        f"  Final Equity:    ${result.final_equity:,.2f}",
        "─" * (34 + len(title)),
    ]
    output = "\n".join(lines)
    print(output)
    return output


def print_optimization(items: list[OptimizationResultItem], top: int = 10) -> str:
    """Format and print the best *top* optimization results."""
    lines = [f"──────────────── Optimization ({len(items)} traded) ────────────────"]
    for rank, item in enumerate(items[:top], start=1):
        params = ", ".join(f"{k}={v}" for k, v in item.params.items())
        r = item.result
        lines.append(
            f"  #{rank:<3} PF {_pf(r.profit_factor):>6}  PnL ${r.total_pnl:>10,.2f}  "
            f"trades {r.total_trades:>3}  | {params}"
        )
    if not items:
        lines.append("  No combination produced a trade.")
    output = "\n".join(lines)
    print(output)
    return output
