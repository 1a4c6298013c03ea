"""Backtest engine — replays historical candles through an agent and risk.

Iterates candle data chronologically, evaluating signals and simulating
trades with virtual equity.  No real orders are placed.
"""

import logging
from typing import Optional

from tradesim.backtest.aggregator import aggregate_candles, timeframe_to_ms
from tradesim.backtest.cooldown import Cooldown
from tradesim.backtest.position import (
    EXIT_END_OF_BACKTEST,
    PathBuilder,
    PositionManager,
    SimulatedPosition,
    SimulatedTrade,
    ohlc_path,
)
from tradesim.backtest.stats import BacktestResult, calculate_stats
from tradesim.config import Settings
from tradesim.models.strategy_config import StrategyConfig
from tradesim.risk.position_sizer import calculate_size, validate_trade_profitability
from tradesim.risk.sl_tp import (
    apply_hard_cap,
    build_partial_levels,
    calculate_initial_targets,
    calculate_locked_take_profit,
)
from tradesim.strategy.base import AgentProtocol
from tradesim.strategy.htf_filter import htf_trend_allows
from tradesim.strategy.models import Candle
from tradesim.strategy.params import effective_params
from tradesim.strategy.registry import get_agent

logger = logging.getLogger("tradesim.engine")


class BacktestEngine:
    """Simulates one strategy configuration on historical candles.

    Args:
        settings: Application settings (starting capital, warmup length).
        path_builder: Intra-candle path heuristic used for fills.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        path_builder: PathBuilder = ohlc_path,
    ) -> None:
        self._settings = settings or Settings()
        self._path_builder = path_builder

    # ── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        candles: list[Candle],
        config: StrategyConfig,
        htf_candles: Optional[list[Candle]] = None,
        agent: Optional[AgentProtocol] = None,
    ) -> BacktestResult:
        """Execute a full backtest.

        Args:
            candles: Base candles, oldest first; aggregated to
                ``config.timeframe`` before replay.
            config: Strategy configuration for the run.
            htf_candles: Optional higher-timeframe candles for trend
                confirmation.
            agent: Agent instance; looked up from ``config.agent`` if omitted.

        Returns:
            ``BacktestResult`` — zeroed when fewer than ``warmup_candles``
            aggregated candles are available.
        """
        capital = self._settings.starting_capital
        warmup = self._settings.warmup_candles
        bars = aggregate_candles(candles, config.timeframe)
        if len(bars) < warmup:
            logger.info(
                "Insufficient data: %d candles after aggregation, need %d",
                len(bars), warmup,
            )
            return calculate_stats([], [], capital)

        agent = agent or get_agent(config.agent)
        params = effective_params(config.timeframe, config.agent_params)
        manager = PositionManager(config, params, agent, self._path_builder)
        bar_ms = timeframe_to_ms(config.timeframe)
        cooldown = Cooldown(
            config.cooldown_candles,
            bar_ms,
            enabled=config.cooldown_enabled,
        )
        htf = htf_candles or []
        htf_ms = _bar_spacing(htf)
        htf_end = 0

        equity = capital
        position: Optional[SimulatedPosition] = None
        trades: list[SimulatedTrade] = []
        equity_curve: list[float] = []

        for i in range(warmup, len(bars)):
            candle = bars[i]
            history = bars[: i + 1]
            # only HTF candles that have closed by the end of this candle
            while htf_end < len(htf) and htf[htf_end].time + htf_ms <= candle.time + bar_ms:
                htf_end += 1
            htf_history = htf[:htf_end] if htf else None

            cooldown.expire(candle.time)
            traded_this_candle = False

            # 1 — Intra-candle fills, then candle-close management
            if position is not None:
                exit_event = manager.check_fills(position, candle)
                if exit_event is None:
                    exit_event = manager.manage_on_close(position, history)
                if exit_event is not None:
                    trade = manager.close(
                        position, exit_event.price, candle.time,
                        exit_event.reason, exit_event.rationale,
                    )
                    trades.append(trade)
                    equity += trade.pnl
                    cooldown.record_exit(candle.time, position.direction)
                    position = None
                    traded_this_candle = True

            # 2 — New entry at the close
            if position is None and not traded_this_candle:
                position = self._try_entry(
                    agent, config, params, cooldown,
                    history, htf_history, len(trades) + 1,
                )

            # 3 — Mark to market
            unrealized = position.unrealized_pnl(candle.close, config.fee_rate) if position else 0.0
            equity_curve.append(equity + unrealized)

        # Close any remaining position at last candle close
        if position is not None:
            last = bars[-1]
            trade = manager.close(position, last.close, last.time, EXIT_END_OF_BACKTEST)
            trades.append(trade)
            equity += trade.pnl
            equity_curve.append(equity)

        result = calculate_stats(trades, equity_curve, capital)
        logger.info(
            "Backtest %s %s [%s]: %d trades, pnl=%.2f, win_rate=%.1f%%",
            config.pair, config.timeframe, config.agent,
            result.total_trades, result.total_pnl, result.win_rate,
        )
        return result

    # ── Helpers ──────────────────────────────────────────────────────────

    def _try_entry(
        self,
        agent: AgentProtocol,
        config: StrategyConfig,
        params,
        cooldown: Cooldown,
        history: list[Candle],
        htf_history: Optional[list[Candle]],
        position_id: int,
    ) -> Optional[SimulatedPosition]:
        """Ask the agent for an entry and run it through every entry gate."""
        candle = history[-1]
        signal = agent.signal(history, params, htf_history)
        direction = signal.action.to_direction()
        if direction is None:
            return None

        rationale = list(signal.rationale)
        if config.htf_confirmation_enabled:
            allowed, reason = htf_trend_allows(
                direction, htf_history, params["htf_ema_period"], candle.close,
            )
            if not allowed:
                logger.debug("Entry vetoed at %d: %s", candle.time, reason)
                return None
            rationale.append(reason)

        if cooldown.blocks(candle.time, direction):
            return None

        entry_price = candle.close
        size = calculate_size(config.position_value, entry_price)
        targets = calculate_initial_targets(
            history, entry_price, direction, config.timeframe, params,
        )
        take_profit = targets.take_profit
        partials = targets.partial_levels
        if config.take_profit_locked and config.take_profit_value > 0:
            take_profit = calculate_locked_take_profit(
                entry_price, direction, size, config.investment_amount,
                config.take_profit_mode, config.take_profit_value,
            )
            partials = build_partial_levels(
                entry_price, take_profit, params.get("partial_tp_levels"),
            )

        stop_loss, stop_reason = apply_hard_cap(
            entry_price, targets.stop_loss, direction, size,
            config.investment_amount, config.max_stop_loss_pct,
        )

        valid, reason = validate_trade_profitability(
            entry_price, stop_loss, take_profit, config.fee_rate, config.min_rr_enabled,
        )
        if not valid:
            logger.debug("Entry vetoed at %d: %s", candle.time, reason)
            return None

        logger.debug(
            "Open #%d %s @ %.6f sl=%.6f tp=%.6f",
            position_id, direction.value, entry_price, stop_loss, take_profit,
        )
        return SimulatedPosition(
            id=position_id,
            direction=direction,
            entry_price=entry_price,
            entry_time=candle.time,
            size=size,
            stop_loss_price=stop_loss,
            take_profit_price=take_profit,
            active_stop_reason=stop_reason,
            entry_rationale=rationale,
            initial_stop_loss=targets.stop_loss,
            pending_partials=partials,
        )


def run_backtest(
    candles: list[Candle],
    config: StrategyConfig,
    htf_candles: Optional[list[Candle]] = None,
    settings: Optional[Settings] = None,
) -> BacktestResult:
    """Run a single backtest with default engine wiring."""
    return BacktestEngine(settings).run(candles, config, htf_candles)


def _bar_spacing(candles: list[Candle]) -> int:
    """Duration of one candle in ms, inferred from the first two opens."""
    if len(candles) < 2:
        return 0
    return candles[1].time - candles[0].time
