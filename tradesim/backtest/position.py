"""Simulated position lifecycle — fills, on-close management, exits.

A position goes through two checks per candle:

    1. ``check_fills`` walks the intra-candle price path and reports the
       first stop or target touched (partial take-profits fill on the way).
    2. ``manage_on_close`` runs for survivors: invalidation, agent exits,
       stop ratcheting and the trailing take-profit.

Either may return an ``ExitEvent``; ``close`` turns it into a
``SimulatedTrade`` with fee-adjusted PnL.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Mapping, Optional

from tradesim.models.strategy_config import StrategyConfig
from tradesim.risk.invalidation import invalidation_due, momentum_fading, signal_invalidates
from tradesim.risk.position_sizer import calculate_fees, calculate_net_pnl
from tradesim.risk.sl_tp import PartialLevel, calculate_initial_targets
from tradesim.risk.trailing_stop import (
    StopCandidate,
    breakeven_stop,
    profit_secure_stop,
    select_best_stop,
)
from tradesim.strategy.base import AgentProtocol
from tradesim.strategy.models import Candle, Direction, StopLossReason

logger = logging.getLogger("tradesim.position")

# Remaining size at or below this counts as fully closed.
SIZE_EPSILON = 1e-12

EXIT_STOP_LOSS = "Stop Loss Hit"
EXIT_TRAILING_STOP = "Trailing Stop Hit"
EXIT_TAKE_PROFIT = "Take Profit Hit"
EXIT_INVALIDATED = "Trade Invalidated"
EXIT_MOMENTUM_FADING = "Momentum Fading"
EXIT_END_OF_BACKTEST = "End of backtest"


def ohlc_path(candle: Candle) -> list[float]:
    """Assumed intra-candle price path.

    Bearish candles are taken to visit the high before the low; bullish
    and doji candles the low before the high.
    """
    if candle.is_bearish:
        return [candle.open, candle.high, candle.low, candle.close]
    return [candle.open, candle.low, candle.high, candle.close]


PathBuilder = Callable[[Candle], list[float]]


@dataclass
class SimulatedPosition:
    """Mutable state of the single open position in a run."""

    id: int
    direction: Direction
    entry_price: float
    entry_time: int
    size: float
    stop_loss_price: float
    take_profit_price: float
    active_stop_reason: StopLossReason = StopLossReason.AGENT_LOGIC
    entry_rationale: list[str] = field(default_factory=list)
    initial_size: float = 0.0
    initial_stop_loss: float = 0.0
    candles_since_entry: int = 0
    peak_price: float = 0.0
    has_been_profitable: bool = False
    is_breakeven_set: bool = False
    profit_lock_tier: int = 0
    invalidation_checked: bool = False
    pending_partials: list[PartialLevel] = field(default_factory=list)
    realized_pnl: float = 0.0
    realized_fees: float = 0.0
    partial_fills: list[dict] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.initial_size = self.initial_size or self.size
        self.initial_stop_loss = self.initial_stop_loss or self.stop_loss_price
        self.peak_price = self.peak_price or self.entry_price

    @property
    def is_long(self) -> bool:
        return self.direction == Direction.LONG

    def unrealized_pnl(self, price: float, fee_rate: float) -> float:
        """Net PnL if the remaining size were closed at *price*, plus partials."""
        return self.realized_pnl + calculate_net_pnl(
            self.entry_price, price, self.size, self.direction, fee_rate,
        )


@dataclass(frozen=True)
class SimulatedTrade:
    """A closed trade in the backtest ledger."""

    id: int
    pair: str
    direction: Direction
    entry_price: float
    exit_price: float
    entry_time: int
    exit_time: int
    size: float
    invested_amount: float
    pnl: float
    fees: float
    exit_reason: str
    stop_reason: StopLossReason
    entry_rationale: list[str] = field(default_factory=list)
    exit_rationale: list[str] = field(default_factory=list)
    partial_fills: list[dict] = field(default_factory=list)

    @property
    def duration_ms(self) -> int:
        return self.exit_time - self.entry_time

    def to_dict(self) -> dict:
        d = asdict(self)
        return {
            "id": d["id"],
            "pair": d["pair"],
            "direction": self.direction.value,
            "entryPrice": d["entry_price"],
            "exitPrice": d["exit_price"],
            "entryTime": d["entry_time"],
            "exitTime": d["exit_time"],
            "size": d["size"],
            "investedAmount": d["invested_amount"],
            "pnl": d["pnl"],
            "fees": d["fees"],
            "exitReason": d["exit_reason"],
            "stopReason": self.stop_reason.value,
            "entryReason": " ".join(self.entry_rationale),
            "exitRationale": d["exit_rationale"],
            "partialFills": d["partial_fills"],
        }


@dataclass(frozen=True)
class ExitEvent:
    """Decision to close the whole remaining position."""
    price: float
    reason: str
    rationale: list[str] = field(default_factory=list)


class PositionManager:
    """Applies fills and candle-close management to open positions.

    Args:
        config: The run's strategy configuration.
        params: Resolved agent parameters.
        agent: Agent consulted for invalidation and ``manage`` decisions.
        path_builder: Intra-candle path heuristic; defaults to :func:`ohlc_path`.
    """

    def __init__(
        self,
        config: StrategyConfig,
        params: Mapping[str, Any],
        agent: AgentProtocol,
        path_builder: PathBuilder = ohlc_path,
    ) -> None:
        self._config = config
        self._params = params
        self._agent = agent
        self._path = path_builder

    # ── Intra-candle fills ───────────────────────────────────────────────

    def check_fills(self, position: SimulatedPosition, candle: Candle) -> Optional[ExitEvent]:
        """Walk the candle path; stop, then partials, then target per point."""
        for point in self._path(candle):
            if self._stop_reached(position, point):
                label = (
                    EXIT_TRAILING_STOP
                    if position.active_stop_reason.is_trailing
                    else EXIT_STOP_LOSS
                )
                return ExitEvent(
                    position.stop_loss_price, label,
                    [f"Stop ({position.active_stop_reason.value}) touched at {point}"],
                )
            if self._fill_partials(position, point, candle.time):
                last = position.partial_fills[-1]
                return ExitEvent(last["price"], EXIT_TAKE_PROFIT, ["Final partial take-profit filled"])
            if self._target_reached(position, point):
                return ExitEvent(
                    position.take_profit_price, EXIT_TAKE_PROFIT,
                    [f"Target touched at {point}"],
                )
        return None

    @staticmethod
    def _stop_reached(position: SimulatedPosition, price: float) -> bool:
        if position.is_long:
            return price <= position.stop_loss_price
        return price >= position.stop_loss_price

    @staticmethod
    def _target_reached(position: SimulatedPosition, price: float) -> bool:
        if position.is_long:
            return price >= position.take_profit_price
        return price <= position.take_profit_price

    def _fill_partials(self, position: SimulatedPosition, price: float, time: int) -> bool:
        """Fill pending partial levels crossed by *price*.

        Returns ``True`` if the fills left no size open.
        """
        fee_rate = self._config.fee_rate
        remaining: list[PartialLevel] = []
        for level in position.pending_partials:
            crossed = price >= level.price if position.is_long else price <= level.price
            if not crossed:
                remaining.append(level)
                continue
            qty = min(position.initial_size * level.close_fraction, position.size)
            pnl = calculate_net_pnl(position.entry_price, level.price, qty, position.direction, fee_rate)
            fees = calculate_fees(position.entry_price, level.price, qty, fee_rate)
            position.size -= qty
            position.realized_pnl += pnl
            position.realized_fees += fees
            position.partial_fills.append(
                {"price": level.price, "size": qty, "pnl": pnl, "time": time}
            )
            logger.debug("Position %d partial fill %.6f @ %.6f", position.id, qty, level.price)
        position.pending_partials = remaining
        return position.size <= SIZE_EPSILON

    # ── Candle-close management ──────────────────────────────────────────

    def manage_on_close(
        self,
        position: SimulatedPosition,
        history: list[Candle],
    ) -> Optional[ExitEvent]:
        """Update *position* at the close of ``history[-1]``.

        Returns an ``ExitEvent`` if the position should close at the close
        price, else ``None`` after ratcheting the stop and target.
        """
        candle = history[-1]
        close = candle.close
        direction = position.direction
        params = self._params

        position.candles_since_entry += 1
        if position.is_long:
            position.peak_price = max(position.peak_price, candle.high)
            favorable = candle.high
        else:
            position.peak_price = min(position.peak_price, candle.low)
            favorable = candle.low
        if (favorable - position.entry_price) * direction.sign > 0:
            position.has_been_profitable = True
        in_profit = (close - position.entry_price) * direction.sign > 0

        if self._config.invalidation_check_enabled:
            if not in_profit:
                if invalidation_due(
                    position.candles_since_entry,
                    position.has_been_profitable,
                    position.invalidation_checked,
                    params["invalidation_candle_limit"],
                ):
                    position.invalidation_checked = True
                    signal = self._agent.signal(history, params)
                    if signal_invalidates(signal, direction):
                        return ExitEvent(close, EXIT_INVALIDATED, list(signal.rationale))
            else:
                fade = momentum_fading(history, direction, params)
                if fade is not None:
                    return ExitEvent(close, EXIT_MOMENTUM_FADING, [fade])

        management = self._agent.manage(position, history, close, params)
        if management.close_position:
            reason = "Agent Exit: " + " ".join(management.rationale)
            return ExitEvent(close, reason, list(management.rationale))

        self._ratchet_stop(position, favorable, close, management.new_stop_loss)

        # An agent target must still lie beyond the close
        new_tp = management.new_take_profit
        if new_tp is not None and (new_tp - close) * direction.sign > 0:
            position.take_profit_price = new_tp

        if self._config.trailing_take_profit_enabled and in_profit:
            targets = calculate_initial_targets(
                history, close, direction, self._config.timeframe, params,
            )
            if (targets.take_profit - position.take_profit_price) * direction.sign > 0:
                position.take_profit_price = targets.take_profit
        return None

    def _ratchet_stop(
        self,
        position: SimulatedPosition,
        favorable: float,
        close: float,
        agent_stop: Optional[float],
    ) -> None:
        fee_rate = self._config.fee_rate
        candidates: list[Optional[StopCandidate]] = [
            breakeven_stop(
                position.entry_price, position.direction, favorable, fee_rate,
                position.is_breakeven_set,
            ),
        ]
        if self._config.universal_profit_trail_enabled:
            candidates.append(profit_secure_stop(
                position.entry_price, position.direction, favorable, fee_rate,
                position.profit_lock_tier,
            ))
        if agent_stop is not None:
            candidates.append(StopCandidate(agent_stop, StopLossReason.AGENT_TRAIL))

        best = select_best_stop(
            position.direction, position.stop_loss_price, close, candidates,
        )
        if best is None:
            return
        logger.debug(
            "Position %d stop %.6f -> %.6f (%s)",
            position.id, position.stop_loss_price, best.price, best.reason.value,
        )
        position.stop_loss_price = best.price
        position.active_stop_reason = best.reason
        if best.reason in (StopLossReason.BREAKEVEN, StopLossReason.PROFIT_SECURE):
            position.is_breakeven_set = True
            position.profit_lock_tier = max(position.profit_lock_tier, best.lock_tier or 0)

    # ── Exit ─────────────────────────────────────────────────────────────

    def close(
        self,
        position: SimulatedPosition,
        exit_price: float,
        exit_time: int,
        reason: str,
        rationale: Optional[list[str]] = None,
    ) -> SimulatedTrade:
        """Close the remaining size at *exit_price* and build the ledger entry."""
        fee_rate = self._config.fee_rate
        pnl = position.realized_pnl + calculate_net_pnl(
            position.entry_price, exit_price, position.size, position.direction, fee_rate,
        )
        fees = position.realized_fees + calculate_fees(
            position.entry_price, exit_price, position.size, fee_rate,
        )
        trade = SimulatedTrade(
            id=position.id,
            pair=self._config.pair,
            direction=position.direction,
            entry_price=position.entry_price,
            exit_price=exit_price,
            entry_time=position.entry_time,
            exit_time=exit_time,
            size=position.initial_size,
            invested_amount=self._config.investment_amount,
            pnl=pnl,
            fees=fees,
            exit_reason=reason,
            stop_reason=position.active_stop_reason,
            entry_rationale=list(position.entry_rationale),
            exit_rationale=list(rationale or []),
            partial_fills=list(position.partial_fills),
        )
        logger.debug(
            "Closed #%d %s @ %.6f (%s) pnl=%.4f",
            trade.id, trade.direction.value, exit_price, reason, pnl,
        )
        return trade
