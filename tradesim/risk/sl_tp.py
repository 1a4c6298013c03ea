"""Stop-loss and take-profit calculation — pure math, no I/O.

Volatility approach (primary):
    Stop sits ATR × timeframe multiplier away from entry; the target is
    that distance times the timeframe's reward ratio.  A nearer S/R level
    in the profit direction pulls the target in.

Overrides applied at entry:
    Locked take-profit replaces the target with a fixed PnL goal, and the
    hard cap tightens any stop whose loss would exceed a share of the
    investment.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from tradesim.models.strategy_config import TP_FIXED, TP_PERCENT
from tradesim.strategy.indicators import calculate_atr
from tradesim.strategy.models import Candle, Direction, StopLossReason
from tradesim.strategy.sr_zones import detect_sr_levels

logger = logging.getLogger("tradesim.risk")

# timeframe -> (ATR multiplier for the stop, reward:risk for the target)
TIMEFRAME_ATR_CONFIG: dict[str, tuple[float, float]] = {
    "1m": (1.0, 1.5),
    "3m": (1.2, 1.5),
    "5m": (1.5, 1.8),
    "15m": (1.8, 2.0),
    "30m": (2.0, 2.0),
    "1h": (2.0, 2.2),
    "4h": (2.5, 2.5),
    "1d": (3.0, 3.0),
}
DEFAULT_TIMEFRAME = "5m"

FALLBACK_DISTANCE_PCT = 0.02
MIN_STOP_DISTANCE_PCT = 0.005
SR_TARGET_BUFFER_PCT = 0.001


@dataclass(frozen=True)
class PartialLevel:
    """A partial take-profit: close *close_fraction* of the size at *price*."""
    price: float
    close_fraction: float


@dataclass(frozen=True)
class TradeTargets:
    """Initial protective stop and profit target for a new position."""
    stop_loss: float
    take_profit: float
    partial_levels: list[PartialLevel] = field(default_factory=list)


def _volatility_distance(history: list[Candle], entry_price: float, atr_period: int) -> float:
    try:
        atr = calculate_atr(history, atr_period)
    except ValueError:
        atr = 0.0
    if atr <= 0:
        return entry_price * FALLBACK_DISTANCE_PCT
    return atr


def _sr_clamped_target(
    history: list[Candle],
    entry_price: float,
    target: float,
    direction: Direction,
    lookback: int,
) -> float:
    """Pull *target* in to the nearest S/R level lying strictly before it."""
    levels = detect_sr_levels(history, lookback)
    if direction == Direction.LONG:
        between = [r for r in levels.resistances if entry_price < r < target]
        if between:
            clamped = min(between) * (1 - SR_TARGET_BUFFER_PCT)
            if clamped > entry_price:
                return clamped
    else:
        between = [s for s in levels.supports if target < s < entry_price]
        if between:
            clamped = max(between) * (1 + SR_TARGET_BUFFER_PCT)
            if clamped < entry_price:
                return clamped
    return target


def build_partial_levels(
    entry_price: float,
    take_profit: float,
    levels: Any,
) -> list[PartialLevel]:
    """Turn ``(fraction_of_target_distance, close_fraction)`` pairs into prices.

    Raises:
        ValueError: If a fraction lies outside ``(0, 1)`` / ``(0, 1]``.
    """
    out: list[PartialLevel] = []
    for distance_fraction, close_fraction in levels or ():
        if not 0 < distance_fraction < 1:
            raise ValueError(
                f"partial distance fraction must be in (0, 1), got {distance_fraction}"
            )
        if not 0 < close_fraction <= 1:
            raise ValueError(
                f"partial close fraction must be in (0, 1], got {close_fraction}"
            )
        price = entry_price + (take_profit - entry_price) * distance_fraction
        out.append(PartialLevel(price=price, close_fraction=close_fraction))
    return sorted(out, key=lambda lvl: abs(lvl.price - entry_price))


def calculate_initial_targets(
    history: list[Candle],
    entry_price: float,
    direction: Direction,
    timeframe: str,
    params: Mapping[str, Any],
) -> TradeTargets:
    """Calculate the initial stop and target for an entry at *entry_price*.

    Logic:
        1. Volatility distance = ATR(``atr_period``) × timeframe multiplier,
           or 2 % of entry when ATR is unavailable.
        2. Stop distance is floored at 0.5 % of entry.
        3. Target = entry ± distance × timeframe reward ratio.
        4. With ``use_sr_targets``, the target is clamped to the nearest
           S/R level in between, buffered 0.1 % toward entry.

    Args:
        history: Candles up to and including the entry candle.
        entry_price: Intended fill price.
        direction: ``Direction.LONG`` or ``Direction.SHORT``.
        timeframe: Run timeframe, e.g. ``"15m"``; unknown → ``"5m"`` row.
        params: Resolved agent parameters.

    Returns:
        ``TradeTargets`` with stop, target and any partial levels.
    """
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")

    multiplier, reward_ratio = TIMEFRAME_ATR_CONFIG.get(
        timeframe, TIMEFRAME_ATR_CONFIG[DEFAULT_TIMEFRAME]
    )
    distance = _volatility_distance(history, entry_price, params["atr_period"]) * multiplier
    stop_distance = max(distance, entry_price * MIN_STOP_DISTANCE_PCT)

    sign = direction.sign
    stop_loss = entry_price - sign * stop_distance
    take_profit = entry_price + sign * distance * reward_ratio

    if params.get("use_sr_targets", False):
        take_profit = _sr_clamped_target(
            history, entry_price, take_profit, direction, params["sr_lookback"],
        )

    partials = build_partial_levels(
        entry_price, take_profit, params.get("partial_tp_levels"),
    )
    return TradeTargets(stop_loss=stop_loss, take_profit=take_profit, partial_levels=partials)


def calculate_locked_take_profit(
    entry_price: float,
    direction: Direction,
    size: float,
    investment_amount: float,
    mode: str,
    value: float,
) -> float:
    """Target that yields a fixed gross PnL.

    ``percent`` mode aims for ``investment × value / 100``; ``fixed`` mode
    aims for *value* in quote currency.
    """
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    if mode == TP_PERCENT:
        pnl = investment_amount * (value / 100.0)
    elif mode == TP_FIXED:
        pnl = value
    else:
        raise ValueError(f"take_profit_mode must be 'percent' or 'fixed', got '{mode}'")
    return entry_price + direction.sign * (pnl / size)


def apply_hard_cap(
    entry_price: float,
    stop_loss: float,
    direction: Direction,
    size: float,
    investment_amount: float,
    max_stop_loss_pct: float,
) -> tuple[float, StopLossReason]:
    """Tighten *stop_loss* so the loss stays within ``max_stop_loss_pct``.

    Returns:
        ``(stop, reason)`` — ``HARD_CAP`` when the stop was moved, else
        ``AGENT_LOGIC``.
    """
    if size <= 0:
        return stop_loss, StopLossReason.AGENT_LOGIC
    max_loss = investment_amount * (max_stop_loss_pct / 100.0)
    cap_stop = entry_price - direction.sign * (max_loss / size)
    riskier = stop_loss < cap_stop if direction == Direction.LONG else stop_loss > cap_stop
    if riskier:
        logger.debug("Stop %.6f exceeds hard cap; moved to %.6f", stop_loss, cap_stop)
        return cap_stop, StopLossReason.HARD_CAP
    return stop_loss, StopLossReason.AGENT_LOGIC
