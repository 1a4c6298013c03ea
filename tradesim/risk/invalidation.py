"""Early-exit checks for open positions, evaluated on candle close.

Two independent tests:
  - Loss minimisation: a position that never went green within
    ``invalidation_candle_limit`` candles is re-checked once against the
    agent; HOLD or an opposite signal invalidates it.
  - Momentum fade: a winning position whose trend indicators have flipped
    is closed before the move gives back its profit.
"""

import logging
from typing import Any, Mapping, Optional

from tradesim.strategy.indicators import calculate_adx, calculate_ema, calculate_rsi, last_defined
from tradesim.strategy.models import AgentSignal, Candle, Direction, SignalAction

logger = logging.getLogger("tradesim.risk")

FADE_FAST_EMA = 9
FADE_SLOW_EMA = 21
FADE_RSI_LONG = 45
FADE_RSI_SHORT = 55


def invalidation_due(
    candles_since_entry: int,
    has_been_profitable: bool,
    already_checked: bool,
    candle_limit: int,
) -> bool:
    """``True`` when the one-shot loss-minimisation check should run now."""
    return (
        not already_checked
        and not has_been_profitable
        and candles_since_entry >= candle_limit
    )


def signal_invalidates(signal: AgentSignal, direction: Direction) -> bool:
    """A fresh signal invalidates *direction* unless it still agrees with it."""
    if signal.action == SignalAction.HOLD:
        return True
    return signal.action.to_direction() != direction


def momentum_fading(
    history: list[Candle],
    direction: Direction,
    params: Mapping[str, Any],
) -> Optional[str]:
    """Return a reason string if the trend has turned against *direction*.

    Inconclusive indicators (short history) never trigger an exit.
    """
    try:
        fast = last_defined(calculate_ema(history, FADE_FAST_EMA))
        slow = last_defined(calculate_ema(history, FADE_SLOW_EMA))
        rsi = last_defined(calculate_rsi(history, params["rsi_period"]))
        _, pdi_series, mdi_series = calculate_adx(history, params["adx_period"])
        pdi = last_defined(pdi_series)
        mdi = last_defined(mdi_series)
    except ValueError as exc:
        logger.debug("Momentum check inconclusive: %s", exc)
        return None

    if direction == Direction.LONG:
        if fast < slow and rsi < FADE_RSI_LONG and mdi > pdi:
            return f"EMA{FADE_FAST_EMA} < EMA{FADE_SLOW_EMA}, RSI {rsi:.1f}, -DI > +DI"
    else:
        if fast > slow and rsi > FADE_RSI_SHORT and pdi > mdi:
            return f"EMA{FADE_FAST_EMA} > EMA{FADE_SLOW_EMA}, RSI {rsi:.1f}, +DI > -DI"
    return None
