"""Post-exit cooldown — blocks immediate same-direction re-entry."""

import logging
from dataclasses import dataclass
from typing import Optional

from tradesim.strategy.models import Direction

logger = logging.getLogger("tradesim.engine")


@dataclass(frozen=True)
class CooldownState:
    until: int  # epoch ms; entries before this are vetoed
    direction: Direction


class Cooldown:
    """Tracks the cooldown window opened by the last closed trade.

    Args:
        cooldown_candles: Length of the window in candles.
        timeframe_ms: Duration of one candle in milliseconds.
        enabled: When ``False``, nothing is ever recorded or vetoed.
    """

    def __init__(self, cooldown_candles: int, timeframe_ms: int, enabled: bool = True) -> None:
        self._candles = cooldown_candles
        self._timeframe_ms = timeframe_ms
        self._enabled = enabled and cooldown_candles > 0
        self._state: Optional[CooldownState] = None

    @property
    def state(self) -> Optional[CooldownState]:
        return self._state

    def record_exit(self, exit_time: int, direction: Direction) -> None:
        """Open a window after a trade in *direction* closed at *exit_time*."""
        if not self._enabled:
            return
        self._state = CooldownState(
            until=exit_time + self._candles * self._timeframe_ms,
            direction=direction,
        )

    def expire(self, candle_time: int) -> None:
        """Clear the window once a candle at or after ``until`` is processed."""
        if self._state is not None and candle_time >= self._state.until:
            self._state = None

    def blocks(self, candle_time: int, direction: Direction) -> bool:
        """``True`` if an entry in *direction* at *candle_time* is vetoed."""
        state = self._state
        if state is None or direction != state.direction:
            return False
        if candle_time < state.until:
            logger.debug("Cooldown veto for %s until %d", direction.value, state.until)
            return True
        return False
