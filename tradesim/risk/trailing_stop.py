"""Trailing stops — progressive, fee-aware stop management for open positions.

Rules (in multiples of the round-trip fee expressed as price):
  - At 3× fee profit → move the stop to entry ± 1× fee (breakeven).
  - At N× fee profit, N ≥ 4 → lock the stop at (N − 2)× fee, once per
    new integer N above the current tier.

Candidates from every source are reconciled by :func:`select_best_stop`,
which guarantees a stop never loosens.
"""

import math
from dataclasses import dataclass
from typing import Optional

from tradesim.risk.position_sizer import fee_in_price
from tradesim.strategy.models import Direction, StopLossReason

BREAKEVEN_FEE_MULTIPLE = 3
PROFIT_LOCK_MIN_MULTIPLE = 4
PROFIT_LOCK_GAP = 2


@dataclass(frozen=True)
class StopCandidate:
    """A proposed stop price and the tier that proposed it."""
    price: float
    reason: StopLossReason
    lock_tier: Optional[int] = None


def _fee_multiple(entry_price: float, price: float, direction: Direction, fee_rate: float) -> float:
    fee = fee_in_price(entry_price, fee_rate)
    if fee <= 0:
        return 0.0
    return (price - entry_price) * direction.sign / fee


def breakeven_stop(
    entry_price: float,
    direction: Direction,
    current_price: float,
    fee_rate: float,
    is_breakeven_set: bool,
) -> Optional[StopCandidate]:
    """Return a breakeven candidate once profit reaches 3× the round-trip fee.

    The stop lands one fee-in-price beyond entry so a stop-out still covers
    both fees.  Returns ``None`` if breakeven is already set.
    """
    if is_breakeven_set:
        return None
    if _fee_multiple(entry_price, current_price, direction, fee_rate) < BREAKEVEN_FEE_MULTIPLE:
        return None
    stop = entry_price + direction.sign * fee_in_price(entry_price, fee_rate)
    return StopCandidate(stop, StopLossReason.BREAKEVEN, BREAKEVEN_FEE_MULTIPLE)


def profit_secure_stop(
    entry_price: float,
    direction: Direction,
    current_price: float,
    fee_rate: float,
    profit_lock_tier: int,
) -> Optional[StopCandidate]:
    """Return an (N − 2)× fee lock once profit reaches a new integer N ≥ 4."""
    multiple = _fee_multiple(entry_price, current_price, direction, fee_rate)
    if multiple < PROFIT_LOCK_MIN_MULTIPLE:
        return None
    tier = math.floor(multiple)
    if tier <= profit_lock_tier:
        return None
    stop = entry_price + direction.sign * fee_in_price(entry_price, fee_rate) * (tier - PROFIT_LOCK_GAP)
    return StopCandidate(stop, StopLossReason.PROFIT_SECURE, tier)


def is_tighter(direction: Direction, candidate: float, current: float) -> bool:
    """``True`` if *candidate* locks in more than *current* for *direction*."""
    if direction == Direction.LONG:
        return candidate > current
    return candidate < current


def select_best_stop(
    direction: Direction,
    current_stop: float,
    close_price: float,
    candidates: list[Optional[StopCandidate]],
) -> Optional[StopCandidate]:
    """Pick the most protective candidate that is still valid at *close_price*.

    Candidates at or through the close would stop out immediately and are
    rejected.  Only candidates strictly tighter than *current_stop* count;
    on a tie the earlier candidate wins.

    Returns:
        The winning candidate, or ``None`` if the stop should not move.
    """
    best: Optional[StopCandidate] = None
    for candidate in candidates:
        if candidate is None:
            continue
        if direction == Direction.LONG and candidate.price >= close_price:
            continue
        if direction == Direction.SHORT and candidate.price <= close_price:
            continue
        reference = best.price if best is not None else current_stop
        if is_tighter(direction, candidate.price, reference):
            best = candidate
    return best
