"""Position sizing, fee accounting and entry validation — pure math, no I/O."""

from tradesim.strategy.models import Direction

MIN_RISK_REWARD_RATIO = 1.5
MIN_PROFIT_BUFFER_MULTIPLIER = 3.0


def calculate_size(position_value: float, entry_price: float) -> float:
    """Calculate position size in base-asset units.

    Formula::

        size = position_value / entry_price

    Args:
        position_value: Notional to deploy (investment × leverage).
        entry_price: Fill price.

    Raises:
        ValueError: If either input is non-positive.
    """
    if position_value <= 0:
        raise ValueError(f"position_value must be positive, got {position_value}")
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    return position_value / entry_price


def fee_in_price(entry_price: float, fee_rate: float) -> float:
    """Round-trip fee expressed as a price move per unit of size."""
    return entry_price * fee_rate * 2


def calculate_fees(entry_price: float, exit_price: float, size: float, fee_rate: float) -> float:
    """Fees for opening and closing *size* units: ``(E·S + X·S)·F``."""
    return (entry_price * size + exit_price * size) * fee_rate


def calculate_gross_pnl(
    entry_price: float, exit_price: float, size: float, direction: Direction,
) -> float:
    return (exit_price - entry_price) * size * direction.sign


def calculate_net_pnl(
    entry_price: float,
    exit_price: float,
    size: float,
    direction: Direction,
    fee_rate: float,
) -> float:
    """Fee-adjusted PnL: ``(X−E)·S·dir − (E·S + X·S)·F``."""
    return (
        calculate_gross_pnl(entry_price, exit_price, size, direction)
        - calculate_fees(entry_price, exit_price, size, fee_rate)
    )


def validate_trade_profitability(
    entry_price: float,
    stop_loss: float,
    take_profit: float,
    fee_rate: float,
    min_rr_enabled: bool = True,
    min_rr: float = MIN_RISK_REWARD_RATIO,
) -> tuple[bool, str]:
    """Decide whether an entry is worth taking after fees.

    Checks, in order:
        1. Reward:risk ≥ *min_rr* (only when *min_rr_enabled*).
        2. Reward distance clears the fee zone: at least
           ``fee_in_price × MIN_PROFIT_BUFFER_MULTIPLIER``.

    Returns:
        ``(is_valid, reason)``.
    """
    risk = abs(entry_price - stop_loss)
    reward = abs(take_profit - entry_price)

    if min_rr_enabled:
        if risk <= 0:
            return False, "VETO: risk distance is zero"
        rr = reward / risk
        if rr < min_rr:
            return False, f"VETO: R:R of {rr:.2f}:1 is below the minimum of {min_rr}:1"

    min_reward = fee_in_price(entry_price, fee_rate) * MIN_PROFIT_BUFFER_MULTIPLIER
    if reward < min_reward:
        return False, (
            f"VETO: target is within the fee zone "
            f"(reward {reward:.6f}, min required {min_reward:.6f})"
        )
    return True, "Profitability checks passed"
