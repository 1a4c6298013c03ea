"""Strategy configuration dataclass.

One immutable bundle per backtest or optimization run.
"""

from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Mapping

SPOT = "spot"
FUTURES = "futures"
TP_PERCENT = "percent"
TP_FIXED = "fixed"


@dataclass(frozen=True)
class StrategyConfig:
    """Configuration for a single simulated strategy run.

    The optimizer derives one config per parameter combination with
    :meth:`with_params`; a config is never mutated mid-run.
    """

    pair: str
    timeframe: str
    agent: str  # agent registry key, e.g. "sentinel"
    agent_params: Mapping[str, Any] = field(default_factory=dict)
    mode: str = SPOT  # "spot" or "futures"
    investment_amount: float = 1000.0
    leverage: float = 1.0
    fee_rate: float = 0.001
    cooldown_candles: int = 3
    max_stop_loss_pct: float = 5.0  # max loss as % of investment_amount
    take_profit_locked: bool = False
    take_profit_mode: str = TP_PERCENT  # "percent" or "fixed"
    take_profit_value: float = 0.0
    htf_confirmation_enabled: bool = False
    universal_profit_trail_enabled: bool = True
    trailing_take_profit_enabled: bool = False
    min_rr_enabled: bool = True
    invalidation_check_enabled: bool = False
    cooldown_enabled: bool = False

    def __post_init__(self) -> None:
        if self.mode not in (SPOT, FUTURES):
            raise ValueError(f"mode must be 'spot' or 'futures', got '{self.mode}'")
        if self.take_profit_mode not in (TP_PERCENT, TP_FIXED):
            raise ValueError(
                f"take_profit_mode must be 'percent' or 'fixed', got '{self.take_profit_mode}'"
            )
        if self.investment_amount <= 0:
            raise ValueError(
                f"investment_amount must be positive, got {self.investment_amount}"
            )
        if self.leverage <= 0:
            raise ValueError(f"leverage must be positive, got {self.leverage}")
        if self.fee_rate < 0:
            raise ValueError(f"fee_rate must be non-negative, got {self.fee_rate}")
        # Private copy; the caller's dict must not alias a run's overrides
        object.__setattr__(self, "agent_params", dict(self.agent_params))

    @property
    def effective_leverage(self) -> float:
        """Leverage applied to sizing — spot positions are unlevered."""
        return self.leverage if self.mode == FUTURES else 1.0

    @property
    def position_value(self) -> float:
        """Notional value of a new position."""
        return self.investment_amount * self.effective_leverage

    def with_params(self, agent_params: Mapping[str, Any]) -> "StrategyConfig":
        """Return a copy whose agent overrides are replaced by *agent_params*."""
        return replace(self, agent_params=dict(agent_params))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], **defaults: Any) -> "StrategyConfig":
        """Build a config from a wire dict, ignoring unknown keys.

        *defaults* fill fields the payload leaves out (e.g. ``fee_rate``
        from settings).
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in defaults.items() if k in known}
        values.update({k: v for k, v in data.items() if k in known})
        for required in ("pair", "timeframe", "agent"):
            if required not in values:
                raise ValueError(f"Strategy config is missing '{required}'")
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)
