"""Strategy data models — typed representations for candles and agent outputs."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar.  ``time`` is the bucket start in epoch ms."""

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    is_final: bool = True

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @classmethod
    def from_dict(cls, data: dict) -> "Candle":
        """Build a candle from a wire dict (``isFinal`` or ``is_final``)."""
        try:
            return cls(
                time=int(data["time"]),
                open=float(data["open"]),
                high=float(data["high"]),
                low=float(data["low"]),
                close=float(data["close"]),
                volume=float(data.get("volume") or 0.0),
                is_final=bool(data.get("isFinal", data.get("is_final", True))),
            )
        except KeyError as exc:
            raise ValueError(f"Candle is missing field {exc.args[0]!r}") from exc

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "isFinal": self.is_final,
        }


class Direction(str, Enum):
    """Side of an open position."""

    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1

    def opposite(self) -> "Direction":
        return Direction.SHORT if self is Direction.LONG else Direction.LONG


class SignalAction(str, Enum):
    """Directional output of an agent's entry evaluation."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    def to_direction(self) -> Optional[Direction]:
        if self is SignalAction.BUY:
            return Direction.LONG
        if self is SignalAction.SELL:
            return Direction.SHORT
        return None


class StopLossReason(str, Enum):
    """Which stop tier is currently binding on a position."""

    AGENT_LOGIC = "Agent Logic"
    HARD_CAP = "Hard Cap"
    PROFIT_SECURE = "Profit Secure"
    AGENT_TRAIL = "Agent Trail"
    BREAKEVEN = "Breakeven"

    @property
    def is_trailing(self) -> bool:
        """``True`` for profit-protection tiers, ``False`` for risk limits."""
        return self in (
            StopLossReason.PROFIT_SECURE,
            StopLossReason.AGENT_TRAIL,
            StopLossReason.BREAKEVEN,
        )


@dataclass(frozen=True)
class AgentSignal:
    """Entry decision plus the ordered check results that produced it."""

    action: SignalAction
    rationale: list[str] = field(default_factory=list)

    @classmethod
    def hold(cls, *reasons: str) -> "AgentSignal":
        return cls(SignalAction.HOLD, list(reasons))


@dataclass(frozen=True)
class ManagementSignal:
    """In-trade adjustment proposed by an agent on candle close."""

    new_stop_loss: Optional[float] = None
    new_take_profit: Optional[float] = None
    close_position: bool = False
    rationale: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SRLevels:
    """Support and resistance prices, most significant first."""

    supports: list[float] = field(default_factory=list)
    resistances: list[float] = field(default_factory=list)
