"""Agent protocol and shared helpers.

Defines the interface every trading agent must implement.  The engine
only ever talks to agents through this protocol, so backtests and any
live caller share identical decision logic.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from tradesim.strategy.models import AgentSignal, Candle, ManagementSignal

logger = logging.getLogger("tradesim.strategy")


@runtime_checkable
class AgentProtocol(Protocol):
    """Interface that all trading agents must satisfy."""

    agent_id: str
    name: str
    min_history: int
    optimization_ranges: Mapping[str, list]

    def signal(
        self,
        history: list[Candle],
        params: Mapping[str, Any],
        htf_history: Optional[list[Candle]] = None,
    ) -> AgentSignal:
        """Return BUY/SELL/HOLD for the latest candle of *history*."""
        ...

    def manage(
        self,
        position,
        history: list[Candle],
        current_price: float,
        params: Mapping[str, Any],
    ) -> ManagementSignal:
        """Propose a stop/target adjustment or a close for *position*."""
        ...


class BaseAgent:
    """Common plumbing for indicator-driven agents.

    Subclasses implement ``_evaluate`` (and optionally ``_manage``).  Any
    ``ValueError`` raised while computing indicators — short history, an
    undefined value at the start of a series — is treated as inconclusive
    and turned into HOLD / no action.
    """

    agent_id: str = ""
    name: str = ""
    min_history: int = 1
    optimization_ranges: Mapping[str, list] = {}

    def required_history(self, params: Mapping[str, Any]) -> int:
        """Minimum candles needed for *params*; defaults to ``min_history``."""
        return self.min_history

    def signal(
        self,
        history: list[Candle],
        params: Mapping[str, Any],
        htf_history: Optional[list[Candle]] = None,
    ) -> AgentSignal:
        needed = self.required_history(params)
        if len(history) < needed:
            return AgentSignal.hold(
                f"Insufficient data ({len(history)}/{needed} candles)"
            )
        try:
            return self._evaluate(history, params)
        except ValueError as exc:
            logger.debug("%s: indicator inconclusive: %s", self.name, exc)
            return AgentSignal.hold(f"Indicators inconclusive: {exc}")

    def manage(
        self,
        position,
        history: list[Candle],
        current_price: float,
        params: Mapping[str, Any],
    ) -> ManagementSignal:
        try:
            return self._manage(position, history, current_price, params)
        except ValueError as exc:
            logger.debug("%s: management inconclusive: %s", self.name, exc)
            return ManagementSignal(rationale=[f"Indicators inconclusive: {exc}"])

    def _evaluate(self, history: list[Candle], params: Mapping[str, Any]) -> AgentSignal:
        raise NotImplementedError

    def _manage(
        self,
        position,
        history: list[Candle],
        current_price: float,
        params: Mapping[str, Any],
    ) -> ManagementSignal:
        return ManagementSignal()


class HoldAgent(BaseAgent):
    """Stand-in for unknown agent identifiers — never trades."""

    name = "Hold"

    def __init__(self, agent_id: str = "") -> None:
        self.agent_id = agent_id

    def _evaluate(self, history: list[Candle], params: Mapping[str, Any]) -> AgentSignal:
        return AgentSignal.hold(f"Agent '{self.agent_id}' not found")
