"""Agent registry — maps agent identifiers to agent classes.

Used by the backtest engine and optimizer to instantiate the agent named
in ``StrategyConfig.agent``.
"""

import logging

from tradesim.strategy.base import AgentProtocol, HoldAgent
from tradesim.strategy.chameleon import ChameleonAgent
from tradesim.strategy.historic_expert import HistoricExpertAgent
from tradesim.strategy.market_structure import MarketStructureAgent
from tradesim.strategy.quantum_scalper import QuantumScalperAgent
from tradesim.strategy.sentinel import SentinelAgent

logger = logging.getLogger("tradesim.strategy")


AGENT_REGISTRY: dict[str, type] = {
    "market_structure": MarketStructureAgent,
    "quantum_scalper": QuantumScalperAgent,
    "historic_expert": HistoricExpertAgent,
    "sentinel": SentinelAgent,
    "chameleon": ChameleonAgent,
}


def get_agent(agent_id: str) -> AgentProtocol:
    """Look up and instantiate an agent by registry key.

    Unknown identifiers resolve to a :class:`HoldAgent` that never trades,
    so a stale config degrades to an empty backtest instead of an error.
    """
    if agent_id not in AGENT_REGISTRY:
        logger.warning(
            "Unknown agent '%s'. Available: %s",
            agent_id, ", ".join(AGENT_REGISTRY.keys()),
        )
        return HoldAgent(agent_id)
    return AGENT_REGISTRY[agent_id]()


def list_agents() -> list[dict]:
    """Describe every registered agent for API listings."""
    return [
        {
            "id": agent_id,
            "name": cls.name,
            "min_history": cls.min_history,
            "optimizable": bool(cls.optimization_ranges),
        }
        for agent_id, cls in AGENT_REGISTRY.items()
    ]
