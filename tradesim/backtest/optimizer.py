"""Parameter-sweep optimizer — grid search over an agent's parameter ranges.

Runs one backtest per combination of the agent's ``optimization_ranges``
either sequentially or on a multiprocessing pool, reporting progress after
each finished combination.
"""

import logging
import threading
from dataclasses import dataclass
from itertools import product
from multiprocessing import Pool
from typing import Any, Callable, Optional

from tradesim.backtest.engine import BacktestEngine
from tradesim.backtest.stats import BacktestResult
from tradesim.config import Settings
from tradesim.models.strategy_config import StrategyConfig
from tradesim.strategy.models import Candle
from tradesim.strategy.registry import get_agent

logger = logging.getLogger("tradesim.optimizer")

ProgressCallback = Callable[[dict], None]


class OptimizationError(ValueError):
    """The requested optimization cannot be run."""


@dataclass(frozen=True)
class OptimizationResultItem:
    """One evaluated parameter combination.

    ``params`` holds only the swept values; user overrides applied
    underneath them during the run are not repeated here.
    """
    params: dict
    result: BacktestResult

    def to_dict(self) -> dict:
        return {"params": dict(self.params), "result": self.result.to_dict()}


def generate_combinations(ranges: dict[str, list]) -> list[dict[str, Any]]:
    """Full cross-product of *ranges*; ``[{}]`` when there are no ranges."""
    keys = list(ranges.keys())
    if not keys:
        return [{}]
    return [dict(zip(keys, values)) for values in product(*(ranges[k] for k in keys))]


def _run_combination(args: tuple) -> BacktestResult:
    """Run one backtest (module-level so worker processes can unpickle it)."""
    candles, config, htf_candles, settings, params = args
    return BacktestEngine(settings).run(candles, config.with_params(params), htf_candles)


class Optimizer:
    """Grid-search driver.

    Args:
        settings: Supplies the combination ceiling, worker count and the
            engine settings used for each backtest.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or Settings()
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop after the combination in flight; its result is discarded."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(
        self,
        candles: list[Candle],
        config: StrategyConfig,
        htf_candles: Optional[list[Candle]] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> list[OptimizationResultItem]:
        """Evaluate every combination and rank the ones that traded.

        Returns:
            Items with at least one trade, sorted by profit factor then
            total PnL, both descending.  Empty if cancelled.

        Raises:
            OptimizationError: If the agent declares no ranges or the grid
                exceeds ``max_optimization_combinations``.
        """
        agent = get_agent(config.agent)
        ranges = dict(agent.optimization_ranges)
        if not ranges:
            raise OptimizationError(f"Agent \"{agent.name}\" does not support optimization.")

        combinations = generate_combinations(ranges)
        total = len(combinations)
        ceiling = self._settings.max_optimization_combinations
        if total > ceiling:
            raise OptimizationError(
                f"Too many combinations ({total}); the maximum is {ceiling}."
            )

        logger.info("Optimizing %s over %d combinations", agent.name, total)
        jobs = [
            (candles, config, htf_candles, self._settings, {**config.agent_params, **combo})
            for combo in combinations
        ]

        items: list[OptimizationResultItem] = []
        # results come back in job order, so each pairs with its combination
        outcomes = zip(combinations, self._execute(jobs))
        for done, (combo, result) in enumerate(outcomes, start=1):
            if self._cancelled.is_set():
                break
            items.append(OptimizationResultItem(params=combo, result=result))
            if progress:
                progress({"percent": done / total * 100.0, "totalCombinations": total})
        if self._cancelled.is_set():
            logger.info("Optimization cancelled after %d/%d", len(items), total)
            return []

        ranked = [item for item in items if item.result.total_trades > 0]
        ranked.sort(key=lambda it: (-it.result.profit_factor, -it.result.total_pnl))
        logger.info("Optimization finished: %d/%d combinations traded", len(ranked), total)
        return ranked

    def _execute(self, jobs: list[tuple]):
        workers = self._settings.optimizer_workers
        if workers <= 1:
            for job in jobs:
                if self._cancelled.is_set():
                    return
                yield _run_combination(job)
            return
        with Pool(processes=workers) as pool:
            for outcome in pool.imap(_run_combination, jobs):
                yield outcome
                if self._cancelled.is_set():
                    # leaving the context terminates in-flight workers
                    return


def run_optimization(
    candles: list[Candle],
    config: StrategyConfig,
    htf_candles: Optional[list[Candle]] = None,
    progress: Optional[ProgressCallback] = None,
    settings: Optional[Settings] = None,
) -> list[OptimizationResultItem]:
    """Run a grid search with a fresh :class:`Optimizer`."""
    return Optimizer(settings).run(candles, config, htf_candles, progress)
