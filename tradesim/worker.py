"""Worker boundary — runs backtests and optimizations behind a message contract.

Requests::

    {"type": "runBacktest" | "runOptimization", "id": ..., "payload":
        {"candles": [...], "config": {...}, "htfCandles": [...]?}}
    {"type": "cancel", "id": ...}

Responses::

    {"type": "result", "id": ..., "payload": ...}
    {"type": "error", "id": ..., "error": "message"}
    {"type": "progress", "id": ..., "progress": {"percent", "totalCombinations"}}

Simulations are synchronous and CPU-bound, so each request runs on a
thread via ``asyncio.to_thread``.  A failing request produces an error
message for its own id and never affects other requests.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from tradesim.backtest.engine import run_backtest
from tradesim.backtest.optimizer import Optimizer
from tradesim.config import Settings
from tradesim.models.strategy_config import StrategyConfig
from tradesim.strategy.models import Candle

logger = logging.getLogger("tradesim.worker")

Send = Callable[[dict], Awaitable[None]]

RUN_BACKTEST = "runBacktest"
RUN_OPTIMIZATION = "runOptimization"
CANCEL = "cancel"


def parse_payload(
    payload: Any,
    settings: Settings,
) -> tuple[list[Candle], StrategyConfig, Optional[list[Candle]]]:
    """Decode a request payload into candles, config and HTF candles.

    Raises:
        ValueError: If ``candles`` or ``config`` is missing or malformed.
    """
    if not isinstance(payload, dict):
        raise ValueError("Request payload must be an object")
    raw_candles = payload.get("candles")
    raw_config = payload.get("config")
    if not isinstance(raw_candles, list):
        raise ValueError("Request payload is missing 'candles'")
    if not isinstance(raw_config, dict):
        raise ValueError("Request payload is missing 'config'")

    candles = [Candle.from_dict(c) for c in raw_candles]
    config = StrategyConfig.from_dict(raw_config, fee_rate=settings.taker_fee_rate)
    raw_htf = payload.get("htfCandles")
    htf = [Candle.from_dict(c) for c in raw_htf] if raw_htf else None
    return candles, config, htf


class BacktestWorker:
    """Dispatches worker messages and tracks cancellable optimizations.

    Args:
        settings: Engine and optimizer settings shared by every request.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or Settings()
        self._optimizers: dict[Any, Optimizer] = {}

    # ── Public API ───────────────────────────────────────────────────────

    async def handle(self, message: dict, send: Send) -> None:
        """Process one request, replying through *send*."""
        msg_type = message.get("type")
        req_id = message.get("id")
        try:
            if msg_type == CANCEL:
                self.cancel(req_id)
            elif msg_type == RUN_BACKTEST:
                await self._run_backtest(req_id, message.get("payload"), send)
            elif msg_type == RUN_OPTIMIZATION:
                await self._run_optimization(req_id, message.get("payload"), send)
            else:
                raise ValueError(f"Unknown message type: {msg_type!r}")
        except Exception as exc:
            logger.exception("Request %s (%s) failed", req_id, msg_type)
            await send({"type": "error", "id": req_id, "error": str(exc) or type(exc).__name__})

    def cancel(self, req_id: Any) -> bool:
        """Cancel the optimization running under *req_id*, if any."""
        optimizer = self._optimizers.get(req_id)
        if optimizer is None:
            return False
        logger.info("Cancelling optimization %s", req_id)
        optimizer.cancel()
        return True

    # ── Handlers ─────────────────────────────────────────────────────────

    async def _run_backtest(self, req_id: Any, payload: Any, send: Send) -> None:
        candles, config, htf = parse_payload(payload, self._settings)
        result = await asyncio.to_thread(run_backtest, candles, config, htf, self._settings)
        await send({"type": "result", "id": req_id, "payload": result.to_dict()})

    async def _run_optimization(self, req_id: Any, payload: Any, send: Send) -> None:
        candles, config, htf = parse_payload(payload, self._settings)
        optimizer = Optimizer(self._settings)
        self._optimizers[req_id] = optimizer

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def on_progress(progress: dict) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, progress)

        run = asyncio.ensure_future(
            asyncio.to_thread(optimizer.run, candles, config, htf, on_progress)
        )
        getter: Optional[asyncio.Future] = None
        try:
            while not run.done():
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({run, getter}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    await send({"type": "progress", "id": req_id, "progress": getter.result()})
                else:
                    getter.cancel()
            while not queue.empty():
                await send({"type": "progress", "id": req_id, "progress": queue.get_nowait()})
            items = run.result()
        except asyncio.CancelledError:
            # the thread outlives the task unless the optimizer is told to stop
            logger.info("Optimization %s abandoned; stopping combinations", req_id)
            optimizer.cancel()
            if getter is not None:
                getter.cancel()
            raise
        finally:
            self._optimizers.pop(req_id, None)

        await send({
            "type": "result",
            "id": req_id,
            "payload": [item.to_dict() for item in items],
        })
