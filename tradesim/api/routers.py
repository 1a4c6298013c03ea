"""API routers — /agents, /backtest, /optimize and the /ws/worker socket.

No simulation logic here.  Requests are decoded with the worker's payload
parser and handed to the engine or to a shared ``BacktestWorker``.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from tradesim.backtest.engine import run_backtest
from tradesim.backtest.optimizer import run_optimization
from tradesim.config import Settings
from tradesim.strategy.registry import list_agents
from tradesim.worker import BacktestWorker, parse_payload

logger = logging.getLogger("tradesim.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_settings: Settings = Settings()
_worker: BacktestWorker = BacktestWorker(_settings)


def configure_routers(settings: Optional[Settings] = None) -> None:
    """Inject settings from the application startup."""
    global _settings, _worker  # noqa: PLW0603
    _settings = settings or Settings()
    _worker = BacktestWorker(_settings)


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/agents")
async def get_agents():
    """Registered agents and whether they can be optimized."""
    return {"agents": list_agents()}


@router.post("/backtest")
async def post_backtest(body: dict):
    """Run one backtest.  Body matches the worker ``payload`` shape."""
    try:
        candles, config, htf = parse_payload(body, _settings)
        result = await asyncio.to_thread(run_backtest, candles, config, htf, _settings)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return result.to_dict()


@router.post("/optimize")
async def post_optimize(body: dict):
    """Run a full grid search and return the ranked combinations."""
    try:
        candles, config, htf = parse_payload(body, _settings)
        items = await asyncio.to_thread(
            run_optimization, candles, config, htf, None, _settings,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"results": [item.to_dict() for item in items]}


@router.websocket("/ws/worker")
async def worker_socket(websocket: WebSocket):
    """Speak the worker message contract over a WebSocket.

    Each request runs as its own task so a ``cancel`` can arrive while an
    optimization is in flight.
    """
    await websocket.accept()
    send_lock = asyncio.Lock()
    tasks: set[asyncio.Task] = set()

    async def send(message: dict) -> None:
        async with send_lock:
            await websocket.send_json(message)

    try:
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                await send({"type": "error", "id": None, "error": "Message must be an object"})
                continue
            task = asyncio.create_task(_worker.handle(message, send))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
    except WebSocketDisconnect:
        logger.info("Worker socket disconnected with %d request(s) in flight", len(tasks))
        for task in tasks:
            task.cancel()
