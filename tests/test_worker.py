"""Tests for the worker message boundary."""

import asyncio
import time

import pytest

import tradesim.backtest.optimizer as optimizer_module
from tradesim.config import Settings
from tradesim.strategy.base import BaseAgent
from tradesim.strategy.models import AgentSignal, Candle, SignalAction
from tradesim.strategy.registry import AGENT_REGISTRY
from tradesim.worker import (
    CANCEL,
    RUN_BACKTEST,
    RUN_OPTIMIZATION,
    BacktestWorker,
    parse_payload,
)

FOUR_HOURS = 14_400_000


class _GridAgent(BaseAgent):
    agent_id = "grid"
    name = "Grid"
    optimization_ranges = {"entry_len": [21, 22, 23], "flag": [True, False]}

    def _evaluate(self, history, params):
        if len(history) == params.get("entry_len", 21):
            return AgentSignal(SignalAction.BUY, ["grid entry"])
        return AgentSignal.hold("waiting")


class _WideGridAgent(_GridAgent):
    agent_id = "wide"
    optimization_ranges = {"entry_len": list(range(21, 41))}


@pytest.fixture(autouse=True)
def _grid_agent(monkeypatch):
    monkeypatch.setitem(AGENT_REGISTRY, "grid", _GridAgent)
    monkeypatch.setitem(AGENT_REGISTRY, "wide", _WideGridAgent)


def _candle_dicts(n):
    out = []
    for i in range(n):
        o = 100.0 + 0.5 * i
        c = o + 0.5
        out.append(Candle(time=i * FOUR_HOURS, open=o, high=c + 0.1, low=o - 0.1,
                          close=c, volume=100.0).to_dict())
    return out


def _payload(agent="grid", **extra):
    payload = {
        "candles": _candle_dicts(40),
        "config": {"pair": "BTC/USDT", "timeframe": "4h", "agent": agent,
                   "agent_params": {"use_sr_targets": False}},
    }
    payload.update(extra)
    return payload


class _Outbox:
    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)

    def of_type(self, msg_type):
        return [m for m in self.messages if m["type"] == msg_type]


@pytest.fixture
def worker():
    return BacktestWorker(Settings(warmup_candles=20))


# ── Payload parsing ──────────────────────────────────────────────────────


class TestParsePayload:
    def test_decodes_candles_and_config(self):
        candles, config, htf = parse_payload(_payload(), Settings(taker_fee_rate=0.0004))
        assert len(candles) == 40
        assert isinstance(candles[0], Candle)
        assert config.agent == "grid"
        assert config.fee_rate == 0.0004
        assert htf is None

    def test_payload_fee_rate_wins(self):
        payload = _payload()
        payload["config"]["fee_rate"] = 0.002
        _, config, _ = parse_payload(payload, Settings())
        assert config.fee_rate == 0.002

    def test_htf_candles_decoded(self):
        _, _, htf = parse_payload(_payload(htfCandles=_candle_dicts(5)), Settings())
        assert len(htf) == 5

    @pytest.mark.parametrize("payload,match", [
        ({"config": {}}, "candles"),
        ({"candles": []}, "config"),
        ([], "object"),
    ])
    def test_missing_fields(self, payload, match):
        with pytest.raises(ValueError, match=match):
            parse_payload(payload, Settings())


# ── Message handling ─────────────────────────────────────────────────────


class TestBacktestWorker:
    @pytest.mark.asyncio
    async def test_run_backtest_replies_with_result(self, worker):
        out = _Outbox()
        await worker.handle({"type": RUN_BACKTEST, "id": 7, "payload": _payload()}, out)
        assert len(out.messages) == 1
        reply = out.messages[0]
        assert reply["type"] == "result"
        assert reply["id"] == 7
        assert reply["payload"]["totalTrades"] == 1

    @pytest.mark.asyncio
    async def test_bad_payload_replies_with_error(self, worker):
        out = _Outbox()
        await worker.handle({"type": RUN_BACKTEST, "id": "a", "payload": {"config": {}}}, out)
        assert out.messages == [
            {"type": "error", "id": "a", "error": "Request payload is missing 'candles'"},
        ]

    @pytest.mark.asyncio
    async def test_unknown_message_type(self, worker):
        out = _Outbox()
        await worker.handle({"type": "explode", "id": 1}, out)
        assert out.messages[0]["type"] == "error"
        assert "Unknown message type" in out.messages[0]["error"]

    @pytest.mark.asyncio
    async def test_run_optimization_streams_progress(self, worker):
        out = _Outbox()
        await worker.handle({"type": RUN_OPTIMIZATION, "id": 3, "payload": _payload()}, out)
        progress = out.of_type("progress")
        assert len(progress) == 6
        assert progress[-1]["progress"]["totalCombinations"] == 6
        assert progress[-1]["progress"]["percent"] == pytest.approx(100.0)

        result = out.messages[-1]
        assert result["type"] == "result"
        assert len(result["payload"]) == 6
        assert result["payload"][0]["params"]["entry_len"] == 21

    @pytest.mark.asyncio
    async def test_unsupported_optimization_is_error(self, worker):
        out = _Outbox()
        await worker.handle(
            {"type": RUN_OPTIMIZATION, "id": 4, "payload": _payload("unknown-agent")}, out,
        )
        assert out.of_type("result") == []
        assert "does not support optimization" in out.messages[-1]["error"]

    @pytest.mark.asyncio
    async def test_cancel_unknown_id_is_silent(self, worker):
        out = _Outbox()
        await worker.handle({"type": CANCEL, "id": 99}, out)
        assert out.messages == []
        assert worker.cancel(99) is False

    @pytest.mark.asyncio
    async def test_failure_isolated_per_request(self, worker):
        out = _Outbox()
        await worker.handle({"type": RUN_BACKTEST, "id": 1, "payload": None}, out)
        await worker.handle({"type": RUN_BACKTEST, "id": 2, "payload": _payload()}, out)
        assert [m["type"] for m in out.messages] == ["error", "result"]
        assert out.messages[1]["id"] == 2

    @pytest.mark.asyncio
    async def test_cancelling_the_request_task_stops_combinations(self, worker, monkeypatch):
        calls = []
        run_one = optimizer_module._run_combination

        def _slow_combination(args):
            calls.append(args)
            time.sleep(0.05)
            return run_one(args)

        monkeypatch.setattr(optimizer_module, "_run_combination", _slow_combination)
        out = _Outbox()
        task = asyncio.ensure_future(worker.handle(
            {"type": RUN_OPTIMIZATION, "id": 5, "payload": _payload("wide")}, out,
        ))
        await asyncio.sleep(0.15)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        started = len(calls)
        await asyncio.sleep(0.3)
        # at most the combination already in flight finishes
        assert len(calls) <= started + 1
        assert len(calls) < 20
        assert out.of_type("result") == []
        assert worker.cancel(5) is False
