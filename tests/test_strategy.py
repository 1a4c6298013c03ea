"""Tests for the strategy layer — models, indicators, params, registry, agents."""

import math
from types import MappingProxyType

import pytest

from tradesim.strategy.base import AgentProtocol, HoldAgent
from tradesim.strategy.chameleon import ChameleonAgent
from tradesim.strategy.historic_expert import HistoricExpertAgent
from tradesim.strategy.htf_filter import htf_trend_allows
from tradesim.strategy.indicators import (
    calculate_adx,
    calculate_atr,
    calculate_bollinger,
    calculate_ema,
    calculate_macd,
    calculate_psar,
    calculate_rsi,
    calculate_sma,
    last_defined,
)
from tradesim.strategy.market_structure import MarketStructureAgent, recognize_pattern
from tradesim.strategy.models import (
    AgentSignal,
    Candle,
    Direction,
    ManagementSignal,
    SignalAction,
    StopLossReason,
)
from tradesim.strategy.params import (
    DEFAULT_AGENT_PARAMS,
    TIMEFRAME_ADAPTIVE_SETTINGS,
    effective_params,
    resolve_params,
)
from tradesim.strategy.quantum_scalper import QuantumScalperAgent
from tradesim.strategy.registry import AGENT_REGISTRY, get_agent, list_agents
from tradesim.strategy.sentinel import SentinelAgent
from tradesim.strategy.sr_zones import detect_sr_levels


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_candle(i, o, h, l, c, vol=100.0):
    return Candle(time=i * 60_000, open=o, high=h, low=l, close=c, volume=vol)


def _trend(n, start=100.0, step=0.5):
    """Steady trend: each candle opens at the previous close."""
    out = []
    for i in range(n):
        o = start + step * i
        c = o + step
        out.append(_make_candle(i, o, max(o, c) + 0.2, min(o, c) - 0.2, c))
    return out


def _zigzag(n, base=100.0, amp=3.0, period=10):
    out = []
    for i in range(n):
        phase = (i % period) / period
        mid = base + amp * math.sin(2 * math.pi * phase)
        out.append(_make_candle(i, mid - 0.1, mid + 0.6, mid - 0.6, mid + 0.1))
    return out


class _Position:
    def __init__(self, direction, stop, entry=None, peak=None, initial_stop=None, candles=10):
        self.direction = direction
        self.stop_loss_price = stop
        self.entry_price = stop if entry is None else entry
        self.peak_price = self.entry_price if peak is None else peak
        self.initial_stop_loss = stop if initial_stop is None else initial_stop
        self.candles_since_entry = candles

    @property
    def is_long(self):
        return self.direction == Direction.LONG


# ── Models ───────────────────────────────────────────────────────────────


class TestModels:
    def test_candle_from_dict_accepts_camel_case(self):
        c = Candle.from_dict({"time": 1, "open": 1, "high": 2, "low": 0.5,
                              "close": 1.5, "volume": 3, "isFinal": False})
        assert c.is_final is False
        assert c.high == 2.0

    def test_candle_from_dict_missing_field(self):
        with pytest.raises(ValueError, match="close"):
            Candle.from_dict({"time": 1, "open": 1, "high": 2, "low": 0.5})

    def test_candle_round_trip_keys(self):
        c = _make_candle(3, 1.0, 2.0, 0.5, 1.5)
        assert Candle.from_dict(c.to_dict()) == c

    def test_bearish(self):
        assert _make_candle(0, 2.0, 2.5, 0.5, 1.0).is_bearish is True
        assert _make_candle(0, 1.0, 1.0, 1.0, 1.0).is_bearish is False

    def test_direction_helpers(self):
        assert Direction.LONG.sign == 1
        assert Direction.SHORT.sign == -1
        assert Direction.LONG.opposite() == Direction.SHORT

    def test_signal_action_to_direction(self):
        assert SignalAction.BUY.to_direction() == Direction.LONG
        assert SignalAction.SELL.to_direction() == Direction.SHORT
        assert SignalAction.HOLD.to_direction() is None

    def test_stop_reason_trailing(self):
        assert StopLossReason.BREAKEVEN.is_trailing
        assert StopLossReason.PROFIT_SECURE.is_trailing
        assert StopLossReason.AGENT_TRAIL.is_trailing
        assert not StopLossReason.HARD_CAP.is_trailing
        assert not StopLossReason.AGENT_LOGIC.is_trailing


# ── Indicators ───────────────────────────────────────────────────────────


class TestIndicators:
    def test_sma(self):
        out = calculate_sma([1.0, 2.0, 3.0, 4.0], 2)
        assert math.isnan(out[0])
        assert out[1:] == [1.5, 2.5, 3.5]

    def test_ema_seeded_with_sma(self):
        candles = [_make_candle(i, v, v, v, v) for i, v in enumerate([1.0, 2.0, 3.0, 4.0])]
        out = calculate_ema(candles, 3)
        assert out[2] == pytest.approx(2.0)
        assert out[3] == pytest.approx(3.0)

    def test_atr_constant_range(self):
        candles = [_make_candle(i, 100, 101, 99, 100) for i in range(20)]
        assert calculate_atr(candles, 14) == pytest.approx(2.0)

    def test_atr_needs_period_plus_one(self):
        with pytest.raises(ValueError):
            calculate_atr([_make_candle(i, 1, 1, 1, 1) for i in range(14)], 14)

    def test_rsi_extremes(self):
        up = calculate_rsi(_trend(30, step=1.0), 14)
        down = calculate_rsi(_trend(30, start=200.0, step=-1.0), 14)
        assert last_defined(up) == pytest.approx(100.0)
        assert last_defined(down) == pytest.approx(0.0)

    def test_adx_uptrend_plus_di_dominates(self):
        adx, pdi, mdi = calculate_adx(_trend(60), 14)
        assert last_defined(pdi) > last_defined(mdi)
        assert last_defined(adx) > 25

    def test_bollinger_flat_collapses(self):
        candles = [_make_candle(i, 5, 5, 5, 5) for i in range(25)]
        upper, middle, lower = calculate_bollinger(candles, 20, 2.0)
        assert last_defined(upper) == last_defined(middle) == last_defined(lower) == 5.0

    def test_macd_positive_in_uptrend(self):
        macd, signal = calculate_macd(_trend(60), 12, 26, 9)
        assert last_defined(macd) > 0
        assert not math.isnan(signal[-1])

    def test_psar_below_price_in_uptrend(self):
        candles = _trend(40)
        sar = calculate_psar(candles)
        assert last_defined(sar) < candles[-1].low

    def test_last_defined_rejects_nan(self):
        with pytest.raises(ValueError):
            last_defined([1.0, float("nan")])
        with pytest.raises(ValueError):
            last_defined([])


class TestSRLevels:
    def test_zigzag_has_both_sides(self):
        levels = detect_sr_levels(_zigzag(80), lookback=3)
        assert levels.supports
        assert levels.resistances
        assert max(levels.supports) < min(levels.resistances)

    def test_short_history_is_empty(self):
        levels = detect_sr_levels(_zigzag(10), lookback=10)
        assert levels.supports == [] and levels.resistances == []


# ── Params ───────────────────────────────────────────────────────────────


class TestParams:
    def test_precedence_user_over_timeframe_over_default(self):
        merged = resolve_params(
            {"a": 1, "b": 1, "c": 1},
            {"b": 2, "c": 2},
            {"c": 3},
        )
        assert dict(merged) == {"a": 1, "b": 2, "c": 3}

    def test_result_is_read_only(self):
        merged = resolve_params({"a": 1})
        assert isinstance(merged, MappingProxyType)
        with pytest.raises(TypeError):
            merged["a"] = 2

    def test_inputs_not_mutated(self):
        defaults = {"a": 1}
        resolve_params(defaults, {"a": 2}, {"b": 3})
        assert defaults == {"a": 1}

    def test_effective_params_uses_timeframe_table(self):
        params = effective_params("1m")
        assert params["invalidation_candle_limit"] == TIMEFRAME_ADAPTIVE_SETTINGS["1m"]["invalidation_candle_limit"]
        assert params["atr_period"] == DEFAULT_AGENT_PARAMS["atr_period"]

    def test_effective_params_unknown_timeframe(self):
        assert dict(effective_params("7m")) == DEFAULT_AGENT_PARAMS


# ── Registry ─────────────────────────────────────────────────────────────


class TestRegistry:
    @pytest.mark.parametrize("agent_id", list(AGENT_REGISTRY))
    def test_registered_agents_satisfy_protocol(self, agent_id):
        agent = get_agent(agent_id)
        assert isinstance(agent, AgentProtocol)
        assert agent.agent_id == agent_id
        assert agent.optimization_ranges

    def test_unknown_agent_is_hold_only(self):
        agent = get_agent("does_not_exist")
        assert isinstance(agent, HoldAgent)
        signal = agent.signal(_trend(300), DEFAULT_AGENT_PARAMS)
        assert signal.action == SignalAction.HOLD
        assert "does_not_exist" in signal.rationale[0]
        assert agent.optimization_ranges == {}

    def test_list_agents(self):
        listed = {a["id"]: a for a in list_agents()}
        assert set(listed) == set(AGENT_REGISTRY)
        assert listed["sentinel"]["name"] == "The Sentinel"


# ── Agents ───────────────────────────────────────────────────────────────


ALL_AGENTS = [
    MarketStructureAgent, QuantumScalperAgent, HistoricExpertAgent, SentinelAgent, ChameleonAgent,
]


class TestAgents:
    @pytest.mark.parametrize("cls", ALL_AGENTS)
    def test_insufficient_history_holds(self, cls):
        signal = cls().signal(_trend(10), DEFAULT_AGENT_PARAMS)
        assert signal.action == SignalAction.HOLD
        assert "Insufficient data" in signal.rationale[0]

    @pytest.mark.parametrize("cls", ALL_AGENTS)
    def test_signal_on_full_history_is_valid(self, cls):
        signal = cls().signal(_zigzag(260), DEFAULT_AGENT_PARAMS)
        assert isinstance(signal, AgentSignal)
        assert signal.action in (SignalAction.BUY, SignalAction.SELL, SignalAction.HOLD)
        assert signal.rationale

    @pytest.mark.parametrize("cls", ALL_AGENTS)
    def test_manage_returns_management_signal(self, cls):
        history = _trend(120)
        position = _Position(Direction.LONG, history[-1].close - 5)
        out = cls().manage(position, history, history[-1].close, DEFAULT_AGENT_PARAMS)
        assert isinstance(out, ManagementSignal)

    def test_quantum_scalper_psar_trail_stays_below_price(self):
        history = _trend(80)
        price = history[-1].close
        position = _Position(Direction.LONG, price - 20)
        out = QuantumScalperAgent().manage(position, history, price, DEFAULT_AGENT_PARAMS)
        assert out.new_stop_loss is not None
        assert position.stop_loss_price < out.new_stop_loss < price

    def test_quantum_scalper_ignores_looser_psar(self):
        history = _trend(80)
        price = history[-1].close
        position = _Position(Direction.LONG, price - 0.01)
        out = QuantumScalperAgent().manage(position, history, price, DEFAULT_AGENT_PARAMS)
        assert out.new_stop_loss is None

    def test_sentinel_closes_long_when_overbought(self):
        history = _trend(80, step=1.0)
        position = _Position(Direction.LONG, 50.0)
        out = SentinelAgent().manage(position, history, history[-1].close, DEFAULT_AGENT_PARAMS)
        assert out.close_position is True
        assert any("overbought" in r for r in out.rationale)

    def test_sentinel_closes_short_when_oversold(self):
        history = _trend(80, start=300.0, step=-1.0)
        position = _Position(Direction.SHORT, 400.0)
        out = SentinelAgent().manage(position, history, history[-1].close, DEFAULT_AGENT_PARAMS)
        assert out.close_position is True
        assert any("oversold" in r for r in out.rationale)

    def test_sentinel_no_exit_on_short_history(self):
        history = _trend(20)
        position = _Position(Direction.LONG, 50.0)
        out = SentinelAgent().manage(position, history, history[-1].close, DEFAULT_AGENT_PARAMS)
        assert out.close_position is False

    def test_historic_expert_holds_without_crossover(self):
        # A steady trend has no fresh EMA crossover on the last candle
        signal = HistoricExpertAgent().signal(_trend(100), DEFAULT_AGENT_PARAMS)
        assert signal.action == SignalAction.HOLD
        assert "Trigger: no EMA crossover" in signal.rationale

    def test_quantum_scalper_trending_buy(self):
        params = dict(DEFAULT_AGENT_PARAMS, qsc_adx_threshold=20)
        signal = QuantumScalperAgent().signal(_trend(120), params)
        assert signal.action == SignalAction.BUY
        assert any("trending" in r for r in signal.rationale)


class TestChameleon:
    def test_trend_alone_is_below_default_threshold(self):
        # Trend alignment (+2) and RSI momentum (+1) only
        signal = ChameleonAgent().signal(_trend(80), DEFAULT_AGENT_PARAMS)
        assert signal.action == SignalAction.HOLD
        assert any("Bullish Score: 3.0 / 5.0" in r for r in signal.rationale)

    def test_buys_uptrend_at_lower_threshold(self):
        params = dict(DEFAULT_AGENT_PARAMS, ch_score_threshold=3.0)
        signal = ChameleonAgent().signal(_trend(80), params)
        assert signal.action == SignalAction.BUY
        assert any("Profit potential" in r for r in signal.rationale)

    def test_sells_downtrend_at_lower_threshold(self):
        params = dict(DEFAULT_AGENT_PARAMS, ch_score_threshold=3.0)
        signal = ChameleonAgent().signal(_trend(80, start=300.0, step=-1.0), params)
        assert signal.action == SignalAction.SELL
        assert any("Bearish Score" in r for r in signal.rationale)

    def test_weak_trend_vetoed(self):
        params = dict(DEFAULT_AGENT_PARAMS, ch_adx_threshold=101)
        signal = ChameleonAgent().signal(_trend(80), params)
        assert signal.action == SignalAction.HOLD
        assert "not trending" in signal.rationale[0]

    def test_outsized_candle_vetoed(self):
        history = _trend(79)
        last = history[-1]
        history.append(_make_candle(79, last.close, last.close + 20.0, last.close - 0.2,
                                    last.close + 0.5))
        params = dict(DEFAULT_AGENT_PARAMS, ch_score_threshold=3.0)
        signal = ChameleonAgent().signal(history, params)
        assert signal.action == SignalAction.HOLD
        assert any("high volatility candle" in r for r in signal.rationale)

    def test_closes_winning_long_on_reversal(self):
        history = _trend(80, start=300.0, step=-1.0)
        position = _Position(Direction.LONG, 50.0, entry=100.0)
        out = ChameleonAgent().manage(position, history, history[-1].close, DEFAULT_AGENT_PARAMS)
        assert out.close_position is True
        assert out.rationale == ["Strong trend reversal detected."]

    def test_losing_long_not_closed_on_reversal(self):
        history = _trend(80, start=300.0, step=-1.0)
        position = _Position(Direction.LONG, 50.0, entry=400.0, peak=400.0)
        out = ChameleonAgent().manage(position, history, history[-1].close, DEFAULT_AGENT_PARAMS)
        assert out.close_position is False
        assert out.new_stop_loss is None

    def test_stalk_mode_restores_initial_stop(self):
        history = _trend(80)
        price = history[-1].close
        position = _Position(Direction.LONG, price - 20, entry=price - 1,
                             initial_stop=price - 10, candles=1)
        out = ChameleonAgent().manage(position, history, price, DEFAULT_AGENT_PARAMS)
        assert out.new_stop_loss == price - 10
        assert out.rationale == ["Stalk mode: maintaining initial stop."]

    def test_stalk_mode_waits(self):
        history = _trend(80)
        price = history[-1].close
        position = _Position(Direction.LONG, price - 10, entry=price - 1, candles=2)
        out = ChameleonAgent().manage(position, history, price, DEFAULT_AGENT_PARAMS)
        assert out.new_stop_loss is None
        assert out.rationale == ["Stalk mode: awaiting trade development."]

    def test_hunt_mode_trails_from_peak(self):
        history = _trend(80)
        price = history[-1].close
        peak = history[-1].high
        position = _Position(Direction.LONG, price - 20, entry=price - 10, peak=peak)
        out = ChameleonAgent().manage(position, history, price, DEFAULT_AGENT_PARAMS)
        atr_stop = peak - calculate_atr(history, 14) * 2.0
        assert out.rationale == ["Hunt mode: adaptive trail updated."]
        assert position.stop_loss_price < out.new_stop_loss < price
        assert out.new_stop_loss >= atr_stop - 1e-9

    def test_hunt_mode_never_loosens(self):
        history = _trend(80)
        price = history[-1].close
        position = _Position(Direction.LONG, price - 0.01, entry=price - 10,
                             peak=history[-1].high)
        out = ChameleonAgent().manage(position, history, price, DEFAULT_AGENT_PARAMS)
        assert out.new_stop_loss is None


class TestCandlePatterns:
    def test_hammer(self):
        candle = _make_candle(1, 10.0, 10.5, 8.0, 10.5)
        assert recognize_pattern(candle, None) == ("Hammer", "bullish")

    def test_shooting_star(self):
        candle = _make_candle(1, 10.5, 12.5, 10.0, 10.0)
        assert recognize_pattern(candle, None) == ("Shooting Star", "bearish")

    def test_bullish_engulfing(self):
        prev = _make_candle(0, 10.0, 10.1, 9.4, 9.5)
        cur = _make_candle(1, 9.4, 10.3, 9.3, 10.2)
        assert recognize_pattern(cur, prev) == ("Bullish Engulfing", "bullish")


# ── HTF filter ───────────────────────────────────────────────────────────


class TestHtfFilter:
    def test_blocks_long_against_bearish_htf(self):
        htf = _trend(80, start=300.0, step=-1.0)
        allowed, reason = htf_trend_allows(Direction.LONG, htf, 50)
        assert allowed is False
        assert "bearish" in reason

    def test_allows_with_trend(self):
        htf = _trend(80)
        assert htf_trend_allows(Direction.LONG, htf, 50)[0] is True
        assert htf_trend_allows(Direction.SHORT, htf, 50)[0] is False

    def test_explicit_price_compared_to_ema(self):
        htf = _trend(80, start=300.0, step=-1.0)
        assert htf_trend_allows(Direction.LONG, htf, 50, price=1_000.0)[0] is True
        allowed, reason = htf_trend_allows(Direction.SHORT, htf, 50, price=1_000.0)
        assert allowed is False
        assert "price 1000.0000" in reason

    def test_short_or_missing_htf_never_blocks(self):
        assert htf_trend_allows(Direction.LONG, None)[0] is True
        assert htf_trend_allows(Direction.LONG, _trend(50, start=300.0, step=-1.0))[0] is True
