"""Quantum Scalper — regime-switching score agent with a PSAR trail.

Implements ``AgentProtocol``.

Flow:
    1. ADX decides the regime; readings inside the chop band veto entries.
    2. Trending: score EMA alignment, DI dominance and RSI momentum.
    3. Ranging: score Bollinger band breaches and RSI extremes.
    4. Open positions trail their stop on the Parabolic SAR.
"""

from typing import Any, Mapping

from tradesim.strategy.base import BaseAgent
from tradesim.strategy.indicators import (
    calculate_adx,
    calculate_bollinger,
    calculate_ema,
    calculate_psar,
    calculate_rsi,
    last_defined,
)
from tradesim.strategy.models import AgentSignal, Candle, ManagementSignal, SignalAction


class QuantumScalperAgent(BaseAgent):
    """Adaptive trend/range scalper."""

    agent_id = "quantum_scalper"
    name = "Quantum Scalper"
    min_history = 50
    optimization_ranges = {
        "qsc_adx_threshold": [18, 20, 25],
        "qsc_fast_ema_period": [7, 9, 12],
        "qsc_slow_ema_period": [21, 26],
        "qsc_psar_step": [0.02, 0.03],
    }

    def required_history(self, params: Mapping[str, Any]) -> int:
        return max(
            self.min_history,
            2 * params["qsc_adx_period"] + 1,
            params["qsc_slow_ema_period"],
            params["qsc_bb_period"],
        )

    def _evaluate(self, history: list[Candle], params: Mapping[str, Any]) -> AgentSignal:
        price = history[-1].close
        reasons: list[str] = []

        adx_series, pdi_series, mdi_series = calculate_adx(history, params["qsc_adx_period"])
        adx = last_defined(adx_series)
        pdi = last_defined(pdi_series)
        mdi = last_defined(mdi_series)

        threshold = params["qsc_adx_threshold"]
        buffer = params["qsc_adx_chop_buffer"]
        if threshold - buffer < adx < threshold + buffer:
            reasons.append(
                f"VETO: market is choppy (ADX {adx:.1f} in "
                f"{threshold - buffer}-{threshold + buffer} zone)"
            )
            return AgentSignal(SignalAction.HOLD, reasons)

        rsi = last_defined(calculate_rsi(history, params["rsi_period"]))

        if adx > threshold:
            reasons.append(f"Regime: trending (ADX {adx:.1f})")
            ema_fast = last_defined(calculate_ema(history, params["qsc_fast_ema_period"]))
            ema_slow = last_defined(calculate_ema(history, params["qsc_slow_ema_period"]))
            bull = [ema_fast > ema_slow, pdi > mdi, rsi > 50]
            bear = [ema_fast < ema_slow, mdi > pdi, rsi < 50]
            reasons.append(f"Bullish score: {sum(bull)}/{params['qsc_trend_score_threshold']}")
            if sum(bull) >= params["qsc_trend_score_threshold"]:
                return AgentSignal(SignalAction.BUY, reasons)
            reasons.append(f"Bearish score: {sum(bear)}/{params['qsc_trend_score_threshold']}")
            if sum(bear) >= params["qsc_trend_score_threshold"]:
                return AgentSignal(SignalAction.SELL, reasons)
            return AgentSignal(SignalAction.HOLD, reasons)

        reasons.append(f"Regime: ranging (ADX {adx:.1f})")
        upper, _, lower = calculate_bollinger(
            history, params["qsc_bb_period"], params["qsc_bb_std_dev"],
        )
        bull = [price < last_defined(lower), rsi < params["qsc_rsi_oversold"]]
        bear = [price > last_defined(upper), rsi > params["qsc_rsi_overbought"]]
        reasons.append(f"Reversal buy score: {sum(bull)}/{params['qsc_range_score_threshold']}")
        if sum(bull) >= params["qsc_range_score_threshold"]:
            return AgentSignal(SignalAction.BUY, reasons)
        reasons.append(f"Reversal sell score: {sum(bear)}/{params['qsc_range_score_threshold']}")
        if sum(bear) >= params["qsc_range_score_threshold"]:
            return AgentSignal(SignalAction.SELL, reasons)
        return AgentSignal(SignalAction.HOLD, reasons)

    def _manage(self, position, history, current_price, params) -> ManagementSignal:
        sar = last_defined(calculate_psar(history, params["qsc_psar_step"], params["qsc_psar_max"]))
        if position.is_long and position.stop_loss_price < sar < current_price:
            return ManagementSignal(new_stop_loss=sar, rationale=["Agent PSAR trail"])
        if not position.is_long and current_price < sar < position.stop_loss_price:
            return ManagementSignal(new_stop_loss=sar, rationale=["Agent PSAR trail"])
        return ManagementSignal()
