"""The Sentinel — MACD/RSI momentum scalper with a volume-spike gate.

Implements ``AgentProtocol``.  Exits are discretionary: ``manage`` asks
for a close on a reverse MACD crossover or an RSI extreme.
"""

from typing import Any, Mapping

from tradesim.strategy.base import BaseAgent
from tradesim.strategy.indicators import calculate_macd, calculate_rsi, calculate_sma, last_defined
from tradesim.strategy.models import AgentSignal, Candle, ManagementSignal, SignalAction


def _macd_cross(history: list[Candle], params: Mapping[str, Any]) -> tuple[bool, bool]:
    """Return ``(bullish_cross, bearish_cross)`` on the latest candle."""
    macd, signal = calculate_macd(
        history,
        params["macd_fast_period"],
        params["macd_slow_period"],
        params["macd_signal_period"],
    )
    m_now, s_now = last_defined(macd), last_defined(signal)
    m_prev, s_prev = last_defined(macd[:-1]), last_defined(signal[:-1])
    return (
        m_now > s_now and m_prev <= s_prev,
        m_now < s_now and m_prev >= s_prev,
    )


class SentinelAgent(BaseAgent):
    """Momentum-crossover agent with discretionary exits."""

    agent_id = "sentinel"
    name = "The Sentinel"
    min_history = 40
    optimization_ranges = {
        "rsi_period": [10, 14, 20],
        "sentinel_volume_multiplier": [1.2, 1.5, 2.0],
        "macd_fast_period": [8, 12],
    }

    def required_history(self, params: Mapping[str, Any]) -> int:
        return max(
            self.min_history,
            params["macd_slow_period"] + params["macd_signal_period"],
            params["rsi_period"] + 1,
            params["sentinel_volume_sma_period"],
        )

    def _evaluate(self, history: list[Candle], params: Mapping[str, Any]) -> AgentSignal:
        reasons: list[str] = []
        bullish_cross, bearish_cross = _macd_cross(history, params)
        rsi = last_defined(calculate_rsi(history, params["rsi_period"]))

        volumes = [c.volume for c in history]
        volume_sma = last_defined(calculate_sma(volumes, params["sentinel_volume_sma_period"]))
        volume_spike = volumes[-1] > volume_sma * params["sentinel_volume_multiplier"]

        reasons.append("MACD bullish crossover" if bullish_cross else "No bullish crossover")
        reasons.append(f"RSI {'>' if rsi > 50 else 'not >'} 50 ({rsi:.1f})")
        reasons.append("Volume spike confirmed" if volume_spike else "No volume spike")
        if bullish_cross and rsi > 50 and volume_spike:
            return AgentSignal(SignalAction.BUY, reasons)

        reasons.append("MACD bearish crossover" if bearish_cross else "No bearish crossover")
        reasons.append(f"RSI {'<' if rsi < 50 else 'not <'} 50 ({rsi:.1f})")
        if bearish_cross and rsi < 50 and volume_spike:
            return AgentSignal(SignalAction.SELL, reasons)
        return AgentSignal(SignalAction.HOLD, reasons)

    def _manage(self, position, history, current_price, params) -> ManagementSignal:
        if len(history) < self.required_history(params):
            return ManagementSignal()
        bullish_cross, bearish_cross = _macd_cross(history, params)
        rsi = last_defined(calculate_rsi(history, params["rsi_period"]))

        reasons: list[str] = []
        if position.is_long:
            if bearish_cross:
                reasons.append("Momentum fading: MACD bearish crossover.")
            if rsi > params["sentinel_rsi_overbought"]:
                reasons.append(f"Market overbought: RSI > {params['sentinel_rsi_overbought']}.")
        else:
            if bullish_cross:
                reasons.append("Momentum fading: MACD bullish crossover.")
            if rsi < params["sentinel_rsi_oversold"]:
                reasons.append(f"Market oversold: RSI < {params['sentinel_rsi_oversold']}.")
        return ManagementSignal(close_position=bool(reasons), rationale=reasons)
