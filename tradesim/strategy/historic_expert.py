"""Historic Expert — SMA trend filter, EMA crossover trigger, RSI confirmation."""

from typing import Any, Mapping

from tradesim.strategy.base import BaseAgent
from tradesim.strategy.indicators import calculate_ema, calculate_rsi, calculate_sma, last_defined
from tradesim.strategy.models import AgentSignal, Candle, SignalAction


class HistoricExpertAgent(BaseAgent):
    """Crossover agent that only trades in the direction of the SMA trend."""

    agent_id = "historic_expert"
    name = "Historic Expert"
    min_history = 30
    optimization_ranges = {
        "he_trend_sma_period": [20, 30, 40],
        "he_fast_ema_period": [7, 9, 12],
        "he_slow_ema_period": [20, 25],
        "he_rsi_period": [10, 14],
        "he_rsi_midline": [48, 50, 52],
    }

    def required_history(self, params: Mapping[str, Any]) -> int:
        # +1 so the previous EMA values exist for crossover detection
        return max(
            self.min_history,
            params["he_trend_sma_period"],
            params["he_slow_ema_period"],
            params["he_rsi_period"],
        ) + 1

    def _evaluate(self, history: list[Candle], params: Mapping[str, Any]) -> AgentSignal:
        price = history[-1].close
        reasons: list[str] = []

        trend_sma = last_defined(
            calculate_sma([c.close for c in history], params["he_trend_sma_period"])
        )
        bullish_trend = price > trend_sma
        bearish_trend = price < trend_sma
        reasons.append(
            f"Trend: {'bullish' if bullish_trend else 'bearish'} "
            f"(price vs {params['he_trend_sma_period']}-SMA)"
        )

        fast = calculate_ema(history, params["he_fast_ema_period"])
        slow = calculate_ema(history, params["he_slow_ema_period"])
        fast_now, slow_now = last_defined(fast), last_defined(slow)
        fast_prev, slow_prev = last_defined(fast[:-1]), last_defined(slow[:-1])
        bullish_cross = fast_now > slow_now and fast_prev <= slow_prev
        bearish_cross = fast_now < slow_now and fast_prev >= slow_prev
        if bullish_cross:
            reasons.append("Trigger: bullish EMA crossover")
        elif bearish_cross:
            reasons.append("Trigger: bearish EMA crossover")
        else:
            reasons.append("Trigger: no EMA crossover")

        rsi = last_defined(calculate_rsi(history, params["he_rsi_period"]))
        midline = params["he_rsi_midline"]
        reasons.append(f"Momentum: RSI is {rsi:.1f}")

        if bullish_trend and bullish_cross:
            if rsi > midline:
                reasons.append(f"Momentum: RSI > {midline}")
                return AgentSignal(SignalAction.BUY, reasons)
            reasons.append(f"Momentum: RSI not above {midline}")
        if bearish_trend and bearish_cross:
            if rsi < midline:
                reasons.append(f"Momentum: RSI < {midline}")
                return AgentSignal(SignalAction.SELL, reasons)
            reasons.append(f"Momentum: RSI not below {midline}")
        return AgentSignal(SignalAction.HOLD, reasons)
