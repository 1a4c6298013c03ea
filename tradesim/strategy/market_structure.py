"""Market Structure Maven — trades pullbacks to swing-point S/R with the trend.

Implements ``AgentProtocol``.  A long-period EMA sets the bias; entries
fire when price sits within half an ATR of the strongest support (bullish
bias) or resistance (bearish bias), optionally waiting for a confirming
candlestick pattern.
"""

from typing import Any, Mapping, Optional

from tradesim.strategy.base import BaseAgent
from tradesim.strategy.indicators import calculate_atr, calculate_ema, last_defined
from tradesim.strategy.models import AgentSignal, Candle, SignalAction
from tradesim.strategy.sr_zones import detect_sr_levels


def recognize_pattern(candle: Candle, prev: Optional[Candle]) -> Optional[tuple[str, str]]:
    """Return ``(name, "bullish"|"bearish")`` for a reversal pattern, else None."""
    body = abs(candle.close - candle.open)
    full_range = candle.high - candle.low
    if full_range <= 0:
        return None
    upper_wick = candle.high - max(candle.open, candle.close)
    lower_wick = min(candle.open, candle.close) - candle.low

    if body <= full_range * 0.35:
        if lower_wick >= 2 * body and upper_wick <= body:
            return ("Hammer", "bullish")
        if upper_wick >= 2 * body and lower_wick <= body:
            return ("Shooting Star", "bearish")

    if prev is not None:
        if (candle.close > candle.open and prev.close < prev.open
                and candle.close > prev.open and candle.open < prev.close):
            return ("Bullish Engulfing", "bullish")
        if (candle.close < candle.open and prev.close > prev.open
                and candle.open > prev.close and candle.close < prev.open):
            return ("Bearish Engulfing", "bearish")
    return None


class MarketStructureAgent(BaseAgent):
    """Trend-biased swing-point pullback agent."""

    agent_id = "market_structure"
    name = "Market Structure Maven"
    min_history = 50
    optimization_ranges = {
        "msm_htf_ema_period": [50, 80, 120],
        "msm_swing_point_lookback": [5, 10, 15],
        "is_candle_confirmation_enabled": [False, True],
    }

    def required_history(self, params: Mapping[str, Any]) -> int:
        return max(self.min_history, params["msm_htf_ema_period"], params["atr_period"] + 1)

    def _evaluate(self, history: list[Candle], params: Mapping[str, Any]) -> AgentSignal:
        price = history[-1].close
        reasons: list[str] = []

        ema_bias = last_defined(calculate_ema(history, params["msm_htf_ema_period"]))
        bullish = price > ema_bias
        reasons.append("Trend bias: bullish" if bullish else "Trend bias: bearish")

        levels = detect_sr_levels(history, params["msm_swing_point_lookback"])
        proximity = calculate_atr(history, params["atr_period"]) * 0.5

        confirm = params["is_candle_confirmation_enabled"]
        pattern = recognize_pattern(history[-1], history[-2]) if confirm else None

        if bullish:
            if not levels.supports:
                reasons.append("No support levels found")
                return AgentSignal(SignalAction.HOLD, reasons)
            near = abs(price - levels.supports[0]) <= proximity
            reasons.append("Price in support zone" if near else "Price not near key support")
            if near:
                if not confirm:
                    return AgentSignal(SignalAction.BUY, reasons)
                if pattern and pattern[1] == "bullish":
                    reasons.append(f"Confirmed by {pattern[0]}")
                    return AgentSignal(SignalAction.BUY, reasons)
                reasons.append("Awaiting bullish candle confirmation")
        else:
            if not levels.resistances:
                reasons.append("No resistance levels found")
                return AgentSignal(SignalAction.HOLD, reasons)
            near = abs(price - levels.resistances[0]) <= proximity
            reasons.append("Price in resistance zone" if near else "Price not near key resistance")
            if near:
                if not confirm:
                    return AgentSignal(SignalAction.SELL, reasons)
                if pattern and pattern[1] == "bearish":
                    reasons.append(f"Confirmed by {pattern[0]}")
                    return AgentSignal(SignalAction.SELL, reasons)
                reasons.append("Awaiting bearish candle confirmation")

        return AgentSignal(SignalAction.HOLD, reasons)
