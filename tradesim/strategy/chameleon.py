"""The Chameleon — weighted-confluence trend agent with a two-phase trail.

Implements ``AgentProtocol``.

Flow:
    1. Vetoes: weak trend (ADX), an outsized candle, or a nearby S/R level
       that leaves too little room for a minimum reward:risk.
    2. In an aligned trend (EMA9/21 and DI agree), score momentum, band
       touches, candle patterns and volume; enter at the score threshold.
    3. Open positions close on a strong reversal while in profit.  For the
       first few candles the initial stop is held ("stalk"); afterwards the
       stop trails on the tighter of an ATR-from-peak stop and the PSAR
       ("hunt").
"""

from typing import Any, Mapping, Optional

from tradesim.risk.position_sizer import MIN_RISK_REWARD_RATIO
from tradesim.strategy.base import BaseAgent
from tradesim.strategy.indicators import (
    calculate_adx,
    calculate_atr,
    calculate_bollinger,
    calculate_ema,
    calculate_psar,
    calculate_rsi,
    calculate_sma,
    last_defined,
)
from tradesim.strategy.market_structure import recognize_pattern
from tradesim.strategy.models import AgentSignal, Candle, ManagementSignal, SignalAction
from tradesim.strategy.sr_zones import detect_sr_levels

FAST_EMA = 9
SLOW_EMA = 21
VOLUME_SMA_PERIOD = 20
SR_LOOKBACK = 10
RSI_BULLISH = 55
RSI_BEARISH = 45


def _profit_potential_veto(
    history: list[Candle], price: float, stop_distance: float,
) -> Optional[str]:
    """Reason string if the next S/R level on either side is too close."""
    levels = detect_sr_levels(history, SR_LOOKBACK)
    needed = stop_distance * MIN_RISK_REWARD_RATIO
    above = [r for r in levels.resistances if r > price]
    if above and min(above) - price < needed:
        return f"VETO: insufficient R:R to next resistance (< {MIN_RISK_REWARD_RATIO}:1)"
    below = [s for s in levels.supports if s < price]
    if below and price - max(below) < needed:
        return f"VETO: insufficient R:R to next support (< {MIN_RISK_REWARD_RATIO}:1)"
    return None


def _score(factors: list[tuple[str, float, bool]]) -> tuple[float, str]:
    hits = [(label, weight) for label, weight, ok in factors if ok]
    text = ", ".join(f"{label} (+{weight:g})" for label, weight in hits)
    return sum(weight for _, weight in hits), text


class ChameleonAgent(BaseAgent):
    """Confluence-scored trend follower with adaptive trailing."""

    agent_id = "chameleon"
    name = "The Chameleon"
    min_history = 50
    optimization_ranges = {
        "ch_score_threshold": [4.0, 5.0, 6.0],
        "ch_volatility_multiplier": [1.5, 2.0, 3.0],
        "ch_breathing_room_candles": [2, 3, 5],
    }

    def required_history(self, params: Mapping[str, Any]) -> int:
        return max(
            self.min_history,
            params["ch_atr_period"] + 1,
            params["ch_bb_period"],
            params["ch_rsi_period"] + 2,
            2 * params["adx_period"] + 1,
        )

    def _evaluate(self, history: list[Candle], params: Mapping[str, Any]) -> AgentSignal:
        last = history[-1]
        price = last.close
        reasons: list[str] = []

        adx_series, pdi_series, mdi_series = calculate_adx(history, params["adx_period"])
        adx = last_defined(adx_series)
        pdi = last_defined(pdi_series)
        mdi = last_defined(mdi_series)
        if adx < params["ch_adx_threshold"]:
            reasons.append(
                f"VETO: market is not trending (ADX {adx:.1f} < {params['ch_adx_threshold']})"
            )
            return AgentSignal(SignalAction.HOLD, reasons)
        reasons.append(f"Trend strength: ADX {adx:.1f}")

        atr = calculate_atr(history, params["ch_atr_period"])
        spike = params["ch_volatility_spike_multiplier"]
        if last.high - last.low > atr * spike:
            reasons.append(f"VETO: high volatility candle (range > {spike}x ATR)")
            return AgentSignal(SignalAction.HOLD, reasons)

        if params["ch_profit_potential_enabled"]:
            veto = _profit_potential_veto(history, price, atr * params["ch_stop_atr_multiplier"])
            if veto:
                reasons.append(veto)
                return AgentSignal(SignalAction.HOLD, reasons)
            reasons.append("Profit potential: clear path to next S/R level")

        fast = last_defined(calculate_ema(history, FAST_EMA))
        slow = last_defined(calculate_ema(history, SLOW_EMA))
        rsi_series = calculate_rsi(history, params["ch_rsi_period"])
        rsi = last_defined(rsi_series)
        prev_rsi = last_defined(rsi_series[:-1])
        upper, _, lower = calculate_bollinger(
            history, params["ch_bb_period"], params["ch_bb_std_dev"],
        )
        pattern = recognize_pattern(last, history[-2])
        volumes = [c.volume for c in history]
        volume_sma = last_defined(calculate_sma(volumes, VOLUME_SMA_PERIOD))
        volume_spike = volumes[-1] > volume_sma * params["ch_volume_multiplier"]
        threshold = params["ch_score_threshold"]

        if fast > slow and pdi > mdi:
            score, factors = _score([
                ("Trend alignment", 2.0, True),
                ("RSI momentum", 1.0, rsi > RSI_BULLISH),
                ("Momentum accelerating", 1.5, rsi > prev_rsi),
                ("BB support bounce", 1.5, last.low <= last_defined(lower)),
                ("Bullish candlestick", 2.0, pattern is not None and pattern[1] == "bullish"),
                ("Volume spike", 1.0, volume_spike),
            ])
            reasons.append(f"Bullish Score: {score:.1f} / {threshold}. Factors: {factors}")
            if score >= threshold:
                return AgentSignal(SignalAction.BUY, reasons)

        if fast < slow and mdi > pdi:
            score, factors = _score([
                ("Trend alignment", 2.0, True),
                ("RSI momentum", 1.0, rsi < RSI_BEARISH),
                ("Momentum accelerating", 1.5, rsi < prev_rsi),
                ("BB resistance rejection", 1.5, last.high >= last_defined(upper)),
                ("Bearish candlestick", 2.0, pattern is not None and pattern[1] == "bearish"),
                ("Volume spike", 1.0, volume_spike),
            ])
            reasons.append(f"Bearish Score: {score:.1f} / {threshold}. Factors: {factors}")
            if score >= threshold:
                return AgentSignal(SignalAction.SELL, reasons)

        return AgentSignal(SignalAction.HOLD, reasons)

    def _manage(self, position, history, current_price, params) -> ManagementSignal:
        if len(history) < self.required_history(params):
            return ManagementSignal()
        is_long = position.is_long

        in_profit = (current_price - position.entry_price) * position.direction.sign > 0
        if in_profit:
            fast = last_defined(calculate_ema(history, FAST_EMA))
            slow = last_defined(calculate_ema(history, SLOW_EMA))
            rsi = last_defined(calculate_rsi(history, params["ch_rsi_period"]))
            _, pdi_series, mdi_series = calculate_adx(history, params["adx_period"])
            pdi, mdi = last_defined(pdi_series), last_defined(mdi_series)
            if is_long:
                reversal = fast < slow and rsi < RSI_BEARISH and mdi > pdi
            else:
                reversal = fast > slow and rsi > RSI_BULLISH and pdi > mdi
            if reversal:
                return ManagementSignal(
                    close_position=True, rationale=["Strong trend reversal detected."],
                )

        # Stalk: hold the initial stop while the trade develops
        if position.candles_since_entry < params["ch_breathing_room_candles"]:
            initial = position.initial_stop_loss
            if (initial - position.stop_loss_price) * position.direction.sign > 0:
                return ManagementSignal(
                    new_stop_loss=initial, rationale=["Stalk mode: maintaining initial stop."],
                )
            return ManagementSignal(rationale=["Stalk mode: awaiting trade development."])

        # Hunt: tightest safe stop among ATR-from-peak and PSAR
        atr = calculate_atr(history, params["ch_atr_period"])
        offset = atr * params["ch_volatility_multiplier"]
        candidates = [
            position.peak_price - offset if is_long else position.peak_price + offset,
            last_defined(calculate_psar(history, params["ch_psar_step"], params["ch_psar_max"])),
        ]
        if is_long:
            valid = [p for p in candidates if position.stop_loss_price < p < current_price]
            best = max(valid, default=None)
        else:
            valid = [p for p in candidates if current_price < p < position.stop_loss_price]
            best = min(valid, default=None)
        if best is None:
            return ManagementSignal(rationale=["Hunt mode: no adaptive stop update needed."])
        return ManagementSignal(new_stop_loss=best, rationale=["Hunt mode: adaptive trail updated."])
