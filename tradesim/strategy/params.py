"""Agent parameter defaults and layered resolution.

Effective parameters are built from three layers, later layers winning:

    defaults  ←  timeframe-adaptive overrides  ←  user overrides

``resolve_params`` performs the merge as a pure function and returns a
read-only mapping, so every run sees one frozen parameter set.
"""

import logging
from types import MappingProxyType
from typing import Any, Mapping, Optional

logger = logging.getLogger("tradesim.params")


DEFAULT_AGENT_PARAMS: dict[str, Any] = {
    # General — shared by agents and the target calculator
    "atr_period": 14,
    "rsi_period": 14,
    "adx_period": 14,
    "macd_fast_period": 12,
    "macd_slow_period": 26,
    "macd_signal_period": 9,
    "sr_lookback": 15,
    "use_sr_targets": True,
    "partial_tp_levels": (),
    "invalidation_candle_limit": 10,
    "htf_ema_period": 50,

    # Market Structure Maven
    "msm_htf_ema_period": 200,
    "msm_swing_point_lookback": 5,
    "is_candle_confirmation_enabled": False,

    # Quantum Scalper
    "qsc_fast_ema_period": 9,
    "qsc_slow_ema_period": 21,
    "qsc_adx_period": 10,
    "qsc_adx_threshold": 20,
    "qsc_adx_chop_buffer": 2,
    "qsc_bb_period": 20,
    "qsc_bb_std_dev": 2.0,
    "qsc_rsi_oversold": 30,
    "qsc_rsi_overbought": 70,
    "qsc_trend_score_threshold": 3,
    "qsc_range_score_threshold": 2,
    "qsc_psar_step": 0.02,
    "qsc_psar_max": 0.2,

    # Historic Expert
    "he_trend_sma_period": 30,
    "he_fast_ema_period": 9,
    "he_slow_ema_period": 21,
    "he_rsi_period": 14,
    "he_rsi_midline": 50,

    # The Sentinel
    "sentinel_volume_sma_period": 20,
    "sentinel_volume_multiplier": 1.5,
    "sentinel_rsi_overbought": 70,
    "sentinel_rsi_oversold": 30,

    # The Chameleon
    "ch_atr_period": 14,
    "ch_rsi_period": 14,
    "ch_bb_period": 20,
    "ch_bb_std_dev": 2.0,
    "ch_adx_threshold": 20,
    "ch_volatility_spike_multiplier": 3.0,
    "ch_volume_multiplier": 1.5,
    "ch_score_threshold": 5.0,
    "ch_profit_potential_enabled": True,
    "ch_stop_atr_multiplier": 1.5,
    "ch_psar_step": 0.02,
    "ch_psar_max": 0.2,
    "ch_volatility_multiplier": 2.0,
    "ch_breathing_room_candles": 3,
}


# Shorter timeframes react faster and demand cleaner trends; longer ones
# give trades more candles before invalidation.
TIMEFRAME_ADAPTIVE_SETTINGS: dict[str, dict[str, Any]] = {
    "1m": {
        "invalidation_candle_limit": 20,
        "qsc_adx_threshold": 25,
        "sentinel_volume_multiplier": 2.0,
    },
    "3m": {"invalidation_candle_limit": 15, "qsc_adx_threshold": 23},
    "5m": {"invalidation_candle_limit": 12, "qsc_adx_threshold": 22},
    "15m": {},
    "1h": {"invalidation_candle_limit": 8, "msm_swing_point_lookback": 7},
    "4h": {"invalidation_candle_limit": 6, "qsc_adx_threshold": 18},
    "1d": {
        "invalidation_candle_limit": 5,
        "qsc_adx_threshold": 18,
        "msm_htf_ema_period": 100,
    },
}


def resolve_params(
    defaults: Mapping[str, Any],
    timeframe_overrides: Optional[Mapping[str, Any]] = None,
    user_overrides: Optional[Mapping[str, Any]] = None,
) -> Mapping[str, Any]:
    """Merge the three parameter layers into one immutable mapping.

    Keys absent from *defaults* are still accepted (agents may read
    parameters they introduce themselves) but are logged at debug level
    so typos are traceable.
    """
    merged = dict(defaults)
    for layer in (timeframe_overrides or {}, user_overrides or {}):
        for key, value in layer.items():
            if key not in defaults:
                logger.debug("Parameter %r has no default", key)
            merged[key] = value
    return MappingProxyType(merged)


def effective_params(
    timeframe: str,
    user_overrides: Optional[Mapping[str, Any]] = None,
) -> Mapping[str, Any]:
    """Resolve parameters for *timeframe* against the built-in tables."""
    return resolve_params(
        DEFAULT_AGENT_PARAMS,
        TIMEFRAME_ADAPTIVE_SETTINGS.get(timeframe),
        user_overrides,
    )
