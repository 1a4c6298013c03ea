"""TradeSim — application settings.

Loads .env variables into a typed settings object.
Validates numeric variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """Typed settings loaded from environment variables."""

    log_level: str = "INFO"
    api_port: int = 8080
    starting_capital: float = 10_000.0
    warmup_candles: int = 200
    taker_fee_rate: float = 0.001
    max_optimization_combinations: int = 250
    optimizer_workers: int = 1  # >1 runs combinations in a process pool


def _env(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from exc


def load_settings(env_path: str | None = None) -> Settings:
    """Load settings from environment variables.

    Raises ``ValueError`` with a message naming the variable when a value
    cannot be parsed or is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    settings = Settings(
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_env("API_PORT", "8080", int),
        starting_capital=_env("STARTING_CAPITAL", "10000", float),
        warmup_candles=_env("WARMUP_CANDLES", "200", int),
        taker_fee_rate=_env("TAKER_FEE_RATE", "0.001", float),
        max_optimization_combinations=_env("MAX_OPTIMIZATION_COMBINATIONS", "250", int),
        optimizer_workers=_env("OPTIMIZER_WORKERS", "1", int),
    )

    if settings.starting_capital <= 0:
        raise ValueError("STARTING_CAPITAL must be positive")
    if settings.warmup_candles < 1:
        raise ValueError("WARMUP_CANDLES must be at least 1")
    if settings.taker_fee_rate < 0:
        raise ValueError("TAKER_FEE_RATE must be non-negative")
    if settings.max_optimization_combinations < 1:
        raise ValueError("MAX_OPTIMIZATION_COMBINATIONS must be at least 1")
    if settings.optimizer_workers < 1:
        raise ValueError("OPTIMIZER_WORKERS must be at least 1")
    return settings
