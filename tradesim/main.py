"""TradeSim — application entry point.

Boots the FastAPI server and provides the CLI entry point for backtest,
optimize and serve modes.
"""

import logging

from fastapi import FastAPI

from tradesim.api.routers import router

app = FastAPI(title="TradeSim Backtesting API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("tradesim")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _load_strategy(path, settings):
    import json

    from tradesim.models.strategy_config import StrategyConfig

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return StrategyConfig.from_dict(data, fee_rate=settings.taker_fee_rate)


def _run_cli(argv=None) -> int:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse

    from tradesim.config import load_settings

    parser = argparse.ArgumentParser(description="TradeSim strategy backtester")
    parser.add_argument(
        "--mode",
        choices=["backtest", "optimize", "serve"],
        default="backtest",
        help="What to run (default: backtest)",
    )
    parser.add_argument("--candles", help="CSV file of base (1m) candles")
    parser.add_argument("--htf-candles", help="CSV file of higher-timeframe candles")
    parser.add_argument("--config", help="JSON strategy configuration")
    parser.add_argument("--env", help="Path to a .env file")
    args = parser.parse_args(argv)

    settings = load_settings(args.env)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode == "serve":
        _serve(settings)
        return 0

    if not args.candles or not args.config:
        parser.error(f"--candles and --config are required in {args.mode} mode")

    from tradesim.repos.candle_repo import load_candles

    candles = load_candles(args.candles)
    htf = load_candles(args.htf_candles) if args.htf_candles else None
    config = _load_strategy(args.config, settings)

    if args.mode == "backtest":
        from tradesim.backtest.engine import run_backtest
        from tradesim.cli.report import print_report

        result = run_backtest(candles, config, htf, settings)
        print_report(result, title=f"{config.pair} {config.timeframe} {config.agent}")
        return 0

    from tradesim.backtest.optimizer import OptimizationError, run_optimization
    from tradesim.cli.report import print_optimization

    def _log_progress(progress: dict) -> None:
        logger.info(
            "Optimization progress: %.0f%% of %d",
            progress["percent"], progress["totalCombinations"],
        )

    try:
        items = run_optimization(candles, config, htf, _log_progress, settings)
    except OptimizationError as exc:
        logger.error("%s", exc)
        return 2
    print_optimization(items)
    return 0


def _serve(settings) -> None:
    """Start the API server."""
    import uvicorn

    from tradesim.api.routers import configure_routers

    configure_routers(settings)
    logger.info("TradeSim API available at http://localhost:%d", settings.api_port)
    uvicorn.run(app, host="0.0.0.0", port=settings.api_port, log_level="info")


if __name__ == "__main__":
    raise SystemExit(_run_cli())
