"""SignalForge — CLI entry point.

Modes:
    signals   one analysis round over the configured symbols
    scan      periodic CRT scanner printing signals as they arrive
    smc       driver → confirmation → entry top-down confirmation per symbol
    backtest  replay a CSV (or fetched) candle series through a detector
"""

import logging

from signalforge.errors import InvalidConfigurationError

logger = logging.getLogger("signalforge")


def build_source(config):
    """Pick the Candle Source: the HTTP API when configured, synthetic
    candles only in demo mode."""
    from signalforge.data.source import HttpCandleSource, SyntheticCandleSource

    if config.has_candle_api:
        return HttpCandleSource(
            config.candle_api_url,
            token=config.candle_api_token,
            timeout=config.candle_api_timeout,
        )
    if config.demo_mode:
        logger.warning("No CANDLE_API_URL set; DEMO MODE uses synthetic candles.")
        return SyntheticCandleSource()
    raise InvalidConfigurationError(
        "CANDLE_API_URL is not set. Configure it or set DEMO_MODE=true."
    )


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli(argv=None) -> int:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio

    from signalforge.config import load_config

    parser = argparse.ArgumentParser(description="SignalForge signal pipeline")
    parser.add_argument(
        "--mode",
        choices=["signals", "scan", "smc", "backtest"],
        default="signals",
        help="Run mode (default: signals)",
    )
    parser.add_argument("--symbol", help="Single symbol (default: SYMBOLS from env)")
    parser.add_argument("--timeframe", help="Analysis timeframe")
    parser.add_argument("--profile", help="Strategy profile (default: DEFAULT_PROFILE)")
    parser.add_argument("--csv", help="Backtest candle CSV")
    parser.add_argument("--detector", default="crt", help="Backtest detector (default: crt)")
    parser.add_argument("--max-scans", type=int, default=0,
                        help="Stop the scanner after N scans (0 = run until Ctrl+C)")
    args = parser.parse_args(argv)

    try:
        config = load_config()
    except InvalidConfigurationError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.error("Invalid configuration: %s", exc)
        return 2
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    symbols = [args.symbol] if args.symbol else list(config.symbols)
    profile = args.profile or config.default_profile

    try:
        if args.mode == "backtest":
            _run_backtest(config, symbols[0], args.timeframe or "1h", args.detector, args.csv)
        elif args.mode == "scan":
            asyncio.run(_run_scan(config, symbols, args.timeframe, args.max_scans))
        elif args.mode == "smc":
            asyncio.run(_run_smc(config, symbols))
        else:
            asyncio.run(_run_signals(config, symbols, args.timeframe, profile))
    except InvalidConfigurationError as exc:
        logger.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    return 0


async def _run_signals(config, symbols, timeframe, profile_name) -> None:
    from signalforge.models.strategy_profile import get_profile
    from signalforge.pipeline import SignalPipeline
    from signalforge.risk.service import LocalRiskService

    profile = get_profile(profile_name)
    timeframe = timeframe or profile.timeframes[0]
    risk = LocalRiskService(
        capital=config.initial_capital,
        risk_per_trade=config.risk_per_trade,
        max_daily_loss=config.max_daily_loss,
        max_daily_trades=config.max_daily_trades,
        min_risk_reward=config.min_risk_reward,
    )
    pipeline = SignalPipeline(
        build_source(config),
        risk_service=risk,
        concurrency=config.scan_batch_size,
    )
    results = await pipeline.analyze_many([(s, timeframe) for s in symbols], profile)
    for result in results:
        logger.info("%s %s: %d signal(s) [%s]", result.symbol, result.timeframe,
                    len(result.signals), result.status)
        for signal in result.signals:
            print(signal.to_dict())


async def _run_scan(config, symbols, timeframe, max_scans) -> None:
    import signal as signals_mod

    from signalforge.scanner import CRTScanner

    scanner = CRTScanner(
        build_source(config),
        symbols,
        timeframe=timeframe or config.scan_timeframe,
        batch_size=config.scan_batch_size,
        interval_seconds=config.scan_interval_seconds,
        min_confidence=config.scan_min_confidence,
        min_risk_reward=config.scan_min_risk_reward,
    )
    scanner.channel.on_signal(lambda s: print(s.to_dict()))

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received, stopping after current scan.")
        scanner.stop()

    signals_mod.signal(signals_mod.SIGINT, handle_shutdown)
    counts = await scanner.run(max_scans=max_scans)
    logger.info("Scanner stopped after %d scan(s), %d signal(s).", len(counts), sum(counts))


async def _run_smc(config, symbols) -> None:
    import asyncio

    from signalforge.strategy.smc import SMCStrategy

    strategy = SMCStrategy(
        build_source(config),
        config.driver_timeframe,
        config.confirmation_timeframe,
        config.entry_timeframe,
    )
    results = await asyncio.gather(
        *(strategy.evaluate(s) for s in symbols), return_exceptions=True,
    )
    for symbol, result in zip(symbols, results):
        if isinstance(result, Exception):
            logger.error("SMC %s failed: %s", symbol, result)
            continue
        logger.info("%s %s/%s/%s: %d signal(s)", symbol, config.driver_timeframe,
                    config.confirmation_timeframe, config.entry_timeframe, len(result))
        for signal in result:
            print(signal.to_dict())


def _run_backtest(config, symbol, timeframe, detector_name, csv_path) -> None:
    import asyncio

    from signalforge.backtest.engine import BacktestConfig, BacktestEngine, DetectorStrategy
    from signalforge.data.source import load_candles_csv
    from signalforge.strategy.registry import get_detector

    detector = get_detector(detector_name)
    if csv_path:
        candles = load_candles_csv(csv_path)
    else:
        candles = asyncio.run(build_source(config).fetch(symbol, timeframe, 5000))

    engine = BacktestEngine(BacktestConfig(
        initial_capital=config.initial_capital,
        risk_per_trade=config.risk_per_trade,
        lookback=config.backtest_lookback,
    ))
    report = engine.run(DetectorStrategy(detector, timeframe), candles, symbol)
    print(report.format_report())


if __name__ == "__main__":
    raise SystemExit(_run_cli())
