from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from dataclasses import replace

from ev_bot.agent import TradingAgent
from ev_bot.config import AppSettings, load_settings
from ev_bot.exchanges import KalshiClient
from ev_bot.execution import ExecutionBackend, KalshiExecution, PaperExecution
from ev_bot.forecaster import LLMForecaster
from ev_bot.logging_setup import configure_logging
from ev_bot.paper import PaperTrader

LOGGER = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Kalshi expected-value trading agent",
    )
    parser.add_argument(
        "--live",
        action="store_true",
        help="Place real orders on Kalshi instead of paper trading",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single scan cycle and exit",
    )
    parser.add_argument(
        "--scan",
        action="store_true",
        help="Forecast top candidates and print edges without trading",
    )
    parser.add_argument(
        "--scan-limit",
        type=int,
        default=15,
        help="Number of candidates to forecast in --scan mode (default: 15)",
    )
    parser.add_argument(
        "--paper-balance",
        type=float,
        default=None,
        help="Starting paper balance in dollars (overrides PAPER_BALANCE_USD)",
    )
    return parser.parse_args(argv)


def apply_cli_overrides(settings: AppSettings, args: argparse.Namespace) -> AppSettings:
    if args.live:
        settings = replace(settings, live_mode=True)
    if args.once:
        settings = replace(settings, run_once=True)
    if args.paper_balance is not None:
        settings = replace(settings, paper_balance_usd=args.paper_balance)
    return settings


def build_agent(settings: AppSettings) -> TradingAgent:
    exchange = KalshiClient(settings.kalshi)
    forecaster = LLMForecaster(settings.forecaster)

    paper_trader: PaperTrader | None = None
    execution: ExecutionBackend
    if settings.live_mode:
        if not exchange.has_credentials:
            raise RuntimeError("live mode requires KALSHI_API_KEY_ID and a private key")
        execution = KalshiExecution(exchange)
    else:
        paper_trader = PaperTrader(settings.paper_balance_usd)
        execution = PaperExecution(paper_trader)

    return TradingAgent(
        settings=settings,
        exchange=exchange,
        forecaster=forecaster,
        execution=execution,
        paper_trader=paper_trader,
    )


def _install_signal_handlers(agent: TradingAgent) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, agent.stop)
        except NotImplementedError:
            # Not available on Windows event loops.
            pass


async def _run(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = apply_cli_overrides(load_settings(), args)

    configure_logging(settings.log_level, settings.log_file)

    if not settings.forecaster.api_key:
        LOGGER.warning("ANTHROPIC_API_KEY is not set; forecasts will fail")

    agent = build_agent(settings)
    try:
        if args.scan:
            report = await agent.scan(limit=args.scan_limit)
            print("\n".join(report.lines()))
            return

        LOGGER.info(
            "bot mode=%s environment=%s interval=%ss min_edge=%.2f kelly=%.2f",
            "live" if settings.live_mode else "paper",
            settings.kalshi.environment,
            settings.trading.scan_interval_seconds,
            settings.trading.min_edge_threshold,
            settings.trading.kelly_fraction,
        )
        _install_signal_handlers(agent)
        await agent.run_forever()
    finally:
        await agent.aclose()


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
