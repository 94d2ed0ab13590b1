"""Cycle driver tying market data, forecasts, risk and execution together."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable

from ev_bot.config import AppSettings
from ev_bot.edge_detector import EdgeDetector
from ev_bot.exchanges import ExchangeAdapter
from ev_bot.execution import ExecutionBackend
from ev_bot.forecaster import LLMForecaster
from ev_bot.market_filter import (
    filter_candidates,
    has_tight_spread,
    is_forecastable,
    select_diverse_candidates,
)
from ev_bot.models import (
    ArbitrageKind,
    ArbitrageOpportunity,
    Contract,
    ContractStatus,
    Edge,
    Resolution,
    Side,
    TradeRecord,
    TradeSignal,
)
from ev_bot.paper import PaperTrader
from ev_bot.risk import RiskManager, RiskState

LOGGER = logging.getLogger(__name__)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class CycleReport:
    started_at: datetime
    ended_at: datetime
    contracts_count: int = 0
    candidates_count: int = 0
    forecasts_count: int = 0
    edges: tuple[Edge, ...] = ()
    arbitrage: tuple[ArbitrageOpportunity, ...] = ()
    signals: tuple[TradeSignal, ...] = ()
    records: tuple[TradeRecord, ...] = ()
    settled_pnl: float = 0.0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def filled_count(self) -> int:
        return sum(1 for record in self.records if record.filled)


@dataclass(frozen=True)
class ScanReport:
    contracts_count: int
    candidates: tuple[Contract, ...]
    edges: tuple[Edge, ...]
    arbitrage: tuple[ArbitrageOpportunity, ...]

    def lines(self, max_edges: int = 10) -> list[str]:
        rule = "=" * 70
        lines = [rule, "  MARKET SCAN RESULTS", rule]
        if self.edges:
            lines.append(f"  TOP EDGES ({len(self.edges)} found):")
            for edge in self.edges[:max_edges]:
                lines.append(
                    f"  {edge.side.value.upper():<4} {edge.ticker:<35} "
                    f"Model: {edge.model_prob * 100:.1f}% | "
                    f"Market: {edge.market_prob * 100:.1f}% | "
                    f"Edge: +{edge.edge * 100:.1f}% | "
                    f"EV: {edge.expected_value * 100:.1f}%"
                )
        else:
            lines.append("  No edges found above threshold.")
        if self.arbitrage:
            lines.append(f"  ARBITRAGE ANOMALIES ({len(self.arbitrage)} found):")
            for opportunity in self.arbitrage:
                marker = "ARB " if opportunity.kind is ArbitrageKind.GUARANTEED_PROFIT else "WIDE"
                lines.append(
                    f"  {marker} {opportunity.ticker:<35} "
                    f"YES: {opportunity.yes_ask}c + NO: {opportunity.no_ask}c = {opportunity.total}c"
                )
        lines.append(rule)
        return lines


@dataclass
class _CycleProgress:
    started_at: datetime
    contracts_count: int = 0
    candidates_count: int = 0
    forecasts_count: int = 0
    edges: list[Edge] = field(default_factory=list)
    arbitrage: list[ArbitrageOpportunity] = field(default_factory=list)
    signals: list[TradeSignal] = field(default_factory=list)
    records: list[TradeRecord] = field(default_factory=list)
    settled_pnl: float = 0.0

    def report(self, error: str | None = None) -> CycleReport:
        return CycleReport(
            started_at=self.started_at,
            ended_at=datetime.now(timezone.utc),
            contracts_count=self.contracts_count,
            candidates_count=self.candidates_count,
            forecasts_count=self.forecasts_count,
            edges=tuple(self.edges),
            arbitrage=tuple(self.arbitrage),
            signals=tuple(self.signals),
            records=tuple(self.records),
            settled_pnl=self.settled_pnl,
            error=error,
        )


class TradingAgent:
    """Runs scan cycles against one exchange and one execution back end.

    The agent owns the risk state and, in paper mode, the ledger; neither is
    safe to share across concurrently running agents.
    """

    def __init__(
        self,
        settings: AppSettings,
        exchange: ExchangeAdapter,
        forecaster: LLMForecaster,
        execution: ExecutionBackend,
        paper_trader: PaperTrader | None = None,
        edge_detector: EdgeDetector | None = None,
        risk_manager: RiskManager | None = None,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._settings = settings
        self._exchange = exchange
        self._forecaster = forecaster
        self._execution = execution
        self._paper_trader = paper_trader
        self._edge_detector = edge_detector or EdgeDetector(settings.trading.min_edge_threshold)
        self._risk = risk_manager or RiskManager(settings.trading)
        self._risk_state = self._risk.new_state()
        self._today = today
        self._current_day = today()
        self._stop_event = asyncio.Event()
        LOGGER.info("trading agent initialized in %s mode", execution.mode.upper())

    @property
    def risk_state(self) -> RiskState:
        return self._risk_state

    @property
    def mode(self) -> str:
        return self._execution.mode

    def stop(self) -> None:
        if not self._stop_event.is_set():
            LOGGER.info("agent stopping after current cycle")
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    async def run_forever(self, run_once: bool | None = None) -> None:
        single = self._settings.run_once if run_once is None else run_once
        interval = max(0, self._settings.trading.scan_interval_seconds)
        LOGGER.info("agent starting, scanning every %ss", interval)

        while not self._stop_event.is_set():
            await self.run_cycle()
            if self._paper_trader is not None:
                self._paper_trader.log_summary()
            if single:
                return

            LOGGER.info("sleeping %ss until next cycle", interval)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self) -> CycleReport:
        progress = _CycleProgress(started_at=datetime.now(timezone.utc))
        LOGGER.info("--- starting scan cycle ---")
        try:
            await self._cycle(progress)
        except Exception as exc:
            LOGGER.exception("cycle failed: %s", exc)
            return progress.report(error=str(exc) or type(exc).__name__)
        return progress.report()

    async def _cycle(self, progress: _CycleProgress) -> None:
        self._roll_daily_counters()
        progress.settled_pnl = await self._settle_resolved_positions()

        contracts = await self._exchange.fetch_open_contracts()
        progress.contracts_count = len(contracts)
        LOGGER.info("fetched %d open markets", len(contracts))

        trading = self._settings.trading
        candidates = filter_candidates(contracts, trading.market_categories, trading.min_volume)
        progress.candidates_count = len(candidates)
        LOGGER.info("filtered to %d candidate markets", len(candidates))

        progress.arbitrage = self._edge_detector.find_arbitrage_opportunities(contracts)
        for opportunity in progress.arbitrage:
            LOGGER.info(
                "ARB: %s YES %dc + NO %dc = %dc (%s)",
                opportunity.ticker,
                opportunity.yes_ask,
                opportunity.no_ask,
                opportunity.total,
                opportunity.kind.value,
            )

        if not candidates:
            LOGGER.info("no candidate markets found, skipping cycle")
            return

        forecastable = [
            contract
            for contract in candidates
            if is_forecastable(contract) and has_tight_spread(contract, trading.max_spread_cents)
        ]
        selected = select_diverse_candidates(forecastable, trading.max_forecasts_per_cycle)
        estimates = await self._forecaster.forecast_batch(selected)
        progress.forecasts_count = len(estimates)

        progress.edges = self._edge_detector.detect_edges(selected, estimates)
        if not progress.edges:
            LOGGER.info("no edges found above threshold")
            return

        portfolio = await self._execution.portfolio_snapshot()
        progress.signals = self._risk.generate_signals(progress.edges, portfolio, self._risk_state)

        for signal in progress.signals:
            try:
                record = await self._execution.execute(signal)
            except Exception as exc:
                LOGGER.error("order failed for %s: %s", signal.ticker, exc)
                continue
            progress.records.append(record)

        LOGGER.info(
            "--- cycle complete: %d signals, %d filled ---",
            len(progress.signals),
            sum(1 for record in progress.records if record.filled),
        )

    async def scan(self, limit: int = 15) -> ScanReport:
        """Forecast the top candidates and report edges without trading."""
        contracts = await self._exchange.fetch_open_contracts()
        LOGGER.info("found %d open markets", len(contracts))

        trading = self._settings.trading
        candidates = [
            contract
            for contract in filter_candidates(contracts, trading.market_categories, trading.min_volume)
            if is_forecastable(contract)
        ]
        selected = select_diverse_candidates(candidates, limit)
        LOGGER.info("forecasting %d candidates", len(selected))

        estimates = await self._forecaster.forecast_batch(selected)
        edges = self._edge_detector.detect_edges(selected, estimates)
        arbitrage = self._edge_detector.find_arbitrage_opportunities(contracts)
        return ScanReport(
            contracts_count=len(contracts),
            candidates=tuple(selected),
            edges=tuple(edges),
            arbitrage=tuple(arbitrage),
        )

    async def aclose(self) -> None:
        await self._exchange.aclose()

    def _roll_daily_counters(self) -> None:
        today = self._today()
        if today != self._current_day:
            LOGGER.info("new trading day %s", today.isoformat())
            self._current_day = today
            self._risk.reset_daily(self._risk_state)

    async def _settle_resolved_positions(self) -> float:
        """Close paper positions whose contracts have resolved.

        Realized losses feed the daily loss breaker.
        """
        if self._paper_trader is None:
            return 0.0

        total = 0.0
        for ticker in self._paper_trader.open_tickers():
            try:
                contract = await self._exchange.fetch_contract(ticker)
            except Exception as exc:
                LOGGER.warning("settlement check failed for %s: %s", ticker, exc)
                continue
            if contract is None or contract.status is not ContractStatus.SETTLED or contract.result is None:
                continue

            if contract.result is Resolution.VOIDED:
                self._paper_trader.void(ticker)
                continue

            outcome = Side.YES if contract.result is Resolution.YES else Side.NO
            pnl = self._paper_trader.settle(ticker, outcome)
            total += pnl
            if pnl < 0:
                self._risk.record_loss(self._risk_state, -pnl)
        return total
