"""Fractional-Kelly sizing with portfolio exposure limits and circuit breakers.

Circuit-breaker counters live in an explicit ``RiskState`` owned by the
caller and passed into every call, so one process can run several
independent portfolios and tests can drive the state directly.

Per-edge gates are evaluated in the fixed order of ``SIGNAL_GATES``. A gate
with action STOP ends signal generation for the whole pass (lower-ranked
edges are never reached); a gate with action SKIP drops only that edge.

The hourly trade window is a plain reset timer: on the first call more than
an hour after the window start, the counter is zeroed and the window
restarts at that moment. Window boundaries therefore drift with call timing
and are not aligned to wall-clock hours.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from ev_bot.config import TradingSettings
from ev_bot.models import Edge, Portfolio, TradeSignal

LOGGER = logging.getLogger(__name__)

HOUR_WINDOW_SECONDS = 3600.0
MIN_POSITION_USD = 1.0
# Warn once realized losses reach this share of the daily limit.
DAILY_LOSS_WARN_FRACTION = 0.8


@dataclass
class RiskState:
    """Rolling circuit-breaker counters for one portfolio."""

    daily_loss: float = 0.0
    trades_this_hour: int = 0
    hour_window_start: float = 0.0


class GateAction(str, Enum):
    STOP = "stop"
    SKIP = "skip"


@dataclass(frozen=True)
class GateContext:
    edge: Edge
    portfolio: Portfolio
    state: RiskState
    remaining_exposure: float


@dataclass(frozen=True)
class SignalGate:
    name: str
    action: GateAction
    blocks: Callable[["RiskManager", GateContext], bool]


def _hourly_trade_cap(manager: "RiskManager", ctx: GateContext) -> bool:
    return ctx.state.trades_this_hour >= manager.settings.max_trades_per_hour


def _exposure_headroom(manager: "RiskManager", ctx: GateContext) -> bool:
    return ctx.remaining_exposure <= 0


def _min_confidence(manager: "RiskManager", ctx: GateContext) -> bool:
    return ctx.edge.estimate.confidence < manager.settings.min_confidence


def _open_position(manager: "RiskManager", ctx: GateContext) -> bool:
    return ctx.portfolio.position_for(ctx.edge.ticker) is not None


SIGNAL_GATES: tuple[SignalGate, ...] = (
    SignalGate("hourly_trade_cap", GateAction.STOP, _hourly_trade_cap),
    SignalGate("exposure_headroom", GateAction.STOP, _exposure_headroom),
    SignalGate("min_confidence", GateAction.SKIP, _min_confidence),
    SignalGate("open_position", GateAction.SKIP, _open_position),
)


class RiskManager:
    def __init__(
        self,
        settings: TradingSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._clock = clock

    @property
    def settings(self) -> TradingSettings:
        return self._settings

    @property
    def daily_loss_limit(self) -> float:
        return self._settings.daily_loss_limit_usd

    def new_state(self) -> RiskState:
        return RiskState(hour_window_start=self._clock())

    def first_failing_gate(self, ctx: GateContext) -> Optional[SignalGate]:
        for gate in SIGNAL_GATES:
            if gate.blocks(self, ctx):
                return gate
        return None

    def generate_signals(
        self,
        edges: Sequence[Edge],
        portfolio: Portfolio,
        state: RiskState,
    ) -> list[TradeSignal]:
        """Convert ranked edges into sized signals under all risk limits.

        Mutates only ``state`` (hourly counter and window).
        """
        self._reset_hourly_counter_if_needed(state)

        if state.daily_loss >= self.daily_loss_limit:
            LOGGER.warning(
                "circuit breaker: daily loss limit hit ($%.2f / $%.2f)",
                state.daily_loss,
                self.daily_loss_limit,
            )
            return []

        signals: list[TradeSignal] = []
        remaining_exposure = self._settings.max_portfolio_exposure_usd - portfolio.total_exposure_usd

        for edge in edges:
            ctx = GateContext(
                edge=edge,
                portfolio=portfolio,
                state=state,
                remaining_exposure=remaining_exposure,
            )
            gate = self.first_failing_gate(ctx)
            if gate is not None:
                if gate.action is GateAction.STOP:
                    LOGGER.warning("risk gate %s tripped; skipping remaining edges", gate.name)
                    break
                LOGGER.debug("skipping %s: %s", edge.ticker, gate.name)
                continue

            signal = self.size_position(edge, portfolio.balance_usd, remaining_exposure)
            if signal is None:
                continue
            signals.append(signal)
            remaining_exposure -= signal.position_size_usd
            state.trades_this_hour += 1

        LOGGER.info("generated %d trade signals from %d edges", len(signals), len(edges))
        return signals

    def size_position(
        self,
        edge: Edge,
        bankroll: float,
        remaining_exposure: float,
    ) -> TradeSignal | None:
        """Kelly-size one edge: f* = (p*b - q) / b with b = (1 - cost) / cost.

        The fractional multiplier is applied to f*, then the dollar size is
        capped per position, capped by exposure headroom and finally floored
        at $1. The floor comes last on purpose: a cap-limited remainder under
        $1 is raised to $1 rather than refused.
        """
        p = edge.model_prob
        q = 1.0 - p
        cost = edge.market_prob
        if cost <= 0:
            return None

        b = (1.0 - cost) / cost
        if b <= 0:
            return None

        full_kelly = (p * b - q) / b
        if full_kelly <= 0:
            LOGGER.debug("non-positive kelly for %s (f*=%.4f), skipping", edge.ticker, full_kelly)
            return None

        adjusted_kelly = full_kelly * self._settings.kelly_fraction

        size_usd = bankroll * adjusted_kelly
        size_usd = min(size_usd, self._settings.max_position_usd)
        size_usd = min(size_usd, remaining_exposure)
        size_usd = max(size_usd, MIN_POSITION_USD)

        price = edge.contract.ask_for(edge.side)
        if price <= 0:
            return None

        contracts = math.floor(size_usd * 100 / price)
        if contracts <= 0:
            return None

        actual_usd = contracts * price / 100.0

        reason = (
            f"Edge: {edge.edge * 100:.1f}% | "
            f"Model: {edge.model_prob * 100:.1f}% vs Market: {edge.market_prob * 100:.1f}% | "
            f"Kelly: {adjusted_kelly * 100:.2f}% | "
            f"{contracts} contracts @ {price}c = ${actual_usd:.2f}"
        )
        LOGGER.info(
            "signal: BUY %dx %s %s @ %dc ($%.2f)",
            contracts,
            edge.side.value.upper(),
            edge.ticker,
            price,
            actual_usd,
        )
        return TradeSignal(
            edge=edge,
            side=edge.side,
            contracts=contracts,
            limit_price=price,
            kelly_fraction=adjusted_kelly,
            position_size_usd=actual_usd,
            reason=reason,
        )

    def record_loss(self, state: RiskState, amount: float) -> None:
        """Accumulate a realized loss (positive dollars) into the daily counter."""
        state.daily_loss += amount
        if state.daily_loss >= self.daily_loss_limit * DAILY_LOSS_WARN_FRACTION:
            LOGGER.warning(
                "approaching daily loss limit: $%.2f / $%.2f",
                state.daily_loss,
                self.daily_loss_limit,
            )

    def reset_daily(self, state: RiskState) -> None:
        state.daily_loss = 0.0
        LOGGER.info("daily loss counter reset")

    def _reset_hourly_counter_if_needed(self, state: RiskState) -> None:
        now = self._clock()
        if now - state.hour_window_start > HOUR_WINDOW_SECONDS:
            state.trades_this_hour = 0
            state.hour_window_start = now
