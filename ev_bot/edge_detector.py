"""Edge detection: compare forecaster probabilities against market prices.

Given contract snapshots and probability estimates, emits one-sided edges
where the model disagrees with the market by more than a threshold, and
separately flags price-structural anomalies (YES + NO asks far from par)
that need no forecast at all.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Iterable, Sequence

from ev_bot.models import (
    ArbitrageKind,
    ArbitrageOpportunity,
    Contract,
    Edge,
    Estimate,
    Side,
)

LOGGER = logging.getLogger(__name__)

# Buying both sides under this total locks in profit net of typical fees.
GUARANTEED_PROFIT_MAX_TOTAL = 98
WIDE_SPREAD_MIN_TOTAL = 115
# An ask at or above this is treated as a one-sided book, not a spread.
ONE_SIDED_ASK_CENTS = 95

MIN_MODEL_PROB = 0.01
MAX_MODEL_PROB = 0.99


def implied_probability(bid: int, ask: int) -> float:
    """Market-implied probability for one side from its quotes in cents.

    Midpoint when both sides are quoted, the single quote when only one is,
    and 0.50 for an empty book.
    """
    if bid > 0 and ask > 0:
        return ((bid + ask) / 2.0) / 100.0
    if ask > 0:
        return ask / 100.0
    if bid > 0:
        return bid / 100.0
    return 0.50


def expected_value(model_prob: float, market_prob: float) -> float:
    """EV per dollar risked on a $1-payout contract costing ``market_prob``."""
    if market_prob <= 0:
        return 0.0
    return model_prob / market_prob - 1.0


def _clamp(value: float, low: float, high: float) -> float:
    if not math.isfinite(value):
        raise ValueError(f"non-finite value {value!r}")
    return max(low, min(high, value))


class EdgeDetector:
    """Finds contracts where the estimate disagrees with the market.

    Stateless between calls; the same inputs always produce the same,
    identically ordered output.
    """

    def __init__(self, min_edge_threshold: float = 0.05) -> None:
        self._min_edge = min_edge_threshold

    @property
    def min_edge_threshold(self) -> float:
        return self._min_edge

    def detect_edges(
        self,
        contracts: Sequence[Contract],
        estimates: Iterable[Estimate],
    ) -> list[Edge]:
        """Join contracts to estimates and emit edges above the threshold.

        YES and NO are evaluated independently, each against its own
        implied probability, so a contract can yield zero, one or two edges.

        Returns
        -------
        list[Edge]
            Sorted by edge descending; the risk manager sizes in this order.
        """
        by_ticker = {estimate.ticker: estimate for estimate in estimates}
        edges: list[Edge] = []

        for contract in contracts:
            estimate = by_ticker.get(contract.ticker)
            if estimate is None:
                continue
            try:
                model_yes = _clamp(estimate.probability_yes, MIN_MODEL_PROB, MAX_MODEL_PROB)
                confidence = _clamp(estimate.confidence, 0.0, 1.0)
            except ValueError:
                LOGGER.warning(
                    "skipping %s: non-finite estimate p=%s confidence=%s",
                    contract.ticker,
                    estimate.probability_yes,
                    estimate.confidence,
                )
                continue
            if confidence != estimate.confidence:
                estimate = replace(estimate, confidence=confidence)

            market_yes = implied_probability(contract.yes_bid, contract.yes_ask)
            market_no = implied_probability(contract.no_bid, contract.no_ask)

            yes_edge = model_yes - market_yes
            if yes_edge > self._min_edge:
                edges.append(self._build_edge(contract, estimate, Side.YES, market_yes, model_yes))

            model_no = 1.0 - model_yes
            no_edge = model_no - market_no
            if no_edge > self._min_edge:
                edges.append(self._build_edge(contract, estimate, Side.NO, market_no, model_no))

        edges.sort(key=lambda item: item.edge, reverse=True)

        LOGGER.info(
            "found %d edges above %.1f%% threshold",
            len(edges),
            self._min_edge * 100,
        )
        for edge in edges[:10]:
            LOGGER.info(
                "  %s %s: model=%.1f%% vs market=%.1f%% edge=%.1f%% EV=%.1f%%",
                edge.side.value.upper(),
                edge.ticker,
                edge.model_prob * 100,
                edge.market_prob * 100,
                edge.edge * 100,
                edge.expected_value * 100,
            )

        return edges

    def find_arbitrage_opportunities(
        self,
        contracts: Sequence[Contract],
    ) -> list[ArbitrageOpportunity]:
        """Flag contracts whose YES + NO asks sit far from the $1 payout.

        Forecast independent. Guaranteed-profit entries come first, cheapest
        total first; wide spreads follow, widest first.
        """
        guaranteed: list[ArbitrageOpportunity] = []
        wide: list[ArbitrageOpportunity] = []

        for contract in contracts:
            if contract.yes_ask <= 0 or contract.no_ask <= 0:
                continue
            total = contract.yes_ask + contract.no_ask

            if total < GUARANTEED_PROFIT_MAX_TOTAL:
                guaranteed.append(self._build_opportunity(contract, total, ArbitrageKind.GUARANTEED_PROFIT))
            elif (
                total > WIDE_SPREAD_MIN_TOTAL
                and contract.yes_ask < ONE_SIDED_ASK_CENTS
                and contract.no_ask < ONE_SIDED_ASK_CENTS
            ):
                wide.append(self._build_opportunity(contract, total, ArbitrageKind.WIDE_SPREAD))

        guaranteed.sort(key=lambda item: item.total)
        wide.sort(key=lambda item: item.total, reverse=True)
        opportunities = guaranteed + wide

        if opportunities:
            LOGGER.info(
                "found %d arbitrage/spread anomalies (guaranteed=%d wide=%d)",
                len(opportunities),
                len(guaranteed),
                len(wide),
            )
        return opportunities

    @staticmethod
    def _build_edge(
        contract: Contract,
        estimate: Estimate,
        side: Side,
        market_prob: float,
        model_prob: float,
    ) -> Edge:
        return Edge(
            contract=contract,
            estimate=estimate,
            side=side,
            market_prob=market_prob,
            model_prob=model_prob,
            edge=model_prob - market_prob,
            expected_value=expected_value(model_prob, market_prob),
        )

    @staticmethod
    def _build_opportunity(
        contract: Contract,
        total: int,
        kind: ArbitrageKind,
    ) -> ArbitrageOpportunity:
        return ArbitrageOpportunity(
            ticker=contract.ticker,
            title=contract.title,
            yes_ask=contract.yes_ask,
            no_ask=contract.no_ask,
            total=total,
            kind=kind,
        )
