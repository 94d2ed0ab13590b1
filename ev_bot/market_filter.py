"""Candidate selection ahead of the forecaster.

Filtering is cheap and runs over every open contract; forecasting is the
expensive step, so everything here exists to shrink and diversify the set
of contracts that reach it.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Sequence

from ev_bot.models import Contract, ContractStatus

LOGGER = logging.getLogger(__name__)

MIN_PRICE_CENTS = 5
MAX_PRICE_CENTS = 95
MIN_VOLUME = 10
DEFAULT_MAX_SPREAD_CENTS = 15

# Markets resolved by data the forecaster cannot see in time.
REALTIME_DEPENDENT_PATTERNS = (
    re.compile(r"^KX(?:HIGH|LOW)", re.IGNORECASE),  # daily temperature highs/lows
    re.compile(r"15M-"),  # fifteen-minute price candles
    re.compile(r"^KXQUICKSETTLE", re.IGNORECASE),
)


def reference_price(contract: Contract) -> float | None:
    """YES midpoint when both sides are quoted, else the one quote, else None."""
    if contract.yes_bid > 0 and contract.yes_ask > 0:
        return (contract.yes_bid + contract.yes_ask) / 2.0
    if contract.yes_ask > 0:
        return float(contract.yes_ask)
    if contract.yes_bid > 0:
        return float(contract.yes_bid)
    return None


def _matches_category(contract: Contract, categories: Sequence[str]) -> bool:
    category = contract.category.lower()
    return any(wanted.lower() in category for wanted in categories)


def filter_candidates(
    contracts: Iterable[Contract],
    categories: Sequence[str] = (),
    min_volume: int = MIN_VOLUME,
) -> list[Contract]:
    candidates: list[Contract] = []
    for contract in contracts:
        if contract.status is not ContractStatus.OPEN:
            continue
        price = reference_price(contract)
        if price is None:
            continue
        if not MIN_PRICE_CENTS < price < MAX_PRICE_CENTS:
            continue
        if contract.volume < min_volume:
            continue
        if categories and not _matches_category(contract, categories):
            continue
        candidates.append(contract)
    return candidates


def is_forecastable(contract: Contract) -> bool:
    return not any(pattern.search(contract.ticker) for pattern in REALTIME_DEPENDENT_PATTERNS)


def has_tight_spread(contract: Contract, max_spread_cents: int = DEFAULT_MAX_SPREAD_CENTS) -> bool:
    """True when the YES book is two-sided and narrow enough to trust its midpoint."""
    if contract.yes_bid <= 0 or contract.yes_ask <= 0:
        return False
    return contract.yes_ask - contract.yes_bid <= max_spread_cents


def select_diverse_candidates(contracts: Sequence[Contract], count: int) -> list[Contract]:
    """Round-robin one contract per group until ``count`` are picked.

    Groups are visited in the order of their most liquid member and each
    group yields its members by descending volume.
    """
    if count <= 0:
        return []

    ordered = sorted(contracts, key=lambda contract: contract.volume, reverse=True)
    groups: dict[str, list[Contract]] = {}
    for contract in ordered:
        groups.setdefault(contract.group_key, []).append(contract)

    queues = [list(members) for members in groups.values()]
    selected: list[Contract] = []
    while queues and len(selected) < count:
        remaining: list[list[Contract]] = []
        for queue in queues:
            if len(selected) >= count:
                break
            selected.append(queue.pop(0))
            if queue:
                remaining.append(queue)
        queues = remaining

    LOGGER.debug("selected %d diverse candidates from %d groups", len(selected), len(groups))
    return selected
