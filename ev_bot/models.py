from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Side(str, Enum):
    YES = "yes"
    NO = "no"


class ContractStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    SETTLED = "settled"


class Resolution(str, Enum):
    YES = "yes"
    NO = "no"
    VOIDED = "voided"


class ArbitrageKind(str, Enum):
    GUARANTEED_PROFIT = "guaranteed_profit"
    WIDE_SPREAD = "wide_spread"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Contract:
    """Snapshot of one binary listing. Quotes are integer cents, 0 = unquoted."""

    ticker: str
    status: ContractStatus
    yes_bid: int = 0
    yes_ask: int = 0
    no_bid: int = 0
    no_ask: int = 0
    volume: int = 0
    open_interest: int = 0
    category: str = ""
    event_ticker: str = ""
    title: str = ""
    subtitle: str = ""
    expiration: str = ""
    result: Optional[Resolution] = None

    @property
    def group_key(self) -> str:
        if self.category:
            return self.category
        prefix = self.event_ticker.split("-")[0]
        return prefix or "other"

    def ask_for(self, side: Side) -> int:
        return self.yes_ask if side is Side.YES else self.no_ask


@dataclass(frozen=True)
class Estimate:
    """External probability judgment for one contract."""

    ticker: str
    probability_yes: float
    confidence: float
    reasoning: str = ""
    sources: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class Edge:
    contract: Contract
    estimate: Estimate
    side: Side
    market_prob: float
    model_prob: float
    edge: float
    expected_value: float

    @property
    def ticker(self) -> str:
        return self.contract.ticker


@dataclass(frozen=True)
class TradeSignal:
    edge: Edge
    side: Side
    contracts: int
    limit_price: int
    kelly_fraction: float
    position_size_usd: float
    reason: str
    action: str = "buy"

    @property
    def ticker(self) -> str:
        return self.edge.ticker

    @property
    def cost_usd(self) -> float:
        return self.contracts * self.limit_price / 100.0


@dataclass(frozen=True)
class TradeRecord:
    id: str
    signal: TradeSignal
    filled: bool
    mode: str
    executed_at: datetime = field(default_factory=_utcnow)
    fill_price: Optional[int] = None
    order_id: Optional[str] = None
    pnl: Optional[float] = None
    reason: str = ""


@dataclass
class Position:
    ticker: str
    side: Side
    contracts: int
    avg_price: float
    market_title: str = ""

    @property
    def cost_basis_usd(self) -> float:
        return self.contracts * self.avg_price / 100.0


@dataclass(frozen=True)
class Portfolio:
    balance_usd: float
    positions: tuple[Position, ...] = ()
    total_exposure_usd: float = 0.0
    realized_pnl: float = 0.0
    # Needs a live mark price; not tracked.
    unrealized_pnl: float = 0.0

    def position_for(self, ticker: str) -> Position | None:
        for position in self.positions:
            if position.ticker == ticker:
                return position
        return None


@dataclass(frozen=True)
class ArbitrageOpportunity:
    ticker: str
    title: str
    yes_ask: int
    no_ask: int
    total: int
    kind: ArbitrageKind
