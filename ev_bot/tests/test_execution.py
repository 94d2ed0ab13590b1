from __future__ import annotations

import asyncio
import uuid

import pytest

from ev_bot.exchanges import ExchangeAdapter
from ev_bot.execution import KalshiExecution, PaperExecution
from ev_bot.models import Contract, ContractStatus, Edge, Estimate, Side, TradeSignal
from ev_bot.paper import PaperTrader


class _RecordingExchange(ExchangeAdapter):
    venue = "fake"

    def __init__(self, cash: float | None = 250.0) -> None:
        self.cash = cash
        self.orders: list[tuple] = []

    async def fetch_open_contracts(self) -> list[Contract]:
        return []

    async def place_limit_order(self, ticker, side, contracts, price_cents, action="buy"):
        self.orders.append((ticker, side, contracts, price_cents, action))
        return {"order_id": "ord-1", "status": "resting"}

    async def get_available_cash(self) -> float | None:
        return self.cash


def _make_signal(side: Side = Side.YES, contracts: int = 10, price: int = 40) -> TradeSignal:
    contract = Contract(ticker="KXTEST-1", status=ContractStatus.OPEN, yes_ask=price, no_ask=100 - price)
    edge = Edge(
        contract=contract,
        estimate=Estimate(ticker="KXTEST-1", probability_yes=0.6, confidence=0.7),
        side=side,
        market_prob=price / 100.0,
        model_prob=0.6,
        edge=0.6 - price / 100.0,
        expected_value=0.6 / (price / 100.0) - 1.0,
    )
    return TradeSignal(
        edge=edge,
        side=side,
        contracts=contracts,
        limit_price=price,
        kelly_fraction=0.05,
        position_size_usd=contracts * price / 100.0,
        reason="test",
    )


class TestPaperExecution:
    def test_executes_against_ledger(self) -> None:
        async def _run() -> None:
            trader = PaperTrader(100.0)
            backend = PaperExecution(trader)

            record = await backend.execute(_make_signal())
            snapshot = await backend.portfolio_snapshot()

            assert backend.mode == "paper"
            assert record.filled is True
            assert snapshot.balance_usd == pytest.approx(96.0)
            assert snapshot.position_for("KXTEST-1") is not None

        asyncio.run(_run())


class TestKalshiExecution:
    def test_snapshot_has_balance_and_no_positions(self) -> None:
        async def _run() -> None:
            backend = KalshiExecution(_RecordingExchange(cash=250.0))
            snapshot = await backend.portfolio_snapshot()

            assert snapshot.balance_usd == 250.0
            assert snapshot.positions == ()
            assert snapshot.total_exposure_usd == 0.0

        asyncio.run(_run())

    def test_missing_balance_reads_as_zero(self) -> None:
        async def _run() -> None:
            backend = KalshiExecution(_RecordingExchange(cash=None))
            assert (await backend.portfolio_snapshot()).balance_usd == 0.0

        asyncio.run(_run())

    def test_execute_places_limit_order(self) -> None:
        async def _run() -> None:
            exchange = _RecordingExchange()
            backend = KalshiExecution(exchange)

            record = await backend.execute(_make_signal(side=Side.NO, contracts=3, price=60))

            assert exchange.orders == [("KXTEST-1", Side.NO, 3, 60, "buy")]
            assert record.mode == "live"
            assert record.order_id == "ord-1"
            assert record.fill_price == 60
            assert record.reason == "resting"
            assert len(record.id) == 32
            assert uuid.UUID(hex=record.id).version == 4

        asyncio.run(_run())
