from __future__ import annotations

import uuid

import pytest

from ev_bot.models import Contract, ContractStatus, Edge, Estimate, Side, TradeSignal
from ev_bot.paper import PaperTrader


def _make_signal(
    ticker: str = "KXTEST-1",
    side: Side = Side.YES,
    contracts: int = 10,
    price: int = 40,
) -> TradeSignal:
    contract = Contract(ticker=ticker, status=ContractStatus.OPEN, yes_ask=price, no_ask=100 - price, title="Test market")
    estimate = Estimate(ticker=ticker, probability_yes=0.6, confidence=0.7)
    edge = Edge(
        contract=contract,
        estimate=estimate,
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


class TestExecute:
    def test_fill_debits_cash_and_opens_position(self) -> None:
        trader = PaperTrader(1000.0)
        record = trader.execute(_make_signal(contracts=10, price=40))

        assert record.filled is True
        assert record.mode == "paper"
        assert record.fill_price == 40
        assert trader.balance_usd == pytest.approx(996.0)
        portfolio = trader.get_portfolio()
        assert len(portfolio.positions) == 1
        assert portfolio.positions[0].market_title == "Test market"
        assert portfolio.total_exposure_usd == pytest.approx(4.0)

    def test_record_ids_are_uuid4_hex(self) -> None:
        trader = PaperTrader(3.0)
        filled = trader.execute(_make_signal(contracts=5, price=40))
        unfilled = trader.execute(_make_signal(contracts=10, price=40))

        for record in (filled, unfilled):
            assert len(record.id) == 32
            assert uuid.UUID(hex=record.id).version == 4
        assert filled.id != unfilled.id

    def test_debit_matches_signal_cost(self) -> None:
        trader = PaperTrader(100.0)
        signal = _make_signal(contracts=7, price=33)
        trader.execute(signal)

        assert signal.cost_usd == pytest.approx(2.31)
        assert trader.balance_usd == pytest.approx(100.0 - signal.cost_usd)

    def test_same_side_fills_average_cost(self) -> None:
        trader = PaperTrader(1000.0)
        trader.execute(_make_signal(contracts=10, price=40))
        trader.execute(_make_signal(contracts=10, price=60))

        position = trader.get_portfolio().position_for("KXTEST-1")
        assert position is not None
        assert position.contracts == 20
        assert position.avg_price == pytest.approx(50.0)
        assert trader.balance_usd == pytest.approx(990.0)

    def test_insufficient_balance_is_unfilled(self) -> None:
        trader = PaperTrader(3.0)
        record = trader.execute(_make_signal(contracts=10, price=40))

        assert record.filled is False
        assert trader.balance_usd == 3.0
        assert trader.get_portfolio().positions == ()
        assert trader.trades == []

    def test_opposite_side_fill_is_rejected(self) -> None:
        trader = PaperTrader(1000.0)
        trader.execute(_make_signal(side=Side.YES, contracts=10, price=40))
        record = trader.execute(_make_signal(side=Side.NO, contracts=5, price=60))

        assert record.filled is False
        position = trader.get_portfolio().position_for("KXTEST-1")
        assert position is not None
        assert position.side is Side.YES
        assert position.contracts == 10
        assert trader.balance_usd == pytest.approx(996.0)

    def test_trades_returns_copy(self) -> None:
        trader = PaperTrader(1000.0)
        trader.execute(_make_signal())
        trades = trader.trades
        trades.clear()
        assert len(trader.trades) == 1

    def test_snapshot_is_detached_from_ledger(self) -> None:
        trader = PaperTrader(1000.0)
        trader.execute(_make_signal(contracts=10, price=40))
        snapshot = trader.get_portfolio()
        trader.execute(_make_signal(contracts=10, price=60))
        assert snapshot.positions[0].contracts == 10


class TestSettlement:
    def test_winning_settlement(self) -> None:
        trader = PaperTrader(1000.0)
        trader.execute(_make_signal(side=Side.YES, contracts=20, price=50))

        pnl = trader.settle("KXTEST-1", Side.YES)

        assert pnl == pytest.approx(10.0)
        assert trader.balance_usd == pytest.approx(1010.0)
        assert trader.get_portfolio().positions == ()

    def test_losing_settlement(self) -> None:
        trader = PaperTrader(1000.0)
        trader.execute(_make_signal(side=Side.YES, contracts=20, price=50))

        pnl = trader.settle("KXTEST-1", Side.NO)

        assert pnl == pytest.approx(-10.0)
        assert trader.balance_usd == pytest.approx(990.0)
        assert trader.get_portfolio().positions == ()

    def test_no_side_wins_on_no(self) -> None:
        trader = PaperTrader(1000.0)
        trader.execute(_make_signal(side=Side.NO, contracts=10, price=30))
        assert trader.settle("KXTEST-1", Side.NO) == pytest.approx(7.0)

    def test_unknown_ticker(self) -> None:
        trader = PaperTrader(1000.0)
        assert trader.settle("MISSING", Side.YES) == 0.0
        assert trader.balance_usd == 1000.0

    def test_void_refunds_cost(self) -> None:
        trader = PaperTrader(1000.0)
        trader.execute(_make_signal(contracts=10, price=40))

        assert trader.void("KXTEST-1") == 0.0
        assert trader.balance_usd == pytest.approx(1000.0)
        assert trader.get_portfolio().positions == ()


class TestPortfolio:
    def test_realized_pnl_excludes_open_cost(self) -> None:
        trader = PaperTrader(1000.0)
        trader.execute(_make_signal(ticker="A", contracts=20, price=50))
        trader.execute(_make_signal(ticker="B", contracts=10, price=40))
        trader.settle("A", Side.YES)

        portfolio = trader.get_portfolio()
        assert portfolio.total_exposure_usd == pytest.approx(4.0)
        assert portfolio.realized_pnl == pytest.approx(10.0)
        assert portfolio.unrealized_pnl == 0.0

    def test_summary_lines(self) -> None:
        trader = PaperTrader(1000.0)
        trader.execute(_make_signal(contracts=10, price=40))

        lines = trader.summary_lines()
        text = "\n".join(lines)
        assert "PAPER TRADING SUMMARY" in text
        assert "Initial Balance:   $1000.00" in text
        assert "Current Balance:   $996.00" in text
        assert "Total Trades:      1 (1 filled)" in text
        assert "OPEN POSITIONS:" in text
        assert "KXTEST-1" in text
