from __future__ import annotations

import logging
import uuid

from ev_bot.models import Portfolio, Position, Side, TradeRecord, TradeSignal

LOGGER = logging.getLogger(__name__)

PAPER_MODE = "paper"


class PaperTrader:
    """In-memory ledger that simulates fills at the signal's limit price.

    Holds at most one position per ticker and only ever on one side: a fill
    for the opposite side of an open position is rejected rather than merged.
    """

    def __init__(self, initial_balance_usd: float = 1000.0) -> None:
        self._initial_balance = float(initial_balance_usd)
        self._balance = float(initial_balance_usd)
        self._positions: dict[str, Position] = {}
        self._trades: list[TradeRecord] = []
        LOGGER.info("paper trader initialized with $%.2f balance", self._initial_balance)

    @property
    def initial_balance_usd(self) -> float:
        return self._initial_balance

    @property
    def balance_usd(self) -> float:
        return self._balance

    @property
    def trades(self) -> list[TradeRecord]:
        return list(self._trades)

    def open_tickers(self) -> list[str]:
        return list(self._positions)

    def execute(self, signal: TradeSignal) -> TradeRecord:
        cost = signal.cost_usd

        if cost > self._balance:
            LOGGER.warning(
                "insufficient paper balance for %s: need $%.2f, have $%.2f",
                signal.ticker,
                cost,
                self._balance,
            )
            return self._unfilled(signal, "insufficient balance")

        existing = self._positions.get(signal.ticker)
        if existing is not None and existing.side is not signal.side:
            LOGGER.warning(
                "rejecting %s %s: already holding %s side",
                signal.side.value.upper(),
                signal.ticker,
                existing.side.value.upper(),
            )
            return self._unfilled(signal, "opposite side already held")

        self._balance -= cost

        if existing is not None:
            total = existing.contracts + signal.contracts
            existing.avg_price = (
                existing.avg_price * existing.contracts + signal.limit_price * signal.contracts
            ) / total
            existing.contracts = total
        else:
            self._positions[signal.ticker] = Position(
                ticker=signal.ticker,
                side=signal.side,
                contracts=signal.contracts,
                avg_price=float(signal.limit_price),
                market_title=signal.edge.contract.title,
            )

        record = TradeRecord(
            id=uuid.uuid4().hex,
            signal=signal,
            filled=True,
            mode=PAPER_MODE,
            fill_price=signal.limit_price,
        )
        self._trades.append(record)
        LOGGER.info(
            "[PAPER] executed: BUY %dx %s %s @ %dc ($%.2f)",
            signal.contracts,
            signal.side.value.upper(),
            signal.ticker,
            signal.limit_price,
            cost,
        )
        return record

    def settle(self, ticker: str, outcome: Side) -> float:
        """Resolve a held contract. Returns realized P&L in dollars (0.0 if not held)."""
        position = self._positions.pop(ticker, None)
        if position is None:
            return 0.0

        cost_basis = position.cost_basis_usd
        if position.side is outcome:
            payout = float(position.contracts)
            self._balance += payout
            pnl = payout - cost_basis
        else:
            pnl = -cost_basis

        LOGGER.info("[PAPER] settled %s: %s -> P&L %+.2f", ticker, outcome.value.upper(), pnl)
        return pnl

    def void(self, ticker: str) -> float:
        """Refund a voided contract at cost. Always returns 0.0."""
        position = self._positions.pop(ticker, None)
        if position is None:
            return 0.0
        self._balance += position.cost_basis_usd
        LOGGER.info("[PAPER] voided %s: refunded $%.2f", ticker, position.cost_basis_usd)
        return 0.0

    def get_portfolio(self) -> Portfolio:
        positions = tuple(
            Position(
                ticker=position.ticker,
                side=position.side,
                contracts=position.contracts,
                avg_price=position.avg_price,
                market_title=position.market_title,
            )
            for position in self._positions.values()
        )
        exposure = sum(position.cost_basis_usd for position in positions)
        return Portfolio(
            balance_usd=self._balance,
            positions=positions,
            total_exposure_usd=exposure,
            realized_pnl=self._balance - self._initial_balance + exposure,
        )

    def summary_lines(self) -> list[str]:
        portfolio = self.get_portfolio()
        filled = sum(1 for trade in self._trades if trade.filled)
        rule = "=" * 60
        lines = [
            rule,
            "  PAPER TRADING SUMMARY",
            rule,
            f"  Initial Balance:   ${self._initial_balance:.2f}",
            f"  Current Balance:   ${portfolio.balance_usd:.2f}",
            f"  Open Positions:    {len(portfolio.positions)}",
            f"  Total Exposure:    ${portfolio.total_exposure_usd:.2f}",
            f"  Total Trades:      {len(self._trades)} ({filled} filled)",
            f"  Realized P&L:      {portfolio.realized_pnl:+.2f}",
            rule,
        ]
        if portfolio.positions:
            lines.append("  OPEN POSITIONS:")
            for position in portfolio.positions:
                lines.append(
                    f"  {position.side.value.upper():<4} {position.contracts}x "
                    f"{position.ticker:<30} @ {position.avg_price:.1f}c  {position.market_title}"
                )
        return lines

    def log_summary(self) -> None:
        for line in self.summary_lines():
            LOGGER.info(line)

    @staticmethod
    def _unfilled(signal: TradeSignal, reason: str) -> TradeRecord:
        return TradeRecord(
            id=uuid.uuid4().hex,
            signal=signal,
            filled=False,
            mode=PAPER_MODE,
            reason=reason,
        )
