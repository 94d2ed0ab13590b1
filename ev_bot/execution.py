from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod

from ev_bot.exchanges import ExchangeAdapter
from ev_bot.models import Portfolio, TradeRecord, TradeSignal
from ev_bot.paper import PaperTrader

LOGGER = logging.getLogger(__name__)


class ExecutionBackend(ABC):
    mode: str

    @abstractmethod
    async def portfolio_snapshot(self) -> Portfolio:
        raise NotImplementedError

    @abstractmethod
    async def execute(self, signal: TradeSignal) -> TradeRecord:
        raise NotImplementedError


class PaperExecution(ExecutionBackend):
    mode = "paper"

    def __init__(self, trader: PaperTrader) -> None:
        self._trader = trader

    @property
    def trader(self) -> PaperTrader:
        return self._trader

    async def portfolio_snapshot(self) -> Portfolio:
        return self._trader.get_portfolio()

    async def execute(self, signal: TradeSignal) -> TradeRecord:
        return self._trader.execute(signal)


class KalshiExecution(ExecutionBackend):
    """Routes signals to an exchange as resting limit orders.

    Positions are not tracked for live accounts yet, so the snapshot only
    carries the cash balance; exposure and concentration gates see an
    empty book.
    """

    mode = "live"

    def __init__(self, exchange: ExchangeAdapter) -> None:
        self._exchange = exchange

    async def portfolio_snapshot(self) -> Portfolio:
        balance = await self._exchange.get_available_cash()
        return Portfolio(balance_usd=balance or 0.0)

    async def execute(self, signal: TradeSignal) -> TradeRecord:
        order = await self._exchange.place_limit_order(
            signal.ticker,
            signal.side,
            signal.contracts,
            signal.limit_price,
            action=signal.action,
        )
        order_id = str(order.get("order_id") or "") or None
        LOGGER.info("LIVE order placed for %s: %s", signal.ticker, order_id)
        return TradeRecord(
            id=uuid.uuid4().hex,
            signal=signal,
            # Accepted by the venue; the fill itself is pending.
            filled=True,
            mode=self.mode,
            fill_price=signal.limit_price,
            order_id=order_id,
            reason=str(order.get("status") or "submitted"),
        )
