from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ev_bot.models import Contract, Side


class ExchangeAdapter(ABC):
    venue: str

    @abstractmethod
    async def fetch_open_contracts(self) -> list[Contract]:
        raise NotImplementedError

    @abstractmethod
    async def place_limit_order(
        self,
        ticker: str,
        side: Side,
        contracts: int,
        price_cents: int,
        action: str = "buy",
    ) -> dict[str, Any]:
        raise NotImplementedError

    async def fetch_contract(self, ticker: str) -> Contract | None:
        """Fetch a fresh snapshot for one contract. Returns None if unavailable."""
        for contract in await self.fetch_open_contracts():
            if contract.ticker == ticker:
                return contract
        return None

    async def get_available_cash(self) -> float | None:
        return None

    async def aclose(self) -> None:
        return None
