from __future__ import annotations

import base64
import logging
import time
import uuid
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from ev_bot.config import KalshiSettings
from ev_bot.models import Contract, ContractStatus, Resolution, Side

from .base import ExchangeAdapter

LOGGER = logging.getLogger(__name__)

DEFAULT_SIGNING_PREFIX = "/trade-api/v2"

# initialized, inactive, disputed and amended all collapse to closed.
_STATUS_MAP = {
    "active": ContractStatus.OPEN,
    "open": ContractStatus.OPEN,
    "closed": ContractStatus.CLOSED,
    "determined": ContractStatus.SETTLED,
    "finalized": ContractStatus.SETTLED,
    "settled": ContractStatus.SETTLED,
}

_RESULT_MAP = {
    "yes": Resolution.YES,
    "no": Resolution.NO,
    "void": Resolution.VOIDED,
    "voided": Resolution.VOIDED,
}


def _price_cents(raw: dict[str, Any], key: str) -> int:
    value = raw.get(key)
    if value is not None:
        try:
            return max(0, int(round(float(value))))
        except (TypeError, ValueError):
            return 0
    dollars = raw.get(f"{key}_dollars")
    if dollars is not None:
        try:
            return max(0, int(round(float(dollars) * 100)))
        except (TypeError, ValueError):
            return 0
    return 0


def _as_count(value: Any) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


def map_market(raw: dict[str, Any]) -> Contract:
    """Normalize a Kalshi market payload into a ``Contract`` snapshot."""
    ticker = str(raw.get("ticker") or "")
    status = _STATUS_MAP.get(str(raw.get("status") or "").lower(), ContractStatus.CLOSED)
    result = _RESULT_MAP.get(str(raw.get("result") or "").lower())
    return Contract(
        ticker=ticker,
        status=status,
        yes_bid=_price_cents(raw, "yes_bid"),
        yes_ask=_price_cents(raw, "yes_ask"),
        no_bid=_price_cents(raw, "no_bid"),
        no_ask=_price_cents(raw, "no_ask"),
        volume=_as_count(raw.get("volume")),
        open_interest=_as_count(raw.get("open_interest")),
        category=str(raw.get("category") or ""),
        event_ticker=str(raw.get("event_ticker") or ""),
        title=str(raw.get("title") or raw.get("subtitle") or ticker),
        subtitle=str(raw.get("subtitle") or ""),
        expiration=str(raw.get("expiration_time") or raw.get("close_time") or ""),
        result=result,
    )


class KalshiClient(ExchangeAdapter):
    """Kalshi REST client: market discovery, orders and portfolio reads.

    Requests are signed whenever credentials are configured. Without them
    only public market-data endpoints work; portfolio and order endpoints
    raise ``RuntimeError``.
    """

    venue = "kalshi"

    def __init__(
        self,
        settings: KalshiSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.timeout_seconds,
            transport=transport,
        )
        self._signing_prefix = urlparse(settings.api_base_url).path.rstrip("/") or DEFAULT_SIGNING_PREFIX
        self._private_key = self._load_private_key()
        LOGGER.info(
            "kalshi client initialized (%s, %s)",
            settings.environment,
            "authenticated" if self.has_credentials else "public only",
        )

    @property
    def has_credentials(self) -> bool:
        return self._private_key is not None and bool(self._settings.key_id)

    async def fetch_open_contracts(self) -> list[Contract]:
        return await self.get_all_open_markets()

    async def fetch_contract(self, ticker: str) -> Contract | None:
        try:
            return await self.get_market(ticker)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return None
            raise

    async def get_all_open_markets(self) -> list[Contract]:
        contracts: list[Contract] = []
        cursor: str | None = None
        for _ in range(max(1, self._settings.max_pages)):
            params: dict[str, Any] = {"status": "open", "limit": self._settings.page_size}
            if cursor:
                params["cursor"] = cursor
            payload = await self._request("GET", "/markets", params=params)
            markets = [map_market(raw) for raw in payload.get("markets") or [] if isinstance(raw, dict)]
            contracts.extend(markets)
            LOGGER.debug("fetched %d markets (total %d)", len(markets), len(contracts))
            cursor = payload.get("cursor") or None
            if not cursor:
                break
        else:
            LOGGER.warning("kalshi market scan stopped at max_pages=%d", self._settings.max_pages)
        return contracts

    async def get_market(self, ticker: str) -> Contract:
        payload = await self._request("GET", f"/markets/{ticker}")
        return map_market(payload.get("market") or {})

    async def get_orderbook(self, ticker: str, depth: int | None = None) -> dict[str, list[Any]]:
        params = {"depth": depth} if depth else None
        payload = await self._request("GET", f"/markets/{ticker}/orderbook", params=params)
        orderbook = payload.get("orderbook") or {}
        return {
            "yes": list(orderbook.get("yes") or []),
            "no": list(orderbook.get("no") or []),
        }

    async def place_order(
        self,
        ticker: str,
        side: Side,
        count: int,
        price_cents: int,
        action: str = "buy",
        order_type: str = "limit",
        expiration_ts: int | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "ticker": ticker,
            "action": action,
            "side": side.value,
            "type": order_type,
            "count": count,
            "client_order_id": str(uuid.uuid4()),
        }
        if side is Side.YES:
            body["yes_price"] = price_cents
        else:
            body["no_price"] = price_cents
        if expiration_ts:
            body["expiration_ts"] = expiration_ts

        LOGGER.info("placing order: %s %dx %s @ %dc on %s", action, count, side.value, price_cents, ticker)
        payload = await self._request("POST", "/portfolio/orders", json=body, private=True)
        order = payload.get("order")
        return order if isinstance(order, dict) else payload

    async def place_limit_order(
        self,
        ticker: str,
        side: Side,
        contracts: int,
        price_cents: int,
        action: str = "buy",
    ) -> dict[str, Any]:
        return await self.place_order(ticker, side, contracts, price_cents, action=action)

    async def cancel_order(self, order_id: str) -> None:
        await self._request("DELETE", f"/portfolio/orders/{order_id}", private=True)
        LOGGER.info("cancelled order %s", order_id)

    async def get_balance(self) -> float:
        """Account cash balance in dollars."""
        payload = await self._request("GET", "/portfolio/balance", private=True)
        return float(payload.get("balance") or 0) / 100.0

    async def get_available_cash(self) -> float | None:
        return await self.get_balance()

    async def get_positions(self) -> list[dict[str, Any]]:
        payload = await self._request("GET", "/portfolio/positions", private=True)
        return list(payload.get("market_positions") or [])

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        private: bool = False,
    ) -> dict[str, Any]:
        if private and not self.has_credentials:
            raise RuntimeError("missing kalshi credentials")

        headers = self._auth_headers(method, path) if self.has_credentials else {}
        LOGGER.debug("kalshi %s %s", method, path)
        response = await self._client.request(method, path, params=params, json=json, headers=headers)
        response.raise_for_status()
        if not response.content:
            return {}
        payload = response.json()
        return payload if isinstance(payload, dict) else {"data": payload}

    def _auth_headers(self, method: str, path: str) -> dict[str, str]:
        assert self._private_key is not None
        assert self._settings.key_id

        ts_ms = str(int(time.time() * 1000))
        message = f"{ts_ms}{method.upper()}{self._canonical_signing_path(path)}".encode("utf-8")
        signature = self._private_key.sign(
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.DIGEST_LENGTH),
            hashes.SHA256(),
        )
        return {
            "KALSHI-ACCESS-KEY": self._settings.key_id,
            "KALSHI-ACCESS-TIMESTAMP": ts_ms,
            "KALSHI-ACCESS-SIGNATURE": base64.b64encode(signature).decode("utf-8"),
        }

    def _canonical_signing_path(self, path: str) -> str:
        path = path.split("?", 1)[0]
        if path.startswith("/trade-api/"):
            return path
        return f"{self._signing_prefix}{path if path.startswith('/') else '/' + path}"

    def _load_private_key(self):
        pem_text = self._settings.private_key_pem
        if not pem_text and self._settings.private_key_path:
            pem_path = Path(self._settings.private_key_path)
            if pem_path.exists():
                pem_text = pem_path.read_text(encoding="utf-8")
            else:
                LOGGER.warning("kalshi private key not found at %s", pem_path)

        if not pem_text:
            return None

        return serialization.load_pem_private_key(
            pem_text.encode("utf-8"),
            password=None,
        )
