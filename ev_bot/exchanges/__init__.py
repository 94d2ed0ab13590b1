from .base import ExchangeAdapter
from .kalshi import KalshiClient, map_market

__all__ = ["ExchangeAdapter", "KalshiClient", "map_market"]
