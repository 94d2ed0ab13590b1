from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

KALSHI_PROD_BASE_URL = "https://api.elections.kalshi.com/trade-api/v2"
KALSHI_DEMO_BASE_URL = "https://demo-api.kalshi.co/trade-api/v2"


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _as_optional_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _as_csv(value: str | None) -> List[str]:
    if value is None or not value.strip():
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _kalshi_base_url(environment: str, override: str | None) -> str:
    if override and override.strip():
        return override.strip().rstrip("/")
    if environment == "prod":
        return KALSHI_PROD_BASE_URL
    return KALSHI_DEMO_BASE_URL


@dataclass(frozen=True)
class KalshiSettings:
    environment: str = "demo"
    api_base_url: str = KALSHI_DEMO_BASE_URL
    key_id: str | None = None
    private_key_path: str | None = None
    private_key_pem: str | None = None
    page_size: int = 200
    max_pages: int = 100
    timeout_seconds: float = 15.0

    @property
    def has_credentials(self) -> bool:
        return bool(self.key_id and (self.private_key_pem or self.private_key_path))


@dataclass(frozen=True)
class ForecasterSettings:
    api_key: str = ""
    model: str = "claude-sonnet-4-20250514"
    enable_web_search: bool = False
    web_search_max_uses: int = 3
    max_tokens: int = 1500
    web_search_max_tokens: int = 4096
    # None picks 1s, or 60s when web search is on.
    delay_seconds: float | None = None
    max_retries: int = 3
    backoff_base_seconds: float = 15.0
    backoff_max_seconds: float = 120.0

    @property
    def effective_delay_seconds(self) -> float:
        if self.delay_seconds is not None:
            return max(0.0, self.delay_seconds)
        return 60.0 if self.enable_web_search else 1.0


@dataclass(frozen=True)
class TradingSettings:
    min_edge_threshold: float = 0.05
    kelly_fraction: float = 0.25
    max_position_usd: float = 50.0
    max_portfolio_exposure_usd: float = 500.0
    scan_interval_seconds: int = 300
    market_categories: List[str] = field(
        default_factory=lambda: ["politics", "economics", "crypto"],
    )
    max_trades_per_hour: int = 20
    min_confidence: float = 0.30
    daily_loss_limit_fraction: float = 0.10
    max_forecasts_per_cycle: int = 10
    max_spread_cents: int = 15
    min_volume: int = 10

    @property
    def daily_loss_limit_usd(self) -> float:
        return self.max_portfolio_exposure_usd * self.daily_loss_limit_fraction


@dataclass(frozen=True)
class AppSettings:
    live_mode: bool
    run_once: bool
    paper_balance_usd: float
    log_level: str
    kalshi: KalshiSettings
    forecaster: ForecasterSettings
    trading: TradingSettings
    log_file: str | None = None


def load_settings() -> AppSettings:
    load_dotenv(override=False)

    environment = (os.getenv("KALSHI_ENV") or "demo").strip().lower()
    if environment not in {"demo", "prod"}:
        raise ValueError(f"KALSHI_ENV must be 'demo' or 'prod', got {environment!r}")

    private_key_path = os.getenv("KALSHI_PRIVATE_KEY_PATH")
    if private_key_path:
        private_key_path = str(Path(private_key_path).expanduser())

    # PEMs pasted into .env files usually carry literal "\n" sequences.
    private_key_pem = os.getenv("KALSHI_PRIVATE_KEY_PEM")
    if private_key_pem:
        private_key_pem = private_key_pem.replace("\\n", "\n")

    kalshi = KalshiSettings(
        environment=environment,
        api_base_url=_kalshi_base_url(environment, os.getenv("KALSHI_API_BASE_URL")),
        key_id=os.getenv("KALSHI_API_KEY_ID") or None,
        private_key_path=private_key_path or None,
        private_key_pem=private_key_pem or None,
        page_size=_as_int(os.getenv("KALSHI_PAGE_SIZE"), 200),
        max_pages=_as_int(os.getenv("KALSHI_MAX_PAGES"), 100),
        timeout_seconds=_as_float(os.getenv("KALSHI_TIMEOUT_SECONDS"), 15.0),
    )

    forecaster = ForecasterSettings(
        api_key=os.getenv("ANTHROPIC_API_KEY", ""),
        model=os.getenv("FORECASTER_MODEL", "claude-sonnet-4-20250514"),
        enable_web_search=_as_bool(os.getenv("FORECASTER_ENABLE_WEB_SEARCH"), False),
        web_search_max_uses=_as_int(os.getenv("FORECASTER_WEB_SEARCH_MAX_USES"), 3),
        delay_seconds=_as_optional_float(os.getenv("FORECASTER_DELAY_SECONDS")),
        max_retries=_as_int(os.getenv("FORECASTER_MAX_RETRIES"), 3),
    )

    categories_raw = os.getenv("MARKET_CATEGORIES")
    trading = TradingSettings(
        min_edge_threshold=_as_float(os.getenv("MIN_EDGE_THRESHOLD"), 0.05),
        kelly_fraction=_as_float(os.getenv("KELLY_FRACTION"), 0.25),
        max_position_usd=_as_float(os.getenv("MAX_POSITION_USD"), 50.0),
        max_portfolio_exposure_usd=_as_float(os.getenv("MAX_PORTFOLIO_EXPOSURE_USD"), 500.0),
        scan_interval_seconds=_as_int(os.getenv("SCAN_INTERVAL_SECONDS"), 300),
        market_categories=(
            _as_csv(categories_raw)
            if categories_raw is not None
            else ["politics", "economics", "crypto"]
        ),
        max_trades_per_hour=_as_int(os.getenv("MAX_TRADES_PER_HOUR"), 20),
        min_confidence=_as_float(os.getenv("MIN_CONFIDENCE"), 0.30),
        daily_loss_limit_fraction=_as_float(os.getenv("DAILY_LOSS_LIMIT_FRACTION"), 0.10),
        max_forecasts_per_cycle=_as_int(os.getenv("MAX_FORECASTS_PER_CYCLE"), 10),
        max_spread_cents=_as_int(os.getenv("MAX_SPREAD_CENTS"), 15),
        min_volume=_as_int(os.getenv("MIN_VOLUME"), 10),
    )

    if not 0.0 < trading.kelly_fraction <= 1.0:
        raise ValueError(f"KELLY_FRACTION must be in (0, 1], got {trading.kelly_fraction}")
    if trading.min_edge_threshold < 0.0:
        raise ValueError(f"MIN_EDGE_THRESHOLD must be >= 0, got {trading.min_edge_threshold}")

    return AppSettings(
        live_mode=_as_bool(os.getenv("EV_LIVE_MODE"), False),
        run_once=_as_bool(os.getenv("EV_RUN_ONCE"), False),
        paper_balance_usd=_as_float(os.getenv("PAPER_BALANCE_USD"), 1000.0),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE") or None,
        kalshi=kalshi,
        forecaster=forecaster,
        trading=trading,
    )
