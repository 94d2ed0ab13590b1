"""LLM probability forecaster backed by the Anthropic Messages API."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

import anthropic

from ev_bot.config import ForecasterSettings
from ev_bot.models import Contract, Estimate

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a world-class probability forecaster, trained in the tradition of superforecasting (Tetlock). Your job is to estimate the probability that a prediction market contract resolves YES.

You must:
1. Consider base rates for this type of event
2. Identify the key factors that could push the probability up or down
3. Consider the time horizon and how much could change
4. Be well-calibrated: your 70% predictions should come true ~70% of the time
5. Avoid anchoring to the current market price; reason independently
6. Think about what information the market might be missing or overweighting
7. If you lack current information needed to forecast accurately, lower your confidence and note this in your reasoning

IMPORTANT: Your training data has a knowledge cutoff. For questions about recent events, current data, or fast-moving situations, acknowledge what you don't know and reflect that uncertainty in both your probability and confidence scores. A low-confidence estimate is far more useful than a falsely precise one.

Output your response as JSON with this exact structure:
{
  "probability": <number between 0 and 1>,
  "confidence": <number between 0 and 1, how confident you are in your estimate>,
  "reasoning": "<your step-by-step reasoning>",
  "key_factors_yes": ["<factor 1>", "<factor 2>"],
  "key_factors_no": ["<factor 1>", "<factor 2>"],
  "base_rate_estimate": <number or null if not applicable>,
  "information_edge": "<what might the market be missing, or null if you have no informational advantage>"
}

Be precise. Be calibrated. Don't hedge excessively; give your best estimate."""

WEB_SEARCH_ADDENDUM = """

You have access to web search. Use it to look up current information before forming your estimate, especially for questions about recent events, current polls, economic data, or anything that may have changed since your training data cutoff. Search first, then reason."""

FALLBACK_CONFIDENCE = 0.3

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_PROBABILITY_TEXT = re.compile(r"probability[\"\s:]*([0-9.]+)", re.IGNORECASE)


class ForecastError(RuntimeError):
    pass


def _clamp(value: float, low: float, high: float) -> float:
    # json.loads accepts NaN and Infinity literals.
    if not math.isfinite(value):
        raise ValueError(f"non-finite value {value!r}")
    return max(low, min(high, value))


def parse_forecast_text(text: str) -> tuple[float, float, str]:
    """Extract (probability, confidence, reasoning) from a model reply.

    Falls back to a bare ``probability: 0.xx`` match, or 0.5, with low
    confidence when the reply carries no usable JSON object.
    """
    match = _JSON_OBJECT.search(text)
    if match:
        try:
            data = json.loads(match.group(0))
            probability = _clamp(float(data["probability"]), 0.01, 0.99)
            confidence = _clamp(float(data.get("confidence", 0.0)), 0.0, 1.0)
            reasoning = str(data.get("reasoning") or "No reasoning provided")
            return probability, confidence, reasoning
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError):
            pass

    LOGGER.warning("failed to parse forecast reply as JSON, falling back to text extraction")
    probability = 0.5
    prob_match = _PROBABILITY_TEXT.search(text)
    if prob_match:
        try:
            probability = _clamp(float(prob_match.group(1)), 0.01, 0.99)
        except ValueError:
            probability = 0.5
    return probability, FALLBACK_CONFIDENCE, text[:500]


def _block_field(block: Any, name: str) -> Any:
    if isinstance(block, dict):
        return block.get(name)
    return getattr(block, name, None)


def extract_text(content: Sequence[Any]) -> str:
    return "\n".join(
        str(_block_field(block, "text") or "")
        for block in content
        if _block_field(block, "type") == "text"
    )


def extract_sources(content: Sequence[Any]) -> tuple[str, ...]:
    urls: list[str] = []
    for block in content:
        if _block_field(block, "type") != "web_search_tool_result":
            continue
        results = _block_field(block, "content")
        if not isinstance(results, (list, tuple)):
            continue
        for result in results:
            if _block_field(result, "type") != "web_search_result":
                continue
            url = _block_field(result, "url")
            if url:
                urls.append(str(url))
    return tuple(urls)


def build_prompt(contract: Contract, context: str | None = None, today: str | None = None) -> str:
    today = today or datetime.now(timezone.utc).date().isoformat()
    parts = [
        "# Market Contract",
        f"**Title:** {contract.title}",
        f"**Subtitle:** {contract.subtitle}" if contract.subtitle else "",
        f"**Ticker:** {contract.ticker}",
        f"**Category:** {contract.category}",
        f"**Expiration:** {contract.expiration}",
        (
            f"**Current Market Prices:** YES ask: {contract.yes_ask}c | YES bid: {contract.yes_bid}c | "
            f"NO ask: {contract.no_ask}c | NO bid: {contract.no_bid}c"
        ),
        f"**Volume:** {contract.volume} contracts | Open Interest: {contract.open_interest}",
        "",
        f"Today's date is: {today}",
        "",
        "What is the probability this contract resolves YES?",
    ]
    if context:
        parts.extend(["", "# Additional Context", context])
    return "\n".join(part for part in parts if part)


class LLMForecaster:
    def __init__(
        self,
        settings: ForecasterSettings,
        client: Any | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        # Retries are handled here so 429 backoff follows our own schedule.
        self._client = client or anthropic.AsyncAnthropic(api_key=settings.api_key or None, max_retries=0)
        self._sleep = sleep
        if settings.enable_web_search:
            LOGGER.info("forecaster: web search enabled (max %d searches per forecast)", settings.web_search_max_uses)

    @property
    def settings(self) -> ForecasterSettings:
        return self._settings

    def _request_kwargs(self, contract: Contract, context: str | None) -> dict[str, Any]:
        system = SYSTEM_PROMPT
        kwargs: dict[str, Any] = {
            "model": self._settings.model,
            "max_tokens": self._settings.max_tokens,
            "messages": [{"role": "user", "content": build_prompt(contract, context)}],
        }
        if self._settings.enable_web_search:
            system += WEB_SEARCH_ADDENDUM
            kwargs["max_tokens"] = self._settings.web_search_max_tokens
            kwargs["tools"] = [
                {
                    "type": "web_search_20250305",
                    "name": "web_search",
                    "max_uses": self._settings.web_search_max_uses,
                }
            ]
        kwargs["system"] = system
        return kwargs

    async def forecast(self, contract: Contract, context: str | None = None) -> Estimate:
        LOGGER.debug("forecasting %s: %s", contract.ticker, contract.title)
        response = await self._create_with_retry(self._request_kwargs(contract, context), contract.ticker)

        content = list(_block_field(response, "content") or [])
        probability, confidence, reasoning = parse_forecast_text(extract_text(content))
        sources = extract_sources(content)

        estimate = Estimate(
            ticker=contract.ticker,
            probability_yes=probability,
            confidence=confidence,
            reasoning=reasoning,
            sources=sources,
        )
        LOGGER.info(
            "forecast for %s: %.1f%% YES (confidence %.0f%%), market %dc%s",
            contract.ticker,
            probability * 100,
            confidence * 100,
            contract.yes_ask,
            f" [{len(sources)} sources]" if sources else "",
        )
        return estimate

    async def forecast_batch(
        self,
        contracts: Sequence[Contract],
        context: str | None = None,
        delay_seconds: float | None = None,
    ) -> list[Estimate]:
        """Forecast contracts one at a time, dropping individual failures."""
        delay = self._settings.effective_delay_seconds if delay_seconds is None else max(0.0, delay_seconds)
        if self._settings.enable_web_search and contracts:
            LOGGER.info(
                "web search mode: %.0fs between forecasts for %d contracts",
                delay,
                len(contracts),
            )

        estimates: list[Estimate] = []
        for index, contract in enumerate(contracts):
            try:
                estimates.append(await self.forecast(contract, context))
            except ForecastError as exc:
                LOGGER.error("forecast failed for %s: %s", contract.ticker, exc)
            if delay > 0 and index < len(contracts) - 1:
                await self._sleep(delay)
        return estimates

    async def _create_with_retry(self, kwargs: dict[str, Any], ticker: str) -> Any:
        max_retries = max(0, self._settings.max_retries)
        for attempt in range(max_retries + 1):
            try:
                return await self._client.messages.create(**kwargs)
            except anthropic.RateLimitError as exc:
                if attempt >= max_retries:
                    raise ForecastError(f"rate limited after {max_retries} retries: {exc}") from exc
                wait = self._backoff_seconds(exc, attempt)
                LOGGER.warning(
                    "rate limited on %s, waiting %.0fs (attempt %d/%d)",
                    ticker,
                    wait,
                    attempt + 1,
                    max_retries,
                )
                await self._sleep(wait)
            except anthropic.APIError as exc:
                raise ForecastError(f"anthropic api error: {exc}") from exc
        raise ForecastError("forecast request failed without a response")

    def _backoff_seconds(self, exc: anthropic.RateLimitError, attempt: int) -> float:
        retry_after = 0.0
        response = getattr(exc, "response", None)
        if response is not None:
            raw = response.headers.get("retry-after")
            if raw:
                try:
                    retry_after = float(raw)
                except ValueError:
                    retry_after = 0.0
        if retry_after > 0:
            return retry_after
        return min(
            self._settings.backoff_base_seconds * (2 ** attempt),
            self._settings.backoff_max_seconds,
        )
