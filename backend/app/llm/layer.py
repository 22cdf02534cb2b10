"""LLM Layer — the structured-generation collaborator's Anthropic client.

Only single-turn completions are needed: the topic engine sends a cached
system prompt plus one user message and parses the reply itself
(app.engines.topics.extraction), failing closed on malformed output.

Transient API failures (rate limits, connection errors, 5xx) are retried
with exponential backoff behind a circuit breaker; everything else
propagates on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar

import anthropic

from app.config import MODEL_MAP, ModelTier, settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# USD per million tokens: (input, output, cache read)
_PRICES_PER_MTOK: dict[str, tuple[float, float, float]] = {
    "opus": (15.0, 75.0, 1.50),
    "sonnet": (3.0, 15.0, 0.30),
    "haiku": (0.80, 4.0, 0.08),
}

_RETRYABLE = (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.InternalServerError)


@dataclass
class LLMResponse:
    """Usage and cost of one call, returned next to the reply."""

    model_version: str = ""          # model id echoed by the API
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    stop_reason: str = ""
    cost: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CircuitBreaker:
    """Fails fast after repeated API failures.

    closed → open after `failure_threshold` consecutive failures;
    open → half_open once `reset_timeout` seconds have passed. A success
    closes it again, a failure while half open reopens it.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60.0) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._failure_count = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return self.CLOSED
        if time.monotonic() - self._opened_at >= self.reset_timeout:
            return self.HALF_OPEN
        return self.OPEN

    def allow_request(self) -> bool:
        return self.state != self.OPEN

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failure_count += 1
        if self.state == self.HALF_OPEN or self._failure_count >= self.failure_threshold:
            if self._opened_at is None:
                logger.warning("Circuit breaker OPEN after %d consecutive failures", self._failure_count)
            self._opened_at = time.monotonic()


class CircuitBreakerOpenError(Exception):
    """The breaker is open; the call was not attempted."""


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * (2 ** attempt), max_delay)


async def _retry_with_backoff(
    coro_factory: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    circuit_breaker: CircuitBreaker | None = None,
) -> T:
    """Await coro_factory() until it succeeds or retries run out.

    coro_factory must build a fresh awaitable per attempt. Every failure,
    retryable or not, counts against the circuit breaker.
    """
    if circuit_breaker is not None and not circuit_breaker.allow_request():
        raise CircuitBreakerOpenError("Anthropic API calls temporarily disabled (circuit open)")

    attempt = 0
    while True:
        try:
            result = await coro_factory()
        except _RETRYABLE as e:
            if circuit_breaker is not None:
                circuit_breaker.record_failure()
            if attempt >= max_retries:
                raise
            delay = _backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "LLM call failed (%s), attempt %d/%d, retrying in %.1fs",
                type(e).__name__, attempt + 1, max_retries + 1, delay,
            )
            attempt += 1
            await asyncio.sleep(delay)
        except Exception:
            if circuit_breaker is not None:
                circuit_breaker.record_failure()
            raise
        else:
            if circuit_breaker is not None:
                circuit_breaker.record_success()
            return result


def message_text(message: Any) -> str:
    """Concatenate the text blocks of an Anthropic Message."""
    blocks = getattr(message, "content", None) or []
    return "".join(block.text for block in blocks if getattr(block, "type", None) == "text")


class LLMLayer:
    """AsyncAnthropic wrapper used by StructuredGenerator."""

    def __init__(self) -> None:
        self.raw_client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        self.circuit_breaker = CircuitBreaker(failure_threshold=5, reset_timeout=60.0)

    async def complete_raw(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        system: str | list[dict] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> tuple[anthropic.types.Message, LLMResponse]:
        """One completion; returns the raw Message and its usage metadata.

        `system` may be a plain string or cache_control blocks from
        build_cached_system. temperature defaults to settings (0.0).
        """
        request: dict[str, Any] = dict(
            model=MODEL_MAP[model_tier],
            max_tokens=max_tokens or settings.default_max_tokens,
            temperature=settings.default_temperature if temperature is None else temperature,
            messages=messages,
        )
        if system:
            request["system"] = system

        message = await _retry_with_backoff(
            lambda: self.raw_client.messages.create(**request),
            max_retries=settings.default_max_retries,
            circuit_breaker=self.circuit_breaker,
        )
        meta = self._extract_metadata(message, model_tier)
        logger.debug(
            "LLM %s: %d in (%d cached) / %d out tokens, $%.4f",
            model_tier, meta.input_tokens, meta.cached_input_tokens, meta.output_tokens, meta.cost,
        )
        return message, meta

    def _extract_metadata(self, message: Any, model_tier: ModelTier) -> LLMResponse:
        usage = message.usage
        input_tokens = getattr(usage, "input_tokens", 0) or 0
        output_tokens = getattr(usage, "output_tokens", 0) or 0
        cached = getattr(usage, "cache_read_input_tokens", 0) or 0
        return LLMResponse(
            model_version=message.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cached_input_tokens=cached,
            stop_reason=message.stop_reason or "",
            cost=self.estimate_cost(model_tier, input_tokens, output_tokens, cached),
        )

    def build_cached_system(self, text: str) -> list[dict]:
        """Wrap a system prompt in one ephemeral cache_control block.

        The extraction prompt repeats for every note of a rebuild batch.
        """
        return [{"type": "text", "text": text, "cache_control": {"type": "ephemeral"}}]

    def estimate_cost(
        self,
        model_tier: ModelTier,
        input_tokens: int,
        output_tokens: int,
        cached_input_tokens: int = 0,
    ) -> float:
        """USD cost of one call; cached input is billed at the cache-read rate."""
        input_price, output_price, cache_price = _PRICES_PER_MTOK[model_tier]
        cost = (
            (input_tokens - cached_input_tokens) * input_price
            + cached_input_tokens * cache_price
            + output_tokens * output_price
        ) / 1_000_000
        return round(cost, 6)
