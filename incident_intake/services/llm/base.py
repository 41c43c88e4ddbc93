"""
Shared machinery for vendor adapters.

BaseAIProvider wraps every vendor call with:
- token/cost estimate and rate-limit reservation (no network call on refusal)
- deadline (sync, stream and health-check timeouts)
- error mapping to the LLMError taxonomy
- health bookkeeping and settling the reservation with real usage

Subclasses implement _complete() and _stream() only.
"""
import asyncio
import dataclasses
import json
import logging
import math
import re
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional, Sequence

import httpx

from .errors import (
    LLMError,
    MalformedResponseError,
    ProviderConfigurationError,
    ProviderTimeoutError,
    RateLimitError,
    ServerError,
)
from .health import ProviderHealth
from .models import GenerationOptions, GenerationResult, Message, Pricing
from .rate_limiter import RateLimiter, Reservation

logger = logging.getLogger(__name__)

STRUCTURED_SUFFIX = "\n\nPlease respond with valid JSON only that matches this schema: {schema}"

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")


def estimate_tokens(text: str) -> int:
    """Rough count: 4 characters per token."""
    return math.ceil(len(text) / 4)


def parse_json_object(text: str, provider: str) -> dict[str, Any]:
    """
    Parse model output as a JSON object, tolerating ``` fences.

    Raises:
        MalformedResponseError: empty output, invalid JSON or not an object
    """
    cleaned = (text or "").strip()
    cleaned = _FENCE_END.sub("", _FENCE_START.sub("", cleaned)).strip()
    if not cleaned:
        raise MalformedResponseError("Empty response", provider)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(
            f"Response is not valid JSON: {e}", provider, original_error=e
        ) from e
    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Expected a JSON object, got {type(data).__name__}", provider
        )
    return data


class BaseAIProvider(ABC):
    """
    Base class of the real (network) adapters.

    Attributes:
        name: adapter name used in logs, health and priority config
        pricing: USD per 1M tokens, for the cost guard
    """

    name: str = "base"
    pricing: Pricing = Pricing()

    def __init__(
        self,
        api_key: str,
        model: str,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = 30.0,
        stream_timeout: float = 60.0,
        health_timeout: float = 5.0,
    ):
        if not api_key:
            raise ProviderConfigurationError(f"API key for {self.name} is not configured", self.name)
        self._api_key = api_key
        self._model_id = model
        self.rate_limiter = rate_limiter or RateLimiter()
        self.health = ProviderHealth(self.name)
        self.timeout = timeout
        self.stream_timeout = stream_timeout
        self.health_timeout = health_timeout

    @property
    def model_id(self) -> str:
        return self._model_id

    # Vendor-specific parts

    @abstractmethod
    async def _complete(self, prompt: str, options: GenerationOptions) -> GenerationResult:
        """One non-streaming request. Usage must be filled from the vendor response."""

    @abstractmethod
    def _stream(self, messages: Sequence[Message], options: GenerationOptions) -> AsyncIterator[str]:
        """Async generator of text chunks."""

    def _map_exception(self, error: Exception) -> LLMError:
        """Translate a vendor/transport exception. Subclasses extend this."""
        if isinstance(error, LLMError):
            return error
        if isinstance(error, httpx.TimeoutException):
            return ProviderTimeoutError(f"Request timed out: {error}", self.name, original_error=error)
        if isinstance(error, httpx.TransportError):
            return ServerError(f"Connection error: {error}", self.name, original_error=error)
        return LLMError(f"Unexpected error: {error}", self.name, original_error=error)

    # Admission and bookkeeping

    def _acquire(self, estimated_tokens: int, estimated_cost: float) -> Reservation:
        decision, reservation = self.rate_limiter.try_acquire(estimated_tokens, estimated_cost)
        if not decision.allowed:
            logger.warning(f"[{self.name}] Local rate limit: {decision.reason}")
            raise RateLimitError(
                f"Local rate limit: {decision.reason}",
                self.name,
                retry_after=decision.retry_after_seconds,
            )
        return reservation

    def _fail(self, reservation: Reservation, error: LLMError, started: float) -> None:
        self.rate_limiter.settle(reservation, 0, 0.0)
        self.health.record_failure(error, (time.monotonic() - started) * 1000)
        logger.warning(f"[{self.name}] Request failed: {error}")

    # Public API

    async def generate_content(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        options = options or GenerationOptions()
        prompt_tokens = estimate_tokens(prompt)
        reservation = self._acquire(
            prompt_tokens + options.max_tokens,
            self.pricing.cost(prompt_tokens, options.max_tokens),
        )

        started = time.monotonic()
        try:
            result = await asyncio.wait_for(self._complete(prompt, options), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            error = ProviderTimeoutError(f"No response within {self.timeout}s", self.name, original_error=e)
            self._fail(reservation, error, started)
            raise error from e
        except Exception as e:
            error = self._map_exception(e)
            self._fail(reservation, error, started)
            raise error from e

        result.provider = self.name
        result.model_id = result.model_id or self._model_id
        result.cost = self.pricing.cost(result.usage.prompt_tokens, result.usage.completion_tokens)
        latency_ms = (time.monotonic() - started) * 1000

        self.rate_limiter.settle(reservation, result.usage.total_tokens, result.cost)
        self.health.record_success(latency_ms, result.usage.total_tokens, result.cost)
        logger.debug(
            f"[{self.name}] Completed in {latency_ms:.0f}ms, "
            f"tokens={result.usage.total_tokens}, cost=${result.cost:.6f}"
        )
        return result

    async def generate_structured_content(
        self,
        prompt: str,
        schema: dict[str, Any],
        options: Optional[GenerationOptions] = None,
    ) -> dict[str, Any]:
        options = dataclasses.replace(options or GenerationOptions(), response_format="json")
        full_prompt = prompt + STRUCTURED_SUFFIX.format(schema=json.dumps(schema))
        result = await self.generate_content(full_prompt, options)
        try:
            return parse_json_object(result.text, self.name)
        except MalformedResponseError as e:
            self.health.record_failure(e)
            raise

    async def generate_content_stream(
        self,
        messages: Sequence[Message],
        options: Optional[GenerationOptions] = None,
    ) -> AsyncIterator[str]:
        options = options or GenerationOptions()
        prompt_tokens = estimate_tokens("".join(m.content for m in messages))
        if options.system_instruction:
            prompt_tokens += estimate_tokens(options.system_instruction)
        reservation = self._acquire(
            prompt_tokens + options.max_tokens,
            self.pricing.cost(prompt_tokens, options.max_tokens),
        )

        loop = asyncio.get_running_loop()
        started = time.monotonic()
        deadline = loop.time() + self.stream_timeout
        iterator = self._stream(messages, options).__aiter__()
        streamed_chars = 0
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                streamed_chars += len(chunk)
                yield chunk
        except asyncio.TimeoutError as e:
            error = ProviderTimeoutError(
                f"Stream exceeded {self.stream_timeout}s", self.name, original_error=e
            )
            self._fail(reservation, error, started)
            raise error from e
        except Exception as e:
            error = self._map_exception(e)
            self._fail(reservation, error, started)
            raise error from e
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

        completion_tokens = math.ceil(streamed_chars / 4)
        cost = self.pricing.cost(prompt_tokens, completion_tokens)
        self.rate_limiter.settle(reservation, prompt_tokens + completion_tokens, cost)
        self.health.record_success(
            (time.monotonic() - started) * 1000, prompt_tokens + completion_tokens, cost
        )

    async def health_check(self) -> bool:
        """Tiny request with the short health timeout."""
        try:
            await asyncio.wait_for(
                self._complete("ping", GenerationOptions(max_tokens=5, temperature=0.0)),
                timeout=self.health_timeout,
            )
            return True
        except Exception as e:
            logger.warning(f"[{self.name}] Health check failed: {e}")
            return False
