"""
Provider failover.

Providers are tried in priority order; any error moves on to the next one.
The fallback (Mock) runs last. Only when the fallback also fails does the
caller see ProvidersExhaustedError.
"""
import logging
from typing import Any, AsyncIterator, Optional, Sequence

from .errors import LLMError, ProvidersExhaustedError
from .models import (
    GenerationOptions,
    GenerationResult,
    Message,
    ProviderAttempt,
    StructuredSelection,
)
from .protocol import AIProvider

logger = logging.getLogger(__name__)


class ProviderSelector:
    """
    Ordered failover over AIProvider adapters.

    Also satisfies AIProvider, so callers do not need to know whether they
    talk to one adapter or to the chain.

    Args:
        providers: adapters in priority order (may be empty)
        fallback: last resort, normally MockProvider
    """

    name = "selector"

    def __init__(self, providers: Sequence[AIProvider], fallback: AIProvider):
        self.providers = list(providers)
        self.fallback = fallback

    @property
    def model_id(self) -> str:
        chain = self._chain()
        return chain[0].model_id if chain else ""

    def _chain(self) -> list[AIProvider]:
        return self.providers + [self.fallback]

    @staticmethod
    def _attempt_failed(provider: AIProvider, error: Exception, attempts: list) -> None:
        attempts.append(
            ProviderAttempt(
                provider=provider.name,
                success=False,
                error=str(error),
                error_type=type(error).__name__,
            )
        )
        if isinstance(error, LLMError):
            logger.warning(f"[Selector] {provider.name} failed: {error}")
        else:
            logger.exception(f"[Selector] Unexpected error from {provider.name}")

    def _exhausted(self, attempts: list) -> ProvidersExhaustedError:
        summary = "; ".join(f"{a.provider}: {a.error}" for a in attempts)
        logger.error(f"[Selector] All providers failed: {summary}")
        return ProvidersExhaustedError(f"All AI providers failed ({summary})", attempts)

    async def select_structured(
        self,
        prompt: str,
        schema: dict[str, Any],
        options: Optional[GenerationOptions] = None,
    ) -> StructuredSelection:
        """
        Structured output plus the provider that produced it.

        Raises:
            ProvidersExhaustedError: every provider and the fallback failed
        """
        attempts: list[ProviderAttempt] = []
        for provider in self._chain():
            try:
                data = await provider.generate_structured_content(prompt, schema, options)
            except Exception as e:
                self._attempt_failed(provider, e, attempts)
                continue
            attempts.append(ProviderAttempt(provider=provider.name, success=True))
            if provider is self.fallback:
                logger.warning("[Selector] Using fallback provider")
            return StructuredSelection(data=data, provider=provider.name, attempts=attempts)
        raise self._exhausted(attempts)

    async def generate_structured_content(
        self,
        prompt: str,
        schema: dict[str, Any],
        options: Optional[GenerationOptions] = None,
    ) -> dict[str, Any]:
        selection = await self.select_structured(prompt, schema, options)
        return selection.data

    async def generate_content(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        attempts: list[ProviderAttempt] = []
        for provider in self._chain():
            try:
                return await provider.generate_content(prompt, options)
            except Exception as e:
                self._attempt_failed(provider, e, attempts)
        raise self._exhausted(attempts)

    async def generate_content_stream(
        self,
        messages: Sequence[Message],
        options: Optional[GenerationOptions] = None,
    ) -> AsyncIterator[str]:
        """
        Stream from the first provider that completes.

        Each provider's output is buffered until it finishes, so a failure
        mid-stream never leaks partial text before failing over.
        """
        attempts: list[ProviderAttempt] = []
        for provider in self._chain():
            chunks: list[str] = []
            try:
                async for chunk in provider.generate_content_stream(messages, options):
                    chunks.append(chunk)
            except Exception as e:
                self._attempt_failed(provider, e, attempts)
                continue
            for chunk in chunks:
                yield chunk
            return
        raise self._exhausted(attempts)

    def health_report(self) -> dict[str, Any]:
        """Health and rate-limit usage per adapter, fallback included."""
        report = {}
        for provider in self._chain():
            entry: dict[str, Any] = {"model_id": provider.model_id}
            health = getattr(provider, "health", None)
            if health is not None:
                entry["health"] = health.snapshot().to_dict()
            limiter = getattr(provider, "rate_limiter", None)
            if limiter is not None:
                entry["rate_limits"] = limiter.usage()
            report[provider.name] = entry
        return report
