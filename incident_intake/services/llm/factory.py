"""
Builds the provider chain from settings.

Adapters without an API key are skipped; the rest run in
AI_PROVIDER_PRIORITY order with the Mock provider as the last resort.
"""
import logging
from functools import lru_cache
from typing import Callable, Optional

from incident_intake.core.config import Settings, get_settings

from .anthropic_provider import ClaudeProvider
from .errors import ProviderConfigurationError
from .gemini_provider import GeminiProvider
from .mock_provider import MockProvider
from .openai_compatible import DeepSeekProvider, KimiProvider
from .protocol import AIProvider
from .rate_limiter import RateLimiter, RateLimits
from .selector import ProviderSelector

logger = logging.getLogger(__name__)


def _timeouts(settings: Settings) -> dict:
    return {
        "timeout": settings.AI_TIMEOUT_SECONDS,
        "stream_timeout": settings.AI_STREAM_TIMEOUT_SECONDS,
        "health_timeout": settings.AI_HEALTH_TIMEOUT_SECONDS,
    }


def _builders(settings: Settings) -> dict[str, Callable[[RateLimiter], AIProvider]]:
    """Name -> constructor; each adapter gets its own rate limiter."""
    timeouts = _timeouts(settings)
    return {
        "claude": lambda limiter: ClaudeProvider(
            api_key=settings.ANTHROPIC_API_KEY,
            model=settings.CLAUDE_MODEL,
            rate_limiter=limiter,
            **timeouts,
        ),
        "gemini": lambda limiter: GeminiProvider(
            api_key=settings.GEMINI_API_KEY,
            model=settings.GEMINI_MODEL,
            base_url=settings.GEMINI_BASE_URL,
            rate_limiter=limiter,
            **timeouts,
        ),
        "deepseek": lambda limiter: DeepSeekProvider(
            api_key=settings.DEEPSEEK_API_KEY,
            model=settings.DEEPSEEK_MODEL,
            base_url=settings.DEEPSEEK_BASE_URL,
            rate_limiter=limiter,
            **timeouts,
        ),
        "kimi": lambda limiter: KimiProvider(
            api_key=settings.KIMI_API_KEY,
            model=settings.KIMI_MODEL,
            base_url=settings.KIMI_BASE_URL,
            rate_limiter=limiter,
            **timeouts,
        ),
    }


def build_providers(settings: Optional[Settings] = None) -> list[AIProvider]:
    """
    Instantiate every configured adapter in priority order.

    Unknown names and adapters missing their key are logged and skipped.
    """
    settings = settings or get_settings()
    limits = RateLimits.from_settings(settings)
    builders = _builders(settings)

    providers: list[AIProvider] = []
    for name in settings.provider_priority:
        builder = builders.get(name)
        if builder is None:
            logger.warning(f"[Providers] Unknown provider in priority list: {name}")
            continue
        try:
            providers.append(builder(RateLimiter(limits)))
        except ProviderConfigurationError as e:
            logger.info(f"[Providers] {name} disabled: {e}")

    logger.info(
        f"[Providers] Active chain: {[p.name for p in providers] + ['mock']}"
    )
    return providers


def create_provider_selector(settings: Optional[Settings] = None) -> ProviderSelector:
    return ProviderSelector(build_providers(settings), fallback=MockProvider())


@lru_cache()
def get_provider_selector() -> ProviderSelector:
    """Process-wide selector built from settings."""
    return create_provider_selector()


# For tests - clears the cached selector
def clear_provider_cache():
    get_provider_selector.cache_clear()
