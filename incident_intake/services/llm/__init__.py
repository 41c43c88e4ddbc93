"""
AI provider layer.

Vendor adapters (Claude, Gemini, DeepSeek, Kimi) share rate limiting,
deadlines, health tracking and error mapping; ProviderSelector fails over
between them and ends with the offline Mock provider.

Usage:
    from incident_intake.services.llm import get_provider_selector, GenerationOptions

    selector = get_provider_selector()
    selection = await selector.select_structured(prompt, schema, GenerationOptions(max_tokens=500))
"""

from .errors import (
    AuthenticationError,
    InvalidRequestError,
    LLMError,
    MalformedResponseError,
    ProviderConfigurationError,
    ProvidersExhaustedError,
    ProviderTimeoutError,
    RateLimitError,
    ServerError,
)
from .factory import build_providers, clear_provider_cache, create_provider_selector, get_provider_selector
from .health import ProviderHealth
from .mock_provider import MockProvider
from .models import (
    GenerationOptions,
    GenerationResult,
    Message,
    MessageRole,
    ProviderAttempt,
    StructuredSelection,
    TokenUsage,
)
from .protocol import AIProvider
from .rate_limiter import RateLimitDecision, RateLimiter, RateLimits, Reservation
from .selector import ProviderSelector

__all__ = [
    # Protocol
    "AIProvider",
    # Models
    "GenerationOptions",
    "GenerationResult",
    "Message",
    "MessageRole",
    "ProviderAttempt",
    "StructuredSelection",
    "TokenUsage",
    # Errors
    "LLMError",
    "AuthenticationError",
    "RateLimitError",
    "ProviderTimeoutError",
    "ServerError",
    "InvalidRequestError",
    "MalformedResponseError",
    "ProviderConfigurationError",
    "ProvidersExhaustedError",
    # Rate limiting and health
    "RateLimiter",
    "RateLimits",
    "RateLimitDecision",
    "Reservation",
    "ProviderHealth",
    # Providers
    "MockProvider",
    "ProviderSelector",
    # Factory
    "build_providers",
    "create_provider_selector",
    "get_provider_selector",
    "clear_provider_cache",
]
