"""
AI provider error taxonomy.

Every adapter raises one of these; ProviderSelector moves to the next
provider on any of them. `retryable` says whether the same provider may
succeed later (rate limit, timeout, 5xx), not whether the selector retries.
"""
from typing import Optional


class LLMError(Exception):
    """Generic AI provider error."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        retryable: bool = False,
        original_error: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable
        self.original_error = original_error
        self.status_code = status_code

    def __str__(self) -> str:
        return f"[{self.provider}] {super().__str__()}"


class AuthenticationError(LLMError):
    """401/403. The key is wrong or revoked."""

    def __init__(self, message: str, provider: str = "unknown", **kwargs):
        kwargs.setdefault("status_code", 401)
        super().__init__(message, provider, retryable=False, **kwargs)


class RateLimitError(LLMError):
    """429 from the vendor, or our own pre-flight cost guard."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, provider, retryable=True, **kwargs)
        self.retry_after = retry_after


class ProviderTimeoutError(LLMError):
    """Deadline exceeded."""

    def __init__(self, message: str, provider: str = "unknown", **kwargs):
        super().__init__(message, provider, retryable=True, **kwargs)


class ServerError(LLMError):
    """5xx or connection failure."""

    def __init__(self, message: str, provider: str = "unknown", **kwargs):
        super().__init__(message, provider, retryable=True, **kwargs)


class InvalidRequestError(LLMError):
    """400/422. Our request was malformed."""

    def __init__(self, message: str, provider: str = "unknown", **kwargs):
        kwargs.setdefault("status_code", 400)
        super().__init__(message, provider, retryable=False, **kwargs)


class MalformedResponseError(LLMError):
    """Vendor answered but the body could not be used (bad JSON, no text)."""

    def __init__(self, message: str, provider: str = "unknown", **kwargs):
        super().__init__(message, provider, retryable=False, **kwargs)


class ProviderConfigurationError(LLMError):
    """Adapter cannot be built (missing API key)."""

    def __init__(self, message: str, provider: str = "unknown"):
        super().__init__(message, provider, retryable=False)


class ProvidersExhaustedError(LLMError):
    """Every provider, fallback included, failed."""

    def __init__(self, message: str, attempts: Optional[list] = None):
        super().__init__(message, provider="selector", retryable=False)
        self.attempts = attempts or []


def error_from_status(
    status_code: int,
    message: str,
    provider: str,
    retry_after: Optional[int] = None,
) -> LLMError:
    """Map an HTTP status from a vendor API to the taxonomy."""
    if status_code in (401, 403):
        return AuthenticationError(
            f"Authentication failed: {message}", provider, status_code=status_code
        )
    if status_code == 429:
        return RateLimitError(
            f"Rate limit exceeded: {message}", provider, retry_after=retry_after
        )
    if status_code in (400, 404, 422):
        return InvalidRequestError(
            f"Invalid request: {message}", provider, status_code=status_code
        )
    if status_code >= 500:
        return ServerError(f"Server error: {message}", provider, status_code=status_code)
    return LLMError(message, provider, retryable=False, status_code=status_code)


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Retry-After header in seconds; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(0, int(float(value)))
    except ValueError:
        return None
