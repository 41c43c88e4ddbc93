"""
Claude adapter (Anthropic SDK).
"""
import dataclasses
import logging
from typing import AsyncIterator, Optional, Sequence

import anthropic

from .base import BaseAIProvider
from .errors import (
    AuthenticationError,
    InvalidRequestError,
    LLMError,
    ProviderTimeoutError,
    RateLimitError,
    ServerError,
    error_from_status,
    parse_retry_after,
)
from .models import GenerationOptions, GenerationResult, Message, MessageRole, Pricing, TokenUsage
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class ClaudeProvider(BaseAIProvider):
    """
    Claude via anthropic.AsyncAnthropic.

    Example:
        provider = ClaudeProvider(api_key="sk-ant-...", model="claude-3-5-haiku-20241022")
        result = await provider.generate_content("Summarize: ...")
    """

    name = "claude"
    pricing = Pricing(input_per_million=0.80, output_per_million=4.00)

    def __init__(
        self,
        api_key: str,
        model: str,
        rate_limiter: Optional[RateLimiter] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
        **kwargs,
    ):
        super().__init__(api_key, model, rate_limiter, **kwargs)
        # SDK retries are disabled; failover is the selector's job
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)

    def _request_kwargs(self, messages: list[dict], options: GenerationOptions) -> dict:
        kwargs = {
            "model": self._model_id,
            "messages": messages,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.system_instruction:
            kwargs["system"] = options.system_instruction
        return kwargs

    @staticmethod
    def _convert_messages(messages: Sequence[Message]) -> tuple[list[dict], Optional[str]]:
        """Claude takes system text separately from the turns."""
        converted = []
        system_parts = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_parts.append(msg.content)
            else:
                converted.append({"role": msg.role.value, "content": msg.content})
        return converted, "\n\n".join(system_parts) or None

    async def _complete(self, prompt: str, options: GenerationOptions) -> GenerationResult:
        response = await self._client.messages.create(
            **self._request_kwargs([{"role": "user", "content": prompt}], options)
        )
        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        return GenerationResult(
            text=text,
            usage=TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
            ),
            model_id=response.model,
        )

    async def _stream(self, messages: Sequence[Message], options: GenerationOptions) -> AsyncIterator[str]:
        converted, system = self._convert_messages(messages)
        if system and not options.system_instruction:
            options = dataclasses.replace(options, system_instruction=system)
        async with self._client.messages.stream(**self._request_kwargs(converted, options)) as stream:
            async for text in stream.text_stream:
                yield text

    def _map_exception(self, error: Exception) -> LLMError:
        # APITimeoutError subclasses APIConnectionError, so it goes first
        if isinstance(error, anthropic.APITimeoutError):
            return ProviderTimeoutError(f"Claude timeout: {error}", self.name, original_error=error)
        if isinstance(error, anthropic.APIConnectionError):
            return ServerError(f"Claude connection error: {error}", self.name, original_error=error)
        if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return AuthenticationError(
                f"Claude authentication failed: {error}",
                self.name,
                original_error=error,
                status_code=error.status_code,
            )
        if isinstance(error, anthropic.RateLimitError):
            return RateLimitError(
                f"Claude rate limit: {error}",
                self.name,
                retry_after=parse_retry_after(error.response.headers.get("retry-after")),
                original_error=error,
            )
        if isinstance(error, anthropic.BadRequestError):
            return InvalidRequestError(
                f"Claude rejected the request: {error}", self.name, original_error=error
            )
        if isinstance(error, anthropic.APIStatusError):
            mapped = error_from_status(error.status_code, str(error), self.name)
            mapped.original_error = error
            return mapped
        return super()._map_exception(error)
