"""
Adapters for vendors exposing the OpenAI chat completions API.

DeepSeek and Kimi (Moonshot) differ only in base URL, model and pricing.
Requests go through the shared httpx client.
"""
import json
import logging
from typing import AsyncIterator, Optional, Sequence

import httpx

from .base import BaseAIProvider
from .errors import MalformedResponseError, error_from_status, parse_retry_after
from .models import GenerationOptions, GenerationResult, Message, Pricing, TokenUsage
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Best-effort error text from an OpenAI-style error body."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return error.get("message") or str(error)
    return str(error or data)[:200]


class OpenAICompatibleProvider(BaseAIProvider):
    """
    Generic `/chat/completions` adapter.

    Args:
        api_key: bearer token
        model: model id
        base_url: API root, without the /chat/completions suffix
    """

    name = "openai_compatible"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        rate_limiter: Optional[RateLimiter] = None,
        **kwargs,
    ):
        super().__init__(api_key, model, rate_limiter, **kwargs)
        self.base_url = base_url.rstrip("/")

    @property
    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, messages: list[dict], options: GenerationOptions, stream: bool = False) -> dict:
        if options.system_instruction:
            messages = [{"role": "system", "content": options.system_instruction}] + messages
        payload = {
            "model": self._model_id,
            "messages": messages,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.response_format == "json":
            payload["response_format"] = {"type": "json_object"}
        if stream:
            payload["stream"] = True
        return payload

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        raise error_from_status(
            response.status_code,
            _error_message(response),
            self.name,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
        )

    async def _complete(self, prompt: str, options: GenerationOptions) -> GenerationResult:
        from incident_intake.services.http_client import get_http_client

        client = await get_http_client()
        response = await client.post(
            f"{self.base_url}/chat/completions",
            headers=self._headers,
            json=self._payload([{"role": "user", "content": prompt}], options),
            timeout=self.timeout,
        )
        self._raise_for_status(response)

        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(
                f"Unexpected response shape: {e}", self.name, original_error=e
            ) from e

        usage = data.get("usage") or {}
        return GenerationResult(
            text=text,
            usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
            ),
            model_id=data.get("model", self._model_id),
        )

    async def _stream(self, messages: Sequence[Message], options: GenerationOptions) -> AsyncIterator[str]:
        from incident_intake.services.http_client import get_http_client

        client = await get_http_client()
        async with client.stream(
            "POST",
            f"{self.base_url}/chat/completions",
            headers=self._headers,
            json=self._payload([m.to_dict() for m in messages], options, stream=True),
            timeout=self.stream_timeout,
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                self._raise_for_status(response)

            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    return
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError as e:
                    raise MalformedResponseError(
                        f"Invalid stream chunk: {data[:100]}", self.name, original_error=e
                    ) from e
                choices = chunk.get("choices") or []
                if not choices:
                    continue
                content = (choices[0].get("delta") or {}).get("content")
                if content:
                    yield content


class DeepSeekProvider(OpenAICompatibleProvider):
    name = "deepseek"
    pricing = Pricing(input_per_million=0.14, output_per_million=0.28)

    def __init__(self, api_key: str, model: str = "deepseek-chat", base_url: str = "https://api.deepseek.com", **kwargs):
        super().__init__(api_key, model, base_url, **kwargs)


class KimiProvider(OpenAICompatibleProvider):
    name = "kimi"
    pricing = Pricing(input_per_million=1.65, output_per_million=1.65)

    def __init__(self, api_key: str, model: str = "moonshot-v1-8k", base_url: str = "https://api.moonshot.cn/v1", **kwargs):
        super().__init__(api_key, model, base_url, **kwargs)
