"""
Gemini adapter over the Generative Language REST API.
"""
import json
import logging
from typing import AsyncIterator, Optional, Sequence

import httpx

from .base import BaseAIProvider
from .errors import MalformedResponseError, error_from_status, parse_retry_after
from .models import GenerationOptions, GenerationResult, Message, MessageRole, Pricing, TokenUsage
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class GeminiProvider(BaseAIProvider):
    """
    Gemini via `models/{model}:generateContent`.

    Streaming uses `:streamGenerateContent?alt=sse`.
    """

    name = "gemini"
    pricing = Pricing(input_per_million=0.10, output_per_million=0.40)

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash-exp",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        rate_limiter: Optional[RateLimiter] = None,
        **kwargs,
    ):
        super().__init__(api_key, model, rate_limiter, **kwargs)
        self.base_url = base_url.rstrip("/")

    @property
    def _headers(self) -> dict:
        return {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}

    def _body(self, contents: list[dict], options: GenerationOptions) -> dict:
        config = {
            "maxOutputTokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.response_format == "json":
            config["responseMimeType"] = "application/json"
        body = {"contents": contents, "generationConfig": config}
        if options.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": options.system_instruction}]}
        return body

    @staticmethod
    def _convert_messages(messages: Sequence[Message]) -> tuple[list[dict], Optional[str]]:
        """Gemini names the assistant role 'model' and takes system text apart."""
        contents = []
        system_parts = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_parts.append(msg.content)
                continue
            role = "model" if msg.role == MessageRole.ASSISTANT else "user"
            contents.append({"role": role, "parts": [{"text": msg.content}]})
        return contents, "\n\n".join(system_parts) or None

    @staticmethod
    def _candidate_text(data: dict) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        try:
            message = response.json().get("error", {}).get("message", "")
        except (ValueError, AttributeError):
            message = response.text[:200]
        raise error_from_status(
            response.status_code,
            message or f"HTTP {response.status_code}",
            self.name,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
        )

    async def _complete(self, prompt: str, options: GenerationOptions) -> GenerationResult:
        from incident_intake.services.http_client import get_http_client

        client = await get_http_client()
        response = await client.post(
            f"{self.base_url}/models/{self._model_id}:generateContent",
            headers=self._headers,
            json=self._body([{"role": "user", "parts": [{"text": prompt}]}], options),
            timeout=self.timeout,
        )
        self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError("Response is not JSON", self.name, original_error=e) from e

        text = self._candidate_text(data)
        if not text:
            raise MalformedResponseError("Response has no candidate text", self.name)

        usage = data.get("usageMetadata") or {}
        return GenerationResult(
            text=text,
            usage=TokenUsage(
                prompt_tokens=usage.get("promptTokenCount", 0),
                completion_tokens=usage.get("candidatesTokenCount", 0),
            ),
            model_id=data.get("modelVersion", self._model_id),
        )

    async def _stream(self, messages: Sequence[Message], options: GenerationOptions) -> AsyncIterator[str]:
        from incident_intake.services.http_client import get_http_client

        contents, system = self._convert_messages(messages)
        body = self._body(contents, options)
        if system and "systemInstruction" not in body:
            body["systemInstruction"] = {"parts": [{"text": system}]}

        client = await get_http_client()
        async with client.stream(
            "POST",
            f"{self.base_url}/models/{self._model_id}:streamGenerateContent",
            params={"alt": "sse"},
            headers=self._headers,
            json=body,
            timeout=self.stream_timeout,
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                self._raise_for_status(response)

            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                try:
                    chunk = json.loads(line[len("data:"):].strip())
                except json.JSONDecodeError as e:
                    raise MalformedResponseError(
                        "Invalid stream chunk", self.name, original_error=e
                    ) from e
                text = self._candidate_text(chunk)
                if text:
                    yield text
