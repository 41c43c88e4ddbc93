"""
Tests for the OpenAI-compatible adapters (DeepSeek, Kimi).

HTTP is served by httpx.MockTransport through the shared client.
"""
import json

import httpx
import pytest
from unittest.mock import patch

from incident_intake.services.llm import (
    AuthenticationError,
    GenerationOptions,
    InvalidRequestError,
    Message,
    ProviderConfigurationError,
    RateLimitError,
    RateLimiter,
    RateLimits,
    ServerError,
)
from incident_intake.services.llm.errors import MalformedResponseError
from incident_intake.services.llm.openai_compatible import DeepSeekProvider, KimiProvider


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def completion(text: str, prompt_tokens: int = 100, completion_tokens: int = 20) -> dict:
    return {
        "model": "deepseek-chat",
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


@pytest.fixture
def provider():
    return DeepSeekProvider(api_key="sk-test")


class TestSetup:
    """Construction and configuration."""

    def test_missing_key_raises_configuration_error(self):
        with pytest.raises(ProviderConfigurationError) as exc:
            DeepSeekProvider(api_key="")
        assert exc.value.provider == "deepseek"

    def test_kimi_defaults(self):
        kimi = KimiProvider(api_key="sk-kimi")
        assert kimi.name == "kimi"
        assert kimi.base_url == "https://api.moonshot.cn/v1"
        assert kimi.model_id == "moonshot-v1-8k"


class TestGenerateContent:
    """Non-streaming completions."""

    @pytest.mark.asyncio
    async def test_success_fills_usage_and_cost(self, provider):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion("Hello there", 1000, 500))

        async with client_for(handler) as client:
            with patch("incident_intake.services.http_client.get_http_client", return_value=client):
                result = await provider.generate_content(
                    "Say hi", GenerationOptions(system_instruction="Be brief", max_tokens=50)
                )

        assert result.text == "Hello there"
        assert result.provider == "deepseek"
        assert result.usage.total_tokens == 1500
        assert result.cost == pytest.approx(1000 / 1e6 * 0.14 + 500 / 1e6 * 0.28)

        assert seen["url"] == "https://api.deepseek.com/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["messages"][0] == {"role": "system", "content": "Be brief"}
        assert seen["body"]["max_tokens"] == 50
        assert "response_format" not in seen["body"]

        assert provider.health.snapshot().successful_requests == 1
        assert provider.rate_limiter.usage()["tokens_per_minute"]["used"] == 1500

    @pytest.mark.asyncio
    async def test_structured_requests_json_mode(self, provider):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion('```json\n{"category_id": "c1"}\n```'))

        async with client_for(handler) as client:
            with patch("incident_intake.services.http_client.get_http_client", return_value=client):
                data = await provider.generate_structured_content("Classify", {"type": "object"})

        assert data == {"category_id": "c1"}
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert "valid JSON only" in seen["body"]["messages"][-1]["content"]

    @pytest.mark.asyncio
    async def test_non_json_structured_output_is_malformed(self, provider):
        def handler(request):
            return httpx.Response(200, json=completion("not json at all"))

        async with client_for(handler) as client:
            with patch("incident_intake.services.http_client.get_http_client", return_value=client):
                with pytest.raises(MalformedResponseError):
                    await provider.generate_structured_content("Classify", {"type": "object"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error_type",
        [
            (401, AuthenticationError),
            (429, RateLimitError),
            (400, InvalidRequestError),
            (503, ServerError),
        ],
    )
    async def test_http_errors_are_mapped(self, provider, status, error_type):
        def handler(request):
            return httpx.Response(
                status,
                json={"error": {"message": "nope"}},
                headers={"retry-after": "7"},
            )

        async with client_for(handler) as client:
            with patch("incident_intake.services.http_client.get_http_client", return_value=client):
                with pytest.raises(error_type) as exc:
                    await provider.generate_content("hi")

        assert exc.value.provider == "deepseek"
        assert "nope" in str(exc.value)
        if error_type is RateLimitError:
            assert exc.value.retry_after == 7
        assert provider.health.snapshot().failed_requests == 1

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_server_error(self, provider):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with client_for(handler) as client:
            with patch("incident_intake.services.http_client.get_http_client", return_value=client):
                with pytest.raises(ServerError) as exc:
                    await provider.generate_content("hi")

        assert exc.value.retryable is True

    @pytest.mark.asyncio
    async def test_local_limit_refuses_without_network(self):
        provider = DeepSeekProvider(
            api_key="sk-test",
            rate_limiter=RateLimiter(RateLimits(requests_per_minute=0)),
        )
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=completion("x"))

        async with client_for(handler) as client:
            with patch("incident_intake.services.http_client.get_http_client", return_value=client):
                with pytest.raises(RateLimitError) as exc:
                    await provider.generate_content("hi")

        assert calls == []
        assert "Local rate limit" in str(exc.value)


class TestStreaming:
    """Server-sent event streams."""

    @pytest.mark.asyncio
    async def test_stream_yields_deltas_until_done(self, provider):
        lines = [
            'data: {"choices": [{"delta": {"content": "Hel"}}]}',
            "",
            'data: {"choices": [{"delta": {"content": "lo"}}]}',
            'data: {"choices": [{"delta": {}}]}',
            "data: [DONE]",
            'data: {"choices": [{"delta": {"content": "ignored"}}]}',
        ]

        def handler(request):
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, text="\n".join(lines) + "\n")

        async with client_for(handler) as client:
            with patch("incident_intake.services.http_client.get_http_client", return_value=client):
                chunks = [c async for c in provider.generate_content_stream([Message.user("hi")])]

        assert chunks == ["Hel", "lo"]
        assert provider.health.snapshot().successful_requests == 1

    @pytest.mark.asyncio
    async def test_stream_http_error_is_mapped(self, provider):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "bad key"}})

        async with client_for(handler) as client:
            with patch("incident_intake.services.http_client.get_http_client", return_value=client):
                with pytest.raises(AuthenticationError):
                    async for _ in provider.generate_content_stream([Message.user("hi")]):
                        pass
