"""
Tests for provider failover, the mock provider and health tracking.
"""
import pytest

from incident_intake.services.llm import (
    GenerationOptions,
    LLMError,
    Message,
    MockProvider,
    ProviderHealth,
    ProvidersExhaustedError,
    ProviderSelector,
    RateLimitError,
)


class FlakyStreamProvider(MockProvider):
    """Streams one chunk, then fails."""

    async def generate_content_stream(self, messages, options=None):
        yield "partial "
        raise LLMError("stream broke", provider=self.name)


class TestStructuredFailover:
    """select_structured walks the chain in priority order."""

    @pytest.mark.asyncio
    async def test_first_provider_wins(self):
        primary = MockProvider.with_structured({"answer": "primary"})
        primary.name = "claude"
        selector = ProviderSelector([primary], fallback=MockProvider())

        selection = await selector.select_structured("prompt", {"type": "object"})

        assert selection.data == {"answer": "primary"}
        assert selection.provider == "claude"
        assert selection.used_fallback is False
        assert [a.success for a in selection.attempts] == [True]

    @pytest.mark.asyncio
    async def test_fails_over_in_order(self):
        first = MockProvider.failing("quota")
        first.name = "claude"
        second = MockProvider.with_structured({"answer": "gemini"})
        second.name = "gemini"
        selector = ProviderSelector([first, second], fallback=MockProvider())

        selection = await selector.select_structured("prompt", {"type": "object"})

        assert selection.provider == "gemini"
        assert [(a.provider, a.success) for a in selection.attempts] == [("claude", False), ("gemini", True)]
        assert selection.attempts[0].error_type == "LLMError"

    @pytest.mark.asyncio
    async def test_fallback_marks_used_fallback(self):
        failing = MockProvider.failing()
        failing.name = "deepseek"
        selector = ProviderSelector([failing], fallback=MockProvider.with_structured({"ok": True}))

        selection = await selector.select_structured("prompt", {"type": "object"})

        assert selection.provider == "mock"
        assert selection.used_fallback is True

    @pytest.mark.asyncio
    async def test_exhausted_when_fallback_fails(self):
        selector = ProviderSelector([MockProvider.failing("a")], fallback=MockProvider.failing("b"))

        with pytest.raises(ProvidersExhaustedError) as exc:
            await selector.generate_structured_content("prompt", {"type": "object"})

        assert len(exc.value.attempts) == 2

    @pytest.mark.asyncio
    async def test_unexpected_exceptions_also_fail_over(self):
        class Broken(MockProvider):
            async def generate_structured_content(self, prompt, schema, options=None):
                raise RuntimeError("bug")

        broken = Broken(name="kimi")
        selector = ProviderSelector([broken], fallback=MockProvider.with_structured({"ok": 1}))

        selection = await selector.select_structured("p", {})

        assert selection.data == {"ok": 1}
        assert selection.attempts[0].error_type == "RuntimeError"


class TestTextAndStream:
    @pytest.mark.asyncio
    async def test_generate_content_falls_back(self):
        selector = ProviderSelector(
            [MockProvider.failing()], fallback=MockProvider(default_response="from mock")
        )

        result = await selector.generate_content("hi")

        assert result.text == "from mock"
        assert result.provider == "mock"

    @pytest.mark.asyncio
    async def test_stream_discards_partial_output_on_failover(self):
        flaky = FlakyStreamProvider(name="gemini")
        selector = ProviderSelector([flaky], fallback=MockProvider(default_response="full answer"))

        chunks = [c async for c in selector.generate_content_stream([Message.user("q")])]

        assert "partial " not in chunks
        assert "".join(chunks).strip() == "full answer"

    @pytest.mark.asyncio
    async def test_stream_exhausted(self):
        selector = ProviderSelector([], fallback=FlakyStreamProvider())

        with pytest.raises(ProvidersExhaustedError):
            async for _ in selector.generate_content_stream([Message.user("q")]):
                pass


class TestHealthReport:
    @pytest.mark.asyncio
    async def test_report_includes_every_provider(self):
        primary = MockProvider.failing()
        primary.name = "claude"
        selector = ProviderSelector([primary], fallback=MockProvider())
        await selector.generate_content("hi")

        report = selector.health_report()

        assert set(report) == {"claude", "mock"}
        assert report["claude"]["health"]["failed_requests"] == 1
        assert report["mock"]["health"]["successful_requests"] == 1


class TestMockProvider:
    """Keyword rules used when every vendor is down."""

    SCHEMA = {
        "type": "object",
        "properties": {
            "category_id": {"type": "string", "enum": ["c-maint", "c-disc"]},
            "subcategory": {"type": "string"},
            "location": {"type": "string"},
            "notes": {"type": "string"},
        },
    }

    @pytest.mark.asyncio
    async def test_classifies_from_prompt(self):
        prompt = (
            'Message: "The window in classroom 5 is broken"\n'
            "Available categories: c-maint (Maintenance), c-disc (Discipline)\n"
        )

        data = await MockProvider().generate_structured_content(prompt, self.SCHEMA)

        assert data["category_id"] == "c-maint"
        assert data["subcategory"] == "Window Repair"
        assert data["location"] == "Classroom 5"

    @pytest.mark.asyncio
    async def test_discipline_keywords(self):
        prompt = (
            'Message: "Two learners were fighting at break"\n'
            "Available categories: c-maint (Maintenance), c-disc (Discipline)\n"
        )

        data = await MockProvider().generate_structured_content(prompt, self.SCHEMA)

        assert data["category_id"] == "c-disc"
        assert data["subcategory"] == "Behavioral Issue"

    @pytest.mark.asyncio
    async def test_json_text_mode_wraps_plain_response(self):
        result = await MockProvider(default_response="hello").generate_content(
            "hi", GenerationOptions(response_format="json")
        )
        assert result.text == '{"response": "hello"}'

    @pytest.mark.asyncio
    async def test_tracks_calls_and_fails_on_demand(self):
        mock = MockProvider.failing("down")

        with pytest.raises(LLMError, match="down"):
            await mock.generate_content("hi")

        assert mock.calls == ["hi"]
        assert await mock.health_check() is False


class TestProviderHealth:
    def test_healthy_by_default(self):
        assert ProviderHealth("x").status() == "healthy"

    def test_degraded_after_three_consecutive_errors(self):
        health = ProviderHealth("x")
        for _ in range(20):
            health.record_success(10.0)
        for _ in range(3):
            health.record_failure(RateLimitError("slow down", "x"))

        assert health.status() == "degraded"

    def test_unhealthy_after_six_consecutive_errors(self):
        health = ProviderHealth("x")
        for _ in range(6):
            health.record_failure(LLMError("boom", "x"))

        snapshot = health.snapshot()
        assert snapshot.status == "unhealthy"
        assert snapshot.errors_by_type == {"LLMError": 6}
        assert snapshot.last_error == "[x] boom"

    def test_success_resets_consecutive_errors(self):
        health = ProviderHealth("x")
        for _ in range(30):
            health.record_success(5.0, tokens=10, cost=0.001)
        for _ in range(5):
            health.record_failure(LLMError("boom", "x"))
        health.record_success(5.0)

        snapshot = health.snapshot()
        assert snapshot.consecutive_errors == 0
        assert snapshot.status == "healthy"
        assert snapshot.total_tokens == 300

    def test_low_success_rate_is_degraded(self):
        health = ProviderHealth("x")
        for _ in range(4):
            health.record_success(1.0)
            health.record_failure(LLMError("e", "x"))

        assert health.status() == "degraded"
