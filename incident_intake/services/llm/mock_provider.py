"""
Mock provider - rule-based answers with no network calls.

Always the last entry of the failover chain, and handy in tests.
"""
import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, List, Optional, Sequence

from incident_intake.services.classification.heuristics import extract_location

from .errors import LLMError
from .health import ProviderHealth
from .models import GenerationOptions, GenerationResult, Message, TokenUsage

_MESSAGE_RE = re.compile(r'Message: "(.*?)"\s*\nAvailable categories:', re.DOTALL)
_CATEGORIES_RE = re.compile(r"^Available categories: (.*)$", re.MULTILINE)
_CATEGORY_ITEM_RE = re.compile(r"(\S+) \(([^)]*)\)")


def _is_incident_schema(schema: dict) -> bool:
    props = schema.get("properties") or {}
    return all(key in props for key in ("category_id", "subcategory", "location", "notes"))


@dataclass
class MockProvider:
    """
    Offline provider.

    Structured calls with the incident schema are answered by keyword rules;
    everything else gets default_response.

    Example:
        mock = MockProvider(should_fail=True)
        with pytest.raises(LLMError):
            await mock.generate_content("hi")
    """

    name: str = "mock"
    model_id: str = "mock-model"
    default_response: str = "Mock response"
    structured_response: Optional[dict] = None

    # Call tracking for assertions
    calls: List[str] = field(default_factory=list)

    # Failure simulation
    should_fail: bool = False
    fail_message: str = "Mock error"

    health: ProviderHealth = field(default_factory=lambda: ProviderHealth("mock"))

    def _maybe_fail(self) -> None:
        if self.should_fail:
            error = LLMError(self.fail_message, provider=self.name, retryable=False)
            self.health.record_failure(error)
            raise error

    async def generate_content(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        options = options or GenerationOptions()
        self.calls.append(prompt)
        self._maybe_fail()

        text = self.default_response
        if options.response_format == "json" and not text.startswith("{"):
            text = json.dumps({"response": text})

        usage = TokenUsage(
            prompt_tokens=math.ceil(len(prompt) / 4),
            completion_tokens=math.ceil(len(text) / 4),
        )
        self.health.record_success(0.0, usage.total_tokens)
        return GenerationResult(text=text, usage=usage, provider=self.name, model_id=self.model_id)

    async def generate_structured_content(
        self,
        prompt: str,
        schema: dict[str, Any],
        options: Optional[GenerationOptions] = None,
    ) -> dict[str, Any]:
        self.calls.append(prompt)
        self._maybe_fail()

        if self.structured_response is not None:
            data = dict(self.structured_response)
        elif _is_incident_schema(schema):
            data = self._classify(prompt, schema)
        else:
            data = {"response": self.default_response}

        self.health.record_success(0.0)
        return data

    async def generate_content_stream(
        self,
        messages: Sequence[Message],
        options: Optional[GenerationOptions] = None,
    ) -> AsyncIterator[str]:
        last = messages[-1].content if messages else ""
        result = await self.generate_content(last, options)
        for word in result.text.split(" "):
            yield word + " "

    async def health_check(self) -> bool:
        return not self.should_fail

    # Keyword rules

    @staticmethod
    def _categories(prompt: str, schema: dict) -> list[tuple[str, str]]:
        """(id, lowercased id + name) pairs; names come from the prompt when present."""
        ids = list((schema["properties"]["category_id"] or {}).get("enum") or [])
        names = {}
        match = _CATEGORIES_RE.search(prompt)
        if match:
            names = {cid: name for cid, name in _CATEGORY_ITEM_RE.findall(match.group(1))}
        return [(cid, f"{cid} {names.get(cid, '')}".lower()) for cid in ids]

    def _classify(self, prompt: str, schema: dict) -> dict:
        match = _MESSAGE_RE.search(prompt)
        message = match.group(1) if match else prompt
        text = message.lower()
        categories = self._categories(prompt, schema)

        def pick(*needles: str) -> str:
            for cid, haystack in categories:
                if any(needle in haystack for needle in needles):
                    return cid
            return categories[0][0] if categories else "default"

        if any(k in text for k in ("broken", "repair", "fix", "maintenance", "leak", "install")):
            category_id = pick("maintenance", "repair")
            if "window" in text:
                subcategory = "Window Repair"
            elif "door" in text:
                subcategory = "Door Repair"
            elif "desk" in text or "furniture" in text:
                subcategory = "Furniture Repair"
            elif "light" in text or "bulb" in text:
                subcategory = "Lighting Issue"
            elif "water" in text or "leak" in text or "tap" in text:
                subcategory = "Plumbing Issue"
            else:
                subcategory = "General Maintenance"
        elif any(k in text for k in ("misbehav", "fight", "discipline", "bullying")):
            category_id = pick("discipline", "behavior")
            subcategory = "Behavioral Issue"
        elif "clean" in text or "washing" in text:
            category_id = pick("maintenance", "repair")
            subcategory = "Cleaning Task"
        elif any(k in text for k in ("sport", "game", "training")):
            category_id = pick("sport", "athletic")
            subcategory = "Sports Activity"
        else:
            category_id = categories[0][0] if categories else "default"
            subcategory = "General Issue"

        return {
            "category_id": category_id,
            "subcategory": subcategory,
            "location": extract_location(message),
            "notes": f"Mock AI parsed: {message}",
        }

    @classmethod
    def failing(cls, message: str = "Mock error") -> "MockProvider":
        return cls(should_fail=True, fail_message=message)

    @classmethod
    def with_structured(cls, data: dict) -> "MockProvider":
        return cls(structured_response=data)
