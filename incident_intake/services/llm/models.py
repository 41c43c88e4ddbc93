"""
Data types for the AI provider layer.

Vendor-neutral request options, results and chat messages.
"""
from dataclasses import dataclass, field
from typing import Literal, Optional, List
from enum import Enum


class MessageRole(str, Enum):
    """Supported chat roles."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Message:
    """
    One chat turn.

    Attributes:
        role: who sent it (user, assistant, system)
        content: text
    """
    role: MessageRole
    content: str

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    def to_dict(self) -> dict:
        """OpenAI-style dict."""
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class GenerationOptions:
    """
    Options understood by every adapter.

    Attributes:
        system_instruction: context prepended as the system prompt
        max_tokens: output token cap
        temperature: 0.0 = deterministic
        response_format: "json" asks the vendor for a JSON object
    """
    system_instruction: Optional[str] = None
    max_tokens: int = 1000
    temperature: float = 0.7
    response_format: Literal["json", "text"] = "text"


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class GenerationResult:
    """
    Result of generate_content.

    Attributes:
        text: generated text
        usage: token counts reported by the vendor (estimated for mock)
        provider: adapter name
        model_id: model that produced the text
        cost: USD cost computed from usage
    """
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    provider: str = ""
    model_id: str = ""
    cost: float = 0.0


@dataclass(frozen=True)
class Pricing:
    """USD per 1M tokens."""
    input_per_million: float = 0.0
    output_per_million: float = 0.0

    def cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (
            prompt_tokens / 1_000_000 * self.input_per_million
            + completion_tokens / 1_000_000 * self.output_per_million
        )


@dataclass
class ProviderAttempt:
    """One step of a failover run, for logs and tests."""
    provider: str
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None


@dataclass
class StructuredSelection:
    """Structured output plus which provider produced it."""
    data: dict
    provider: str
    attempts: List[ProviderAttempt] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return self.provider == "mock"
