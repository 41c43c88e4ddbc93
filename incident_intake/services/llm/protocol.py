"""
AIProvider Protocol - interface for any AI vendor adapter.

Using Protocol keeps adapters duck-typed: anything with these members is a
provider, including test stubs and ProviderSelector itself.

Example:
    async def summarize(provider: AIProvider, text: str) -> str:
        result = await provider.generate_content(text)
        return result.text
"""
from typing import Any, AsyncIterator, Optional, Protocol, Sequence, runtime_checkable

from .models import GenerationOptions, GenerationResult, Message


@runtime_checkable
class AIProvider(Protocol):
    """
    Interface for AI providers.

    Attributes:
        name: short adapter name ("claude", "deepseek", "mock", ...)
        model_id: model identifier sent to the vendor
    """

    name: str

    @property
    def model_id(self) -> str:
        ...

    async def generate_content(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        """
        Generate free text.

        Raises:
            LLMError: any provider failure (see errors.py)
        """
        ...

    async def generate_structured_content(
        self,
        prompt: str,
        schema: dict[str, Any],
        options: Optional[GenerationOptions] = None,
    ) -> dict[str, Any]:
        """
        Generate a JSON object matching schema.

        Raises:
            MalformedResponseError: output was not a JSON object
            LLMError: any other provider failure
        """
        ...

    def generate_content_stream(
        self,
        messages: Sequence[Message],
        options: Optional[GenerationOptions] = None,
    ) -> AsyncIterator[str]:
        """
        Stream text chunks.

        Raises (while iterating):
            LLMError: on failure, including mid-stream
        """
        ...
