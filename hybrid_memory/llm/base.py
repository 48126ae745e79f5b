"""
Abstract base class for LLM providers.

The memory core consumes a single line of judgment text per call; the
provider behind it is swappable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class LLMResponse:
    """Standardized response from LLM providers."""
    content: str
    model: str
    usage: dict[str, int] | None = None
    raw_response: Any = None

    @property
    def token_count(self) -> int:
        """Return total tokens used if available."""
        if self.usage:
            return self.usage.get("total_tokens", 0)
        return 0


class LLMProvider(ABC):
    """Interface every judgment provider implements."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.0,
        max_tokens: int = 100,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            prompt: The user prompt.
            system_prompt: Optional system prompt to set context.
            temperature: Sampling temperature. Classification uses 0.
            max_tokens: Maximum tokens in response.

        Returns:
            LLMResponse containing the generated content.
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the provider has the credentials it needs."""
        pass
