"""
LLM provider interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class LLMResponse:
    """Response from LLM provider."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    metadata: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        """Cacheable form of the response."""
        return {
            "content": self.content,
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "LLMResponse":
        return cls(
            content=payload["content"],
            model=payload.get("model", ""),
            input_tokens=payload.get("input_tokens", 0),
            output_tokens=payload.get("output_tokens", 0),
            metadata={"cached": True},
        )


@dataclass
class LLMConfig:
    """Configuration for LLM call."""

    model: str | None = None
    max_tokens: int = 1024
    temperature: float = 0.7
    system_prompt: str | None = None


class LLMProvider(ABC):
    """Abstract text-completion provider."""

    @abstractmethod
    async def complete(self, messages: list[dict], config: LLMConfig) -> LLMResponse:
        """
        Generate completion from messages.

        Args:
            messages: Conversation messages (role/content dicts)
            config: LLM configuration

        Returns:
            LLMResponse with content and token usage
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if provider is available."""
        ...
