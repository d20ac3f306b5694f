"""
Claude API provider implementation.

Generator and summarizer backend using Anthropic's Claude API.
"""

import anthropic
from anthropic import APIConnectionError, APIError, RateLimitError

from chronicle.core.config import get_settings
from chronicle.core.logging import get_logger
from chronicle.llm.base import LLMConfig, LLMProvider, LLMResponse

logger = get_logger("llm.claude")


class ClaudeProvider(LLMProvider):
    """Anthropic Claude API provider."""

    def __init__(self, api_key: str | None = None, default_model: str | None = None):
        settings = get_settings()
        self.api_key = api_key or settings.anthropic_api_key
        self.default_model = default_model or settings.default_model
        self._client: anthropic.AsyncAnthropic | None = None

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(self, messages: list[dict], config: LLMConfig) -> LLMResponse:
        """Generate completion using Claude API."""
        model = config.model or self.default_model

        # Extract system prompt from config or messages
        system_prompt = config.system_prompt
        api_messages = []
        for msg in messages:
            if msg["role"] == "system":
                system_prompt = msg["content"]
            else:
                api_messages.append(msg)

        logger.debug(f"Claude request: model={model}, max_tokens={config.max_tokens}")

        try:
            response = await self.client.messages.create(
                model=model,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                system=system_prompt or "",
                messages=api_messages,
            )
        except RateLimitError as e:
            logger.warning(f"Rate limited: {e}")
            raise
        except APIConnectionError as e:
            logger.error(f"Connection error: {e}")
            raise
        except APIError as e:
            logger.error(f"API error: {e}")
            raise

        content = response.content[0].text if response.content else ""
        logger.debug(
            f"Claude usage: {response.usage.input_tokens} in, {response.usage.output_tokens} out"
        )
        return LLMResponse(
            content=content,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def health_check(self) -> bool:
        """Check if Claude API is accessible."""
        try:
            response = await self.client.messages.create(
                model=self.default_model,
                max_tokens=10,
                messages=[{"role": "user", "content": "hi"}],
            )
            return bool(response.content)
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            return False
