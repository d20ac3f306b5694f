"""Cache-wrapped generation: look up, call the provider on a miss, store."""

from collections.abc import Mapping
from typing import Any

from chronicle.cache.response_cache import ResponseCache
from chronicle.core.logging import get_logger
from chronicle.llm.base import LLMConfig, LLMProvider, LLMResponse

logger = get_logger("llm.generation")


class CachedGenerator:
    """Generator front end that never calls the provider for a cached request.

    Provider errors propagate; cache errors never do.
    """

    def __init__(
        self,
        provider: LLMProvider,
        cache: ResponseCache,
        defaults: LLMConfig | None = None,
    ):
        self.provider = provider
        self.cache = cache
        self.defaults = defaults or LLMConfig()

    def _config(self, request: Mapping[str, Any]) -> LLMConfig:
        return LLMConfig(
            model=request.get("model") or self.defaults.model,
            max_tokens=request.get("max_tokens") or self.defaults.max_tokens,
            temperature=request.get("temperature", self.defaults.temperature),
            system_prompt=request.get("system") or self.defaults.system_prompt,
        )

    async def generate(self, request: Mapping[str, Any]) -> LLMResponse:
        """
        Produce a response for ``request``.

        Args:
            request: Generator request with ``messages`` and optional
                ``model``, ``system``, ``max_tokens``, ``temperature``.

        Returns:
            LLMResponse; ``metadata["cached"]`` is True when served from cache
        """
        cached = await self.cache.get(request)
        if cached is not None:
            try:
                return LLMResponse.from_payload(cached)
            except (KeyError, TypeError) as e:
                logger.warning(f"Ignoring malformed cached response: {e}")

        response = await self.provider.complete(list(request["messages"]), self._config(request))
        await self.cache.set(request, response.to_payload())
        logger.debug(
            f"Generated {response.output_tokens} tokens with {response.model} (cache miss)"
        )
        return response
