"""Prose summarization collaborator used by episode compression and rolling summaries."""

import asyncio
from typing import Protocol

from chronicle.core.logging import get_logger
from chronicle.llm.base import LLMConfig, LLMProvider

logger = get_logger("llm.summarizer")

SUMMARY_PROMPT = """You are maintaining the "story so far" for a long-running adventure.

<prior_summary>
{prior}
</prior_summary>

<new_development>
{new}
</new_development>

Rewrite the summary so it incorporates the new development while keeping key
story beats, character progression and NPC relationships. Stay under
{max_words} words. Write in past tense, third person.

Respond with ONLY the updated summary text (no JSON, no preamble)."""

SYSTEM_PROMPT = "You are a narrative summarization expert. Generate concise, faithful story summaries."


class Summarizer(Protocol):
    """Combines prior prose with new material into a shorter text."""

    async def summarize(self, prior_text: str, new_text: str) -> str:
        ...


class LLMSummarizer:
    """Summarizer backed by an LLM provider."""

    def __init__(
        self,
        llm: LLMProvider,
        model: str | None = None,
        max_words: int = 500,
        temperature: float = 0.4,
    ):
        self.llm = llm
        self.model = model
        self.max_words = max_words
        self.temperature = temperature

    async def summarize(self, prior_text: str, new_text: str) -> str:
        prompt = SUMMARY_PROMPT.format(
            prior=prior_text or "(nothing yet)",
            new=new_text,
            max_words=self.max_words,
        )
        config = LLMConfig(
            model=self.model,
            max_tokens=800,
            temperature=self.temperature,
            system_prompt=SYSTEM_PROMPT,
        )
        response = await self.llm.complete([{"role": "user", "content": prompt}], config)
        return _strip_fences(response.content)


def _strip_fences(content: str) -> str:
    """Handle common LLM output patterns (markdown code fences)."""
    content = content.strip()
    if content.startswith("```"):
        lines = [line for line in content.splitlines() if not line.startswith("```")]
        content = "\n".join(lines).strip()
    return content


async def summarize_or_none(
    summarizer: Summarizer | None,
    prior_text: str,
    new_text: str,
    timeout: float,
) -> str | None:
    """Call the summarizer with a time bound.

    Returns None when no summarizer is configured, or when it fails, times
    out or answers with nothing, so callers can apply their fallback.
    """
    if summarizer is None:
        return None
    try:
        result = await asyncio.wait_for(summarizer.summarize(prior_text, new_text), timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Summarizer timed out after {timeout}s, using fallback")
        return None
    except Exception as e:
        logger.warning(f"Summarizer failed, using fallback: {e}")
        return None
    if not result or not result.strip():
        logger.warning("Summarizer returned empty text, using fallback")
        return None
    return result.strip()
