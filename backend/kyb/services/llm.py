from __future__ import annotations

import logging

from openai import AsyncOpenAI

from ..core.config import get_settings

logger = logging.getLogger(__name__)


class LLMNotConfiguredError(RuntimeError):
    """No AI provider key is set; AI-based lookups are skipped."""


def get_llm_client() -> AsyncOpenAI:
    """
    Factory for the OpenAI-compatible client used by the AI lookups.

    - If OPENROUTER_API_KEY is set, route requests via OpenRouter.
    - Otherwise, fall back to the standard OpenAI API using OPENAI_API_KEY.

    Not cached: every Celery task runs the pipeline in a fresh event loop
    and an async client must not outlive the loop it was used in.
    """
    settings = get_settings()

    if settings.OPENROUTER_API_KEY:
        return AsyncOpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY.strip(),
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_retries=0,
            default_headers={
                "HTTP-Referer": settings.FRONTEND_ORIGIN or "http://localhost:3000",
                "X-Title": "KYB Verification",
            },
        )

    if settings.OPENAI_API_KEY:
        return AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY.strip(),
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_retries=0,
        )

    raise LLMNotConfiguredError(
        "No LLM API key configured. Set either OPENAI_API_KEY or OPENROUTER_API_KEY."
    )


async def complete_prompt(prompt: str, max_tokens: int = 500) -> str:
    """Single-turn, deterministic completion. Returns the raw response text."""
    settings = get_settings()
    client = get_llm_client()
    try:
        response = await client.chat.completions.create(
            model=settings.LLM_MODEL,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
            max_tokens=max_tokens,
        )
    finally:
        await client.close()
    return (response.choices[0].message.content or "").strip()
