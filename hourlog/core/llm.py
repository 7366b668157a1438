"""
HourLog — LLM Provider Abstraction.

Single public coroutine `complete()` that routes to the configured provider.
Provider is selected from LLM_PROVIDER; the SDK for a provider is imported
only when that provider is used.
Supports: gemini (default), anthropic, openai, cohere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from hourlog.errors import EnrichmentUnavailable

logger = logging.getLogger(__name__)

# (choice, system, user_message, max_tokens) -> text
_ProviderFn = Callable[["ProviderChoice", str, str, int], Awaitable[str]]


@dataclass
class ProviderChoice:
    name: str
    model: str
    api_key: str
    fn: _ProviderFn


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


def _chat_messages(system: str, user_message: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user_message},
    ]


def _first_text(parts: Sequence[object] | None) -> str:
    """Text of the first content part; empty when the reply has none."""
    if not parts:
        return ""
    return getattr(parts[0], "text", "") or ""


async def _complete_gemini(choice: ProviderChoice, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=choice.api_key)
    gm = genai.GenerativeModel(model_name=choice.model, system_instruction=system)
    config = genai.types.GenerationConfig(max_output_tokens=max_tokens)
    response = await gm.generate_content_async(user_message, generation_config=config)
    return response.text or ""


async def _complete_anthropic(choice: ProviderChoice, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=choice.api_key)
    response = await client.messages.create(
        model=choice.model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return _first_text(response.content)


async def _complete_openai(choice: ProviderChoice, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=choice.api_key)
    response = await client.chat.completions.create(
        model=choice.model,
        max_tokens=max_tokens,
        messages=_chat_messages(system, user_message),
    )
    if not response.choices:
        return ""
    return response.choices[0].message.content or ""


async def _complete_cohere(choice: ProviderChoice, system: str, user_message: str, max_tokens: int) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=choice.api_key)
    response = await client.chat(
        model=choice.model,
        max_tokens=max_tokens,
        messages=_chat_messages(system, user_message),
    )
    return _first_text(response.message.content)


_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "gemini":    (_complete_gemini,    "gemini-2.5-flash"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "cohere":    (_complete_cohere,    "command-a-03-2025"),
}


def select_provider() -> ProviderChoice:
    """Resolve the configured provider.

    Raises EnrichmentUnavailable when the provider is unknown or no API key
    is configured.
    """
    from hourlog.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise EnrichmentUnavailable(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )
    if not settings.LLM_API_KEY:
        raise EnrichmentUnavailable("LLM_API_KEY is not configured.")

    fn, default_model = _PROVIDERS[provider_name]
    return ProviderChoice(
        name=provider_name,
        model=settings.LLM_MODEL or default_model,
        api_key=settings.LLM_API_KEY,
        fn=fn,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(
    system: str, user_message: str, max_tokens: int = 512, provider: ProviderChoice | None = None,
) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises on API errors; callers handle exceptions.
    """
    if provider is None:
        provider = select_provider()
    logger.debug("LLM request: provider %s, model %s", provider.name, provider.model)
    return await provider.fn(provider, system, user_message, max_tokens)
