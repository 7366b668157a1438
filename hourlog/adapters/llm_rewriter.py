"""LLM adapter — implements SummaryRewriter via hourlog.core.llm."""

from __future__ import annotations

import asyncio
import logging

from hourlog.core import llm
from hourlog.errors import EnrichmentUnavailable
from hourlog.ports.enrichment_port import RewriteResult

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = "\n".join([
    "You are an assistant that rewrites a user's daily planning log into a crisp, structured summary.",
    "Rules:",
    "- Do NOT invent tasks or facts.",
    "- Keep it concise and actionable.",
    "- Include: top plan themes, completed highlights, reflections/insights, "
    "and what was deferred if mentioned.",
    "- Output plain text only (no markdown fences).",
])


class LLMSummaryRewriter:
    """SummaryRewriter backed by the configured LLM provider."""

    def __init__(self, timeout: float | None = None, max_tokens: int = 512) -> None:
        if timeout is None:
            from hourlog.config import settings
            timeout = settings.ENRICHMENT_TIMEOUT_SECONDS
        self._timeout = timeout
        self._max_tokens = max_tokens

    async def _rewrite_or_raise(self, date: str, deterministic_summary: str) -> RewriteResult:
        provider = llm.select_provider()
        user_message = f"Date: {date}\n\nSource summary:\n{deterministic_summary}"
        try:
            raw = await asyncio.wait_for(
                llm.complete(_SYSTEM_PROMPT, user_message, self._max_tokens, provider=provider),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise EnrichmentUnavailable(
                f"{provider.name} timed out after {self._timeout:g}s."
            ) from exc

        text = (raw or "").strip()
        if not text:
            raise EnrichmentUnavailable(f"{provider.name} returned empty output.")
        return RewriteResult(ok=True, text=text, model=provider.model)

    async def rewrite(self, date: str, deterministic_summary: str) -> RewriteResult:
        try:
            return await self._rewrite_or_raise(date, deterministic_summary)
        except EnrichmentUnavailable as exc:
            logger.warning("Summary enrichment unavailable for %s: %s", date, exc)
            return RewriteResult(ok=False, error=str(exc))
        except Exception as exc:
            logger.warning("Summary enrichment failed for %s: %s", date, exc)
            return RewriteResult(ok=False, error=str(exc) or type(exc).__name__)
