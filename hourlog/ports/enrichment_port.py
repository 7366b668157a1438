"""Enrichment port — abstract interface for rewriting a day summary.

Core modules depend on this protocol, never on a specific text service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class RewriteResult:
    """Outcome of a rewrite: text and model on success, error otherwise."""

    ok: bool
    text: str = ""
    model: str = ""
    error: str = ""


class SummaryRewriter(Protocol):
    """Turns a deterministic summary into a friendlier one.

    Implementations never raise: every failure comes back as ok=False.
    """

    async def rewrite(self, date: str, deterministic_summary: str) -> RewriteResult: ...
