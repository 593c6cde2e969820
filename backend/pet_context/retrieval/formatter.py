"""Render ranked results into a bounded context block."""

from __future__ import annotations

from typing import Sequence

from pet_context.models.entities import RankedResult
from pet_context.utils.text import truncate

DEFAULT_HEADER = "Reference information for answering the question:"
FALLBACK_CONTEXT = "[no reference information] No related sources answered in time; answer from general knowledge."
SEPARATOR = "\n\n---\n\n"


class ContextFormatter:
    def __init__(
        self,
        snippet_chars: int = 400,
        max_chars: int = 6000,
        header: str = DEFAULT_HEADER,
        fallback: str = FALLBACK_CONTEXT,
    ) -> None:
        self.snippet_chars = snippet_chars
        self.max_chars = max_chars
        self.header = header
        self.fallback = fallback

    def format(self, results: Sequence[RankedResult]) -> str:
        """Join results under the header; items that would overflow ``max_chars`` are dropped."""
        if not results:
            return self.fallback
        block = self.header
        added = 0
        for position, result in enumerate(results, start=1):
            item = self.format_item(position, result)
            candidate = block + ("\n\n" if added == 0 else SEPARATOR) + item
            if len(candidate) > self.max_chars:
                if added == 0:
                    # a single oversized item is cut rather than dropped
                    return truncate(candidate, max(self.max_chars - 3, 0))
                break
            block = candidate
            added += 1
        return block

    def format_item(self, position: int, result: RankedResult) -> str:
        relevance = round(max(0.0, min(1.0, result.score)) * 100)
        lines = [f"[{position}] ({result.source_tag}) {result.title} (relevance {relevance}%)"]
        snippet = truncate(result.snippet, self.snippet_chars)
        if snippet:
            lines.append(snippet)
        if result.provenance and result.provenance.startswith(("http://", "https://")):
            lines.append(f"Source: {result.provenance}")
        return "\n".join(lines)


__all__ = ["ContextFormatter", "FALLBACK_CONTEXT"]
