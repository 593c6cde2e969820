"""Text processing helpers."""

from __future__ import annotations

import re


WHITESPACE_RE = re.compile(r"\s+")
HTML_TAG_RE = re.compile(r"<[^>]*>")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def strip_html(text: str | None) -> str:
    """Remove HTML tags such as the <b> highlights search APIs return."""
    if not text:
        return ""
    return normalize(HTML_TAG_RE.sub("", text))


def truncate(text: str | None, max_length: int) -> str:
    """Cut text to max_length characters, marking the cut with an ellipsis."""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."
