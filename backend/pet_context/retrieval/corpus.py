"""In-memory health document corpus with keyword and synonym scoring."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import orjson
from pydantic import BaseModel, Field, ValidationError, field_validator

from pet_context.core.logging import get_logger
from pet_context.models.entities import CorpusDocument, RankedResult

logger = get_logger(__name__)

LOCAL_SOURCE_TAG = "local-docs"

TITLE_WEIGHT = 3.0
KEYWORD_WEIGHT = 2.0
BODY_WEIGHT = 1.0
MAX_TOKEN_SCORE = TITLE_WEIGHT + KEYWORD_WEIGHT + BODY_WEIGHT
MIN_TOKEN_LENGTH = 2
DEFAULT_MIN_SCORE = 0.1

# Lay symptom words mapped to the terms used in the veterinary documents.
SYNONYMS: Mapping[str, tuple[str, ...]] = {
    "눈곱": ("눈물", "눈물자국", "눈"),
    "설사": ("묽은변", "소화불량", "장염"),
    "구토": ("토", "역류"),
    "기침": ("켁켁", "호흡곤란"),
    "다리": ("절뚝", "파행", "보행"),
    "소변": ("혈뇨", "방광", "요로"),
    "눈": ("시력", "충혈", "혼탁"),
}

_NON_WORD_RE = re.compile(r"[^가-힣a-z0-9\s]")


class _CorpusItem(BaseModel):
    id: str
    title: str
    content: str = ""
    category: str = ""
    url: str | None = None
    keywords: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


def tokenize(text: str) -> list[str]:
    """Lowercase, drop punctuation and keep tokens of at least two characters."""
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return [token for token in cleaned.split() if len(token) >= MIN_TOKEN_LENGTH]


def expand_tokens(tokens: Iterable[str], synonyms: Mapping[str, Sequence[str]] = SYNONYMS) -> set[str]:
    """Add synonyms for every token that contains, or is contained in, a synonym key."""
    base = set(tokens)
    expanded = set(base)
    for token in base:
        for key, values in synonyms.items():
            if key in token or token in key:
                expanded.update(values)
    return expanded


class LexicalCorpus:
    """Immutable document set searched by weighted keyword matching.

    Built once at startup and shared read-only between concurrent queries.
    """

    def __init__(
        self,
        documents: Iterable[CorpusDocument],
        source_tag: str = LOCAL_SOURCE_TAG,
        min_score: float = DEFAULT_MIN_SCORE,
        top_n: int = 5,
        synonyms: Mapping[str, Sequence[str]] = SYNONYMS,
    ) -> None:
        self._documents: tuple[CorpusDocument, ...] = tuple(documents)
        self._title_terms: tuple[frozenset[str], ...] = tuple(
            frozenset(tokenize(doc.title)) for doc in self._documents
        )
        self.source_tag = source_tag
        self.min_score = min_score
        self.top_n = top_n
        self._synonyms = synonyms

    @classmethod
    def empty(cls, **kwargs: Any) -> "LexicalCorpus":
        return cls((), **kwargs)

    @classmethod
    def load(cls, path: Path | None, **kwargs: Any) -> "LexicalCorpus":
        """Parse a JSON array of documents; any failure yields an empty corpus."""
        if path is None:
            logger.warning("No corpus path configured; local document search disabled")
            return cls.empty(**kwargs)
        try:
            raw = orjson.loads(path.expanduser().read_bytes())
        except (OSError, orjson.JSONDecodeError) as exc:
            logger.error("Failed to load corpus from %s: %s", path, exc)
            return cls.empty(**kwargs)
        if not isinstance(raw, list):
            logger.error("Corpus file %s must contain a JSON array", path)
            return cls.empty(**kwargs)
        documents = list(_parse_documents(raw))
        logger.info("Loaded %s corpus documents from %s", len(documents), path)
        return cls(documents, **kwargs)

    @property
    def documents(self) -> tuple[CorpusDocument, ...]:
        return self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def search(self, query: str, limit: int | None = None) -> list[RankedResult]:
        tokens = expand_tokens(tokenize(query), self._synonyms)
        if not tokens or not self._documents:
            return []
        scored: list[tuple[float, int]] = []
        for idx, document in enumerate(self._documents):
            score = self._score(tokens, document, self._title_terms[idx])
            if score > self.min_score:
                scored.append((score, idx))
        scored.sort(key=lambda item: (-item[0], item[1]))
        top = scored[: self.top_n if limit is None else limit]
        return [self._to_result(self._documents[idx], score) for score, idx in top]

    def score(self, query: str, document: CorpusDocument) -> float:
        tokens = expand_tokens(tokenize(query), self._synonyms)
        if not tokens:
            return 0.0
        return self._score(tokens, document, frozenset(tokenize(document.title)))

    # ------------------------------------------------------------------

    def _score(self, tokens: set[str], document: CorpusDocument, title_terms: frozenset[str]) -> float:
        title = document.title.lower()
        body = document.body.lower()
        total = 0.0
        for token in tokens:
            # Title terms inside the token catch inflected forms such as 설사해요.
            if token in title or any(term in token for term in title_terms):
                total += TITLE_WEIGHT
            if any(keyword in token or token in keyword for keyword in document.keywords):
                total += KEYWORD_WEIGHT
            if token in body:
                total += BODY_WEIGHT
        return min(1.0, total / (len(tokens) * MAX_TOKEN_SCORE))

    def _to_result(self, document: CorpusDocument, score: float) -> RankedResult:
        return RankedResult(
            source_tag=self.source_tag,
            title=document.title,
            snippet=document.body,
            score=score,
            provenance=document.url or f"corpus:{document.id}",
        )


def _parse_documents(raw: list[Any]) -> Iterable[CorpusDocument]:
    for position, item in enumerate(raw):
        try:
            parsed = _CorpusItem.model_validate(item)
        except ValidationError as exc:
            logger.warning("Skipping corpus entry %s: %s", position, exc.errors()[0]["msg"])
            continue
        yield CorpusDocument(
            id=parsed.id,
            title=parsed.title,
            body=parsed.content,
            category=parsed.category,
            keywords=frozenset(keyword.lower() for keyword in parsed.keywords if keyword),
            url=parsed.url or None,
        )


__all__ = ["LexicalCorpus", "SYNONYMS", "LOCAL_SOURCE_TAG", "tokenize", "expand_tokens"]
