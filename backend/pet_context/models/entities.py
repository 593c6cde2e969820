"""Internal dataclasses shared by the sync and retrieval paths."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class ScopeFilter:
    """Conjunction of equality predicates on the vector entry owner/subject."""

    owner_id: str | None = None
    subject_id: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.owner_id is None and self.subject_id is None

    def matches(self, owner_id: str | None, subject_id: str | None) -> bool:
        if self.owner_id is not None and self.owner_id != owner_id:
            return False
        if self.subject_id is not None and self.subject_id != subject_id:
            return False
        return True


@dataclass(slots=True)
class VectorEntry:
    """One embedded journal entry; at most one is live per record id."""

    record_id: str
    owner_id: str | None
    subject_id: str | None
    embedding: list[float]
    content: str
    inserted_at: int


@dataclass(slots=True, frozen=True)
class CorpusDocument:
    id: str
    title: str
    body: str
    category: str
    keywords: frozenset[str] = field(default_factory=frozenset)
    url: str | None = None


@dataclass(slots=True, frozen=True)
class RankedResult:
    """A single retrieval hit, tagged with the source that produced it."""

    source_tag: str
    title: str
    snippet: str
    score: float
    provenance: str | None = None
    published_at: str | None = None


__all__ = ["ScopeFilter", "VectorEntry", "CorpusDocument", "RankedResult"]
