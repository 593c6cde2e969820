"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class EventResponse(BaseModel):
    record_id: str | None
    event_type: str | None
    state: Literal["ACKED", "SKIPPED"]
    attempts: int
    error: str | None = None


class ReplayRequest(BaseModel):
    path: str = Field(description="JSON-lines event log readable by the server")
    workers: int | None = Field(default=None, ge=1, le=32)


class ReplayResponse(BaseModel):
    path: str
    replayed: int
    already_committed: int
    acked: int
    skipped: int
    malformed: int
    committed_offset: int | None = None


class ContextRequest(BaseModel):
    query: str = Field(min_length=1)
    owner_id: str | None = None
    subject_id: str | None = None


class ResultItem(BaseModel):
    source: str
    title: str
    snippet: str
    score: float
    provenance: str | None = None
    published_at: str | None = None


class BranchItem(BaseModel):
    name: str
    status: Literal["ok", "empty", "failed", "timed_out"]
    elapsed: float
    count: int
    error: str | None = None


class ContextResponse(BaseModel):
    query: str
    context: str
    results: list[ResultItem]
    branches: list[BranchItem]


class CorpusSearchResponse(BaseModel):
    query: str
    results: list[ResultItem]


class IndexStatsResponse(BaseModel):
    backend: str
    entries: int
    dim: int
    vector_enabled: bool
    corpus_documents: int
    external_sources: list[str]


__all__ = [
    "EventResponse",
    "ReplayRequest",
    "ReplayResponse",
    "ContextRequest",
    "ResultItem",
    "BranchItem",
    "ContextResponse",
    "CorpusSearchResponse",
    "IndexStatsResponse",
]
