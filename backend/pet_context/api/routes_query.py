"""Retrieval API routes."""

from __future__ import annotations

from typing import Iterable

from fastapi import APIRouter, Depends, Query

from pet_context.api.dependencies import get_corpus, get_retriever
from pet_context.core.logging import get_logger
from pet_context.models.dto import (
    BranchItem,
    ContextRequest,
    ContextResponse,
    CorpusSearchResponse,
    ResultItem,
)
from pet_context.models.entities import RankedResult, ScopeFilter
from pet_context.retrieval.corpus import LexicalCorpus
from pet_context.retrieval.orchestrator import HybridRetriever

router = APIRouter()
logger = get_logger(__name__)


@router.post("/context", response_model=ContextResponse, summary="Assemble grounding context for a question")
def build_context(
    request: ContextRequest,
    retriever: HybridRetriever = Depends(get_retriever),
) -> ContextResponse:
    scope = ScopeFilter(owner_id=request.owner_id, subject_id=request.subject_id)
    try:
        report = retriever.gather(request.query, scope)
    except Exception:
        logger.exception("Context assembly failed for query %r", request.query)
        return ContextResponse(
            query=request.query,
            context=retriever.formatter.fallback,
            results=[],
            branches=[],
        )
    context = retriever.formatter.format(report.results)
    return ContextResponse(
        query=request.query,
        context=context,
        results=_to_items(report.results),
        branches=[BranchItem(**outcome.to_dict()) for outcome in report.branches],
    )


@router.get("/corpus/search", response_model=CorpusSearchResponse, summary="Search the local document corpus")
def search_corpus(
    q: str = Query(min_length=1),
    limit: int | None = Query(default=None, ge=1, le=50),
    corpus: LexicalCorpus = Depends(get_corpus),
) -> CorpusSearchResponse:
    return CorpusSearchResponse(query=q, results=_to_items(corpus.search(q, limit=limit)))


def _to_items(results: Iterable[RankedResult]) -> list[ResultItem]:
    return [
        ResultItem(
            source=result.source_tag,
            title=result.title,
            snippet=result.snippet,
            score=result.score,
            provenance=result.provenance,
            published_at=result.published_at,
        )
        for result in results
    ]


__all__ = ["router"]
