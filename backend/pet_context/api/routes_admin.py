"""Administrative routes for Pet Context."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from pet_context.api.dependencies import (
    get_app_settings,
    get_corpus,
    get_retriever,
    get_vector_index,
    refresh_index_size,
)
from pet_context.core.config import Settings
from pet_context.core.metrics import metrics_response
from pet_context.models.dto import IndexStatsResponse
from pet_context.retrieval.corpus import LexicalCorpus
from pet_context.retrieval.orchestrator import HybridRetriever

router = APIRouter()


@router.get("/index/stats", response_model=IndexStatsResponse, summary="Vector index and source status")
def index_stats(
    settings: Settings = Depends(get_app_settings),
    corpus: LexicalCorpus = Depends(get_corpus),
    retriever: HybridRetriever = Depends(get_retriever),
) -> IndexStatsResponse:
    index = get_vector_index()
    entries = refresh_index_size(index) if index is not None else None
    return IndexStatsResponse(
        backend=index.backend if index is not None else "unavailable",
        entries=entries or 0,
        dim=settings.embedding_dim,
        vector_enabled=retriever.vector_source is not None,
        corpus_documents=len(corpus),
        external_sources=[source.name for source in retriever.sources],
    )


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
