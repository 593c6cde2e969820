"""Shared FastAPI dependencies."""

from __future__ import annotations

import sqlite3
from functools import lru_cache

import requests
from fastapi import HTTPException

from pet_context.core.config import Settings, get_settings
from pet_context.core.errors import PetContextError
from pet_context.core.logging import get_logger
from pet_context.core.metrics import INDEX_SIZE
from pet_context.db.sqlite import SQLiteDatabase
from pet_context.ingest.embeddings import EmbeddingProvider, HashedEmbeddingProvider, HttpEmbeddingProvider
from pet_context.ingest.event_log import OffsetStore
from pet_context.ingest.synchronizer import IndexSynchronizer
from pet_context.retrieval import (
    ContextFormatter,
    HtmlSearchSource,
    HybridRetriever,
    InMemoryVectorIndex,
    LexicalCorpus,
    NaverEncyclopediaSource,
    SQLiteVectorIndex,
    VectorIndex,
    VectorSource,
)
from pet_context.retrieval.sources import ExternalSource

logger = get_logger(__name__)

_DB: SQLiteDatabase | None = None
_EMBEDDER: EmbeddingProvider | None = None
_VECTOR_INDEX: VectorIndex | None = None
_VECTOR_READY: bool | None = None
_CORPUS: LexicalCorpus | None = None
_RETRIEVER: HybridRetriever | None = None
_SYNCHRONIZER: IndexSynchronizer | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        _DB = SQLiteDatabase(get_app_settings().db_path)
    return _DB


def get_embedder() -> EmbeddingProvider:
    global _EMBEDDER
    if _EMBEDDER is None:
        settings = get_app_settings()
        if settings.embedding_backend == "http":
            if not settings.embedding_url:
                logger.error("embedding_backend is 'http' but no embedding_url is set; using hashed embeddings")
                _EMBEDDER = HashedEmbeddingProvider(settings.embedding_dim)
            else:
                _EMBEDDER = HttpEmbeddingProvider(
                    settings.embedding_url,
                    dim=settings.embedding_dim,
                    timeout=settings.embedding_timeout,
                )
        else:
            _EMBEDDER = HashedEmbeddingProvider(settings.embedding_dim)
    return _EMBEDDER


def get_vector_index() -> VectorIndex | None:
    """Return the vector index, or None when it failed to initialize (degraded mode)."""
    global _VECTOR_INDEX, _VECTOR_READY
    if _VECTOR_READY is None:
        settings = get_app_settings()
        index: VectorIndex
        if settings.vector_backend == "memory":
            index = InMemoryVectorIndex(settings.embedding_dim)
        else:
            index = SQLiteVectorIndex(get_database(), settings.embedding_dim)
        try:
            index.ensure_ready()
        except PetContextError as exc:
            logger.error("Vector index unavailable, starting without the journal branch: %s", exc)
            _VECTOR_READY = False
        else:
            _VECTOR_INDEX = index
            _VECTOR_READY = True
            refresh_index_size(index)
    return _VECTOR_INDEX


def refresh_index_size(index: VectorIndex | None = None) -> int | None:
    """Update the index size gauge; returns ``None`` when the size cannot be read."""
    index = index if index is not None else get_vector_index()
    if index is None:
        return None
    try:
        size = index.size
    except PetContextError as exc:
        logger.warning("Could not read vector index size: %s", exc)
        return None
    INDEX_SIZE.set(size)
    return size


def get_corpus() -> LexicalCorpus:
    global _CORPUS
    if _CORPUS is None:
        settings = get_app_settings()
        _CORPUS = LexicalCorpus.load(settings.corpus_path, top_n=settings.corpus_top_n)
    return _CORPUS


def build_sources(settings: Settings, session: requests.Session | None = None) -> list[ExternalSource]:
    """External sources in registration order: Naver first, then configured HTML crawls."""
    sources: list[ExternalSource] = []
    if settings.naver_enabled:
        sources.append(
            NaverEncyclopediaSource(
                settings.naver_client_id or "",
                settings.naver_client_secret or "",
                timeout=settings.source_timeout,
                session=session,
            )
        )
    for config in settings.html_sources:
        sources.append(HtmlSearchSource.from_config(config, settings.source_timeout, session=session))
    return sources


def get_retriever() -> HybridRetriever:
    global _RETRIEVER
    if _RETRIEVER is None:
        settings = get_app_settings()
        index = get_vector_index()
        vector_source = None
        if index is not None:
            vector_source = VectorSource(
                index,
                get_embedder(),
                top_k=settings.vector_top_k,
                min_score=settings.vector_min_score,
                timeout=settings.source_timeout,
            )
        _RETRIEVER = HybridRetriever(
            corpus=get_corpus(),
            vector_source=vector_source,
            sources=build_sources(settings),
            formatter=ContextFormatter(
                snippet_chars=settings.snippet_chars,
                max_chars=settings.max_context_chars,
            ),
            deadline=settings.retrieval_deadline,
            max_items=settings.max_context_items,
        )
    return _RETRIEVER


def get_synchronizer() -> IndexSynchronizer:
    global _SYNCHRONIZER
    if _SYNCHRONIZER is None:
        index = get_vector_index()
        if index is None:
            raise HTTPException(status_code=503, detail="Vector index unavailable")
        settings = get_app_settings()
        _SYNCHRONIZER = IndexSynchronizer(
            index,
            get_embedder(),
            max_attempts=settings.sync_max_attempts,
            backoff_seconds=settings.sync_backoff_seconds,
        )
    return _SYNCHRONIZER


def get_offset_store() -> OffsetStore:
    db = get_database()
    try:
        db.ensure_schema()
    except (sqlite3.Error, OSError) as exc:
        raise HTTPException(status_code=503, detail=f"Offset store unavailable: {exc}") from exc
    return OffsetStore(db, get_app_settings().consumer_group)


def reset_dependencies() -> None:
    """Drop cached singletons so the next request rebuilds them from fresh settings."""
    global _DB, _EMBEDDER, _VECTOR_INDEX, _VECTOR_READY, _CORPUS, _RETRIEVER, _SYNCHRONIZER
    if _DB is not None:
        _DB.close()
    _DB = None
    _EMBEDDER = None
    _VECTOR_INDEX = None
    _VECTOR_READY = None
    _CORPUS = None
    _RETRIEVER = None
    _SYNCHRONIZER = None
    get_app_settings.cache_clear()


__all__ = [
    "get_app_settings",
    "get_database",
    "get_embedder",
    "get_vector_index",
    "refresh_index_size",
    "get_corpus",
    "get_retriever",
    "get_synchronizer",
    "get_offset_store",
    "build_sources",
    "reset_dependencies",
]
