"""FastAPI application setup for Pet Context."""

from __future__ import annotations

import time

from fastapi import FastAPI, Request, Response

from pet_context.api.dependencies import (
    get_app_settings,
    get_corpus,
    get_retriever,
    get_vector_index,
)
from pet_context.api.routes_admin import router as admin_router
from pet_context.api.routes_events import router as events_router
from pet_context.api.routes_query import router as query_router
from pet_context.core.logging import configure_logging, get_logger, log_context
from pet_context.core.metrics import REQUEST_COUNT, REQUEST_LATENCY

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="Pet Context",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(events_router, prefix="/events", tags=["events"])
app.include_router(query_router, prefix="", tags=["query"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.middleware("http")
async def record_request_metrics(request: Request, call_next) -> Response:
    start = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(time.perf_counter() - start)
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
    return response


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons; failures leave the matching branch disabled."""
    settings = get_app_settings()
    corpus = get_corpus()
    index = get_vector_index()
    retriever = get_retriever()
    logger.info(
        "Pet Context ready: %s corpus documents, vector index %s, %s external sources",
        len(corpus),
        index.backend if index is not None else "disabled",
        len(retriever.sources),
        extra=log_context(db_path=str(settings.db_path)),
    )


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check; the vector flag reports degraded mode."""
    return {"ok": True, "vector_index": get_vector_index() is not None}
