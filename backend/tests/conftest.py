"""Test fixtures for Pet Context."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterable

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from pet_context.models.entities import CorpusDocument, RankedResult, ScopeFilter  # noqa: E402

TEST_DIM = 64


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("PETCTX_DB_PATH", str(tmp_path / "pc.db"))
    monkeypatch.setenv("PETCTX_EMBEDDING_DIM", str(TEST_DIM))
    monkeypatch.delenv("PETCTX_CONFIG", raising=False)
    for name in ("NAVER_CLIENT_ID", "NAVER_CLIENT_SECRET", "VECTOR_BACKEND", "EMBEDDING_BACKEND"):
        monkeypatch.delenv(f"PETCTX_{name}", raising=False)

    from pet_context.api import dependencies as deps
    from pet_context.core.config import get_settings

    get_settings.cache_clear()
    deps.reset_dependencies()
    yield
    get_settings.cache_clear()
    deps.reset_dependencies()


@pytest.fixture
def make_document():
    def _make(
        doc_id: str,
        title: str,
        body: str = "",
        keywords: Iterable[str] = (),
        category: str = "general",
        url: str | None = None,
    ) -> CorpusDocument:
        return CorpusDocument(
            id=doc_id,
            title=title,
            body=body,
            category=category,
            keywords=frozenset(keywords),
            url=url,
        )

    return _make


class FakeSource:
    """Scripted retrieval source: returns results, raises, or stalls."""

    def __init__(
        self,
        name: str,
        results: list[RankedResult] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        timeout: float = 3.0,
    ) -> None:
        self.name = name
        self.timeout = timeout
        self.results = results or []
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, ScopeFilter | None]] = []

    def fetch(self, query: str, scope: ScopeFilter | None = None) -> list[RankedResult]:
        import time

        self.calls.append((query, scope))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.results)


@pytest.fixture
def fake_source():
    return FakeSource


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, content: bytes = b"") -> None:
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.text = content.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Records requests and replays canned responses (or raises a queued error)."""

    def __init__(self, responses: list[FakeResponse | Exception] | None = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[dict] = []

    def _next(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url: str, **kwargs) -> FakeResponse:
        return self._next("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> FakeResponse:
        return self._next("POST", url, **kwargs)


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession
