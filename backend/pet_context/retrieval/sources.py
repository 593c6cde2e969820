"""Retrieval sources fanned out by the hybrid retriever."""

from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import quote_plus

import lxml.html
import requests

from pet_context.core.config import HtmlSourceConfig
from pet_context.core.errors import SourceError
from pet_context.ingest.embeddings import EmbeddingProvider
from pet_context.models.entities import RankedResult, ScopeFilter
from pet_context.retrieval.vector_index import VectorIndex
from pet_context.utils.text import normalize, strip_html, truncate
from pet_context.utils.time import ms_to_date

JOURNAL_SOURCE_TAG = "journal"
DEFAULT_EXTERNAL_SCORE = 0.5
EXTERNAL_SNIPPET_CHARS = 200
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 pet-context"


class ExternalSource(Protocol):
    """Anything that can turn a query into ranked results within ``timeout`` seconds."""

    name: str
    timeout: float

    def fetch(self, query: str, scope: ScopeFilter | None = None) -> list[RankedResult]: ...


class VectorSource:
    """Similar journal entries for the scoped owner/subject."""

    def __init__(
        self,
        index: VectorIndex,
        embedder: EmbeddingProvider,
        top_k: int = 3,
        min_score: float = 0.0,
        timeout: float = 3.0,
        name: str = JOURNAL_SOURCE_TAG,
    ) -> None:
        self.index = index
        self.embedder = embedder
        self.top_k = top_k
        self.min_score = min_score
        self.timeout = timeout
        self.name = name

    def fetch(self, query: str, scope: ScopeFilter | None = None) -> list[RankedResult]:
        vector = self.embedder.embed(query)
        hits = self.index.query(vector, scope, self.top_k)
        results: list[RankedResult] = []
        for hit in hits:
            score = clamp_score(hit.score)
            if score < self.min_score:
                continue
            published = ms_to_date(hit.inserted_at)
            results.append(
                RankedResult(
                    source_tag=self.name,
                    title=f"Journal entry {published}" if published else "Journal entry",
                    snippet=hit.content,
                    score=score,
                    provenance=f"journal:{hit.record_id}",
                    published_at=published,
                )
            )
        return results


class NaverEncyclopediaSource:
    """Naver encyclopedia search API."""

    ENDPOINT = "https://openapi.naver.com/v1/search/encyc.json"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        timeout: float = 3.0,
        display: int = 3,
        score: float = DEFAULT_EXTERNAL_SCORE,
        session: requests.Session | None = None,
        name: str = "naver-encyclopedia",
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.display = display
        self.score = score
        self.session = session or requests.Session()
        self.name = name

    def fetch(self, query: str, scope: ScopeFilter | None = None) -> list[RankedResult]:
        response = self.session.get(
            self.ENDPOINT,
            params={"query": query, "display": self.display},
            headers={
                "X-Naver-Client-Id": self.client_id,
                "X-Naver-Client-Secret": self.client_secret,
            },
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise SourceError(f"{self.name} responded with {response.status_code}")
        payload: Any = response.json()
        items = payload.get("items") if isinstance(payload, dict) else None
        results: list[RankedResult] = []
        for item in items or []:
            title = strip_html(item.get("title"))
            if not title:
                continue
            results.append(
                RankedResult(
                    source_tag=self.name,
                    title=title,
                    snippet=truncate(strip_html(item.get("description")), EXTERNAL_SNIPPET_CHARS),
                    score=self.score,
                    provenance=item.get("link") or None,
                )
            )
        return results


class HtmlSearchSource:
    """Crawls a site's search page and keeps the first hit's title and summary."""

    def __init__(
        self,
        name: str,
        url_template: str,
        title_xpath: str,
        summary_xpath: str,
        timeout: float = 3.0,
        score: float = DEFAULT_EXTERNAL_SCORE,
        session: requests.Session | None = None,
    ) -> None:
        self.name = name
        self.url_template = url_template
        self.title_xpath = title_xpath
        self.summary_xpath = summary_xpath
        self.timeout = timeout
        self.score = score
        self.session = session or requests.Session()

    @classmethod
    def from_config(
        cls,
        config: HtmlSourceConfig,
        default_timeout: float,
        session: requests.Session | None = None,
    ) -> "HtmlSearchSource":
        return cls(
            name=config.name,
            url_template=config.url_template,
            title_xpath=config.title_xpath,
            summary_xpath=config.summary_xpath,
            timeout=config.timeout or default_timeout,
            session=session,
        )

    def fetch(self, query: str, scope: ScopeFilter | None = None) -> list[RankedResult]:
        url = self.url_template.format(query=quote_plus(query))
        response = self.session.get(url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout)
        if response.status_code >= 400:
            raise SourceError(f"{self.name} responded with {response.status_code}")
        if not response.content or not response.content.strip():
            return []
        tree = lxml.html.fromstring(response.content)
        title = _first_text(tree.xpath(self.title_xpath))
        summary = _first_text(tree.xpath(self.summary_xpath))
        if not title or not summary:
            return []
        return [
            RankedResult(
                source_tag=self.name,
                title=title,
                snippet=truncate(summary, EXTERNAL_SNIPPET_CHARS),
                score=self.score,
                provenance=url,
            )
        ]


def clamp_score(score: float) -> float:
    """Map a cosine similarity onto [0, 1]; negative similarity counts as no match."""
    return max(0.0, min(1.0, float(score)))


def _first_text(nodes: Any) -> str:
    if not isinstance(nodes, list):
        return normalize(str(nodes)) if nodes else ""
    for node in nodes:
        text = node.text_content() if hasattr(node, "text_content") else str(node)
        text = normalize(text)
        if text:
            return text
    return ""


__all__ = [
    "ExternalSource",
    "VectorSource",
    "NaverEncyclopediaSource",
    "HtmlSearchSource",
    "clamp_score",
    "JOURNAL_SOURCE_TAG",
]
