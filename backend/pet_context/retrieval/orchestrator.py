"""Hybrid retrieval: local corpus first, then concurrent vector and external branches."""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from rapidfuzz import fuzz

from pet_context.core.logging import get_logger, log_context
from pet_context.core.metrics import RETRIEVAL_BRANCHES, RETRIEVAL_LATENCY
from pet_context.models.entities import RankedResult, ScopeFilter
from pet_context.retrieval.corpus import LexicalCorpus
from pet_context.retrieval.formatter import ContextFormatter
from pet_context.retrieval.sources import ExternalSource
from pet_context.utils.text import normalize

logger = get_logger(__name__)

DEFAULT_DEADLINE = 5.0
DEFAULT_MAX_ITEMS = 8
DUPLICATE_RATIO = 92.0
_DEDUP_PREFIX_CHARS = 80


class BranchStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(slots=True)
class BranchOutcome:
    name: str
    status: BranchStatus
    elapsed: float
    count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "status": self.status.value,
            "elapsed": round(self.elapsed, 4),
            "count": self.count,
            "error": self.error,
        }


@dataclass(slots=True)
class RetrievalReport:
    query: str
    results: list[RankedResult] = field(default_factory=list)
    branches: list[BranchOutcome] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.results

    def branch(self, name: str) -> BranchOutcome | None:
        for outcome in self.branches:
            if outcome.name == name:
                return outcome
        return None


class HybridRetriever:
    """Fan a query out to every registered source and merge what answers before the deadline.

    Results are concatenated in priority order (local corpus, vector index, then
    external sources in registration order), near-duplicates are dropped and the
    list is capped at ``max_items``. Branches that miss the deadline are
    abandoned; their worker threads finish on their own and the result is
    discarded.
    """

    def __init__(
        self,
        corpus: LexicalCorpus,
        vector_source: ExternalSource | None = None,
        sources: Sequence[ExternalSource] = (),
        formatter: ContextFormatter | None = None,
        deadline: float = DEFAULT_DEADLINE,
        max_items: int = DEFAULT_MAX_ITEMS,
    ) -> None:
        self.corpus = corpus
        self.vector_source = vector_source
        self.sources = list(sources)
        self.formatter = formatter or ContextFormatter()
        self.deadline = deadline
        self.max_items = max_items

    @property
    def branches(self) -> list[ExternalSource]:
        concurrent: list[ExternalSource] = []
        if self.vector_source is not None:
            concurrent.append(self.vector_source)
        concurrent.extend(self.sources)
        return concurrent

    def retrieve(self, query: str, scope: ScopeFilter | None = None) -> str:
        """Return a context block for ``query``; falls back to a marked placeholder instead of raising."""
        try:
            report = self.gather(query, scope)
            return self.formatter.format(report.results)
        except Exception:
            logger.exception("Hybrid retrieval failed", extra=log_context(query=query))
            return self.formatter.fallback

    def gather(self, query: str, scope: ScopeFilter | None = None) -> RetrievalReport:
        started = time.monotonic()
        overall_deadline = started + self.deadline
        report = RetrievalReport(query=query)
        per_branch: list[list[RankedResult]] = []

        local_results, local_outcome = self._run_local(query)
        per_branch.append(local_results)
        report.branches.append(local_outcome)

        branches = self.branches
        if branches:
            executor = ThreadPoolExecutor(max_workers=len(branches), thread_name_prefix="retrieval")
            try:
                launched = [
                    (source, time.monotonic(), executor.submit(source.fetch, query, scope))
                    for source in branches
                ]
                for source, launched_at, future in launched:
                    branch_deadline = min(launched_at + source.timeout, overall_deadline)
                    results, outcome = self._collect(source, launched_at, branch_deadline, future)
                    per_branch.append(results)
                    report.branches.append(outcome)
            finally:
                executor.shutdown(wait=False, cancel_futures=True)

        report.results = self._merge(per_branch)
        report.elapsed = time.monotonic() - started
        RETRIEVAL_LATENCY.observe(report.elapsed)
        for outcome in report.branches:
            RETRIEVAL_BRANCHES.labels(branch=outcome.name, status=outcome.status.value).inc()
        logger.info(
            "Retrieval finished",
            extra=log_context(
                query=query,
                results=len(report.results),
                branches={outcome.name: outcome.status.value for outcome in report.branches},
                elapsed=round(report.elapsed, 4),
            ),
        )
        return report

    def _run_local(self, query: str) -> tuple[list[RankedResult], BranchOutcome]:
        started = time.monotonic()
        name = self.corpus.source_tag
        try:
            results = self.corpus.search(query)
        except Exception as exc:
            logger.warning("Local corpus search failed: %s", exc, extra=log_context(branch=name))
            return [], BranchOutcome(name, BranchStatus.FAILED, time.monotonic() - started, error=str(exc))
        status = BranchStatus.OK if results else BranchStatus.EMPTY
        return results, BranchOutcome(name, status, time.monotonic() - started, count=len(results))

    def _collect(
        self,
        source: ExternalSource,
        launched_at: float,
        branch_deadline: float,
        future: Future,
    ) -> tuple[list[RankedResult], BranchOutcome]:
        remaining = max(0.0, branch_deadline - time.monotonic())
        wait([future], timeout=remaining)
        elapsed = time.monotonic() - launched_at
        if not future.done():
            future.cancel()
            logger.warning(
                "Retrieval branch timed out after %.2fs", elapsed, extra=log_context(branch=source.name)
            )
            return [], BranchOutcome(source.name, BranchStatus.TIMED_OUT, elapsed)
        error = future.exception()
        if error is not None:
            logger.warning(
                "Retrieval branch failed: %s", error, extra=log_context(branch=source.name)
            )
            return [], BranchOutcome(source.name, BranchStatus.FAILED, elapsed, error=str(error))
        results = list(future.result() or [])
        status = BranchStatus.OK if results else BranchStatus.EMPTY
        return results, BranchOutcome(source.name, status, elapsed, count=len(results))

    def _merge(self, per_branch: Sequence[Sequence[RankedResult]]) -> list[RankedResult]:
        merged: list[RankedResult] = []
        seen: list[str] = []
        for results in per_branch:
            for result in results:
                key = _dedup_key(result)
                if any(fuzz.ratio(key, other) >= DUPLICATE_RATIO for other in seen):
                    continue
                seen.append(key)
                merged.append(result)
                if len(merged) >= self.max_items:
                    return merged
        return merged


def _dedup_key(result: RankedResult) -> str:
    return normalize(f"{result.title} {result.snippet[:_DEDUP_PREFIX_CHARS]}").lower()


__all__ = ["HybridRetriever", "RetrievalReport", "BranchOutcome", "BranchStatus"]
