"""Index synchronizer tests."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from pet_context.core.errors import EmbeddingError, EmbeddingUnavailableError, IndexUnavailableError
from pet_context.ingest.embeddings import HashedEmbeddingProvider
from pet_context.ingest.synchronizer import IndexSynchronizer, SyncState
from pet_context.models.entities import ScopeFilter
from pet_context.models.events import ChangeEvent
from pet_context.retrieval.vector_index import InMemoryVectorIndex

DIM = 32


def _event(event_type: str, record_id: str = "42", text: str | None = "아침에 설사를 했어요", **extra) -> ChangeEvent:
    payload = {
        "eventType": event_type,
        "diaryId": record_id,
        "userId": "u1",
        "petId": "p1",
        "content": text,
        "createdAt": 1_700_000_000_000,
    }
    payload.update(extra)
    return ChangeEvent.model_validate(payload)


class FlakyEmbedder:
    """Fails with the given error for the first ``failures`` calls."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.inner = HashedEmbeddingProvider(DIM)
        self.failures = failures
        self.error = error or EmbeddingUnavailableError("timed out")
        self.calls = 0

    @property
    def dim(self) -> int:
        return DIM

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.inner.embed(text)


class FlakyIndex(InMemoryVectorIndex):
    def __init__(self, dim: int, failures: int) -> None:
        super().__init__(dim)
        self.failures = failures

    def replace(self, entry) -> int:
        if self.failures:
            self.failures -= 1
            raise IndexUnavailableError("index restarting")
        return super().replace(entry)


@pytest.fixture
def index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex(DIM)


def _synchronizer(index, embedder=None, **kwargs) -> IndexSynchronizer:
    kwargs.setdefault("backoff_seconds", 0)
    return IndexSynchronizer(index, embedder or HashedEmbeddingProvider(DIM), **kwargs)


def test_repeated_created_event_leaves_one_entry(index) -> None:
    synchronizer = _synchronizer(index)
    event = _event("DIARY_CREATED")

    outcomes = [synchronizer.handle(event) for _ in range(3)]

    assert all(outcome.state is SyncState.ACKED for outcome in outcomes)
    assert index.count("42") == 1


def test_update_replaces_previous_entry(index) -> None:
    synchronizer = _synchronizer(index)
    synchronizer.handle(_event("CREATED", text="밥을 잘 먹었어요"))
    synchronizer.handle(_event("UPDATED", text="저녁에 구토를 두 번 했어요"))

    hits = index.query(
        HashedEmbeddingProvider(DIM).embed("구토"),
        ScopeFilter(owner_id="u1", subject_id="p1"),
        top_k=5,
    )

    assert len(hits) == 1
    assert hits[0].content == "저녁에 구토를 두 번 했어요"


def test_update_without_previous_entry_inserts(index) -> None:
    outcome = _synchronizer(index).handle(_event("DIARY_UPDATED", record_id="9"))

    assert outcome.state is SyncState.ACKED
    assert index.count("9") == 1


def test_duplicate_delete_is_harmless(index) -> None:
    synchronizer = _synchronizer(index)
    synchronizer.handle(_event("CREATED", record_id="7"))
    synchronizer.handle(_event("CREATED", record_id="42"))

    first = synchronizer.handle(_event("DELETED", record_id="42", text=None))
    second = synchronizer.handle(_event("DELETED", record_id="42", text=None))

    assert first.state is SyncState.ACKED
    assert second.state is SyncState.ACKED
    assert second.error is None
    assert index.count("42") == 0
    assert index.count("7") == 1


def test_unknown_event_type_is_skipped(index) -> None:
    outcome = _synchronizer(index).handle(_event("DIARY_ARCHIVED"))

    assert outcome.state is SyncState.SKIPPED
    assert outcome.attempts == 0
    assert index.count() == 0


def test_created_without_text_is_skipped(index) -> None:
    outcome = _synchronizer(index).handle(_event("CREATED", text="   "))

    assert outcome.state is SyncState.SKIPPED
    assert "text" in (outcome.error or "")


def test_transient_embedding_failure_is_retried(index) -> None:
    embedder = FlakyEmbedder(failures=2)
    sleeps: list[float] = []
    synchronizer = _synchronizer(index, embedder, max_attempts=3, backoff_seconds=1.0, sleep=sleeps.append)

    outcome = synchronizer.handle(_event("CREATED"))

    assert outcome.state is SyncState.ACKED
    assert outcome.attempts == 3
    assert sleeps == [1.0, 1.0]
    assert index.count("42") == 1


def test_exhausted_retries_skip_the_event(index) -> None:
    embedder = FlakyEmbedder(failures=10)
    synchronizer = _synchronizer(index, embedder, max_attempts=3)

    outcome = synchronizer.handle(_event("CREATED"))

    assert outcome.state is SyncState.SKIPPED
    assert outcome.attempts == 3
    assert embedder.calls == 3
    assert outcome.committable
    assert index.count() == 0


def test_permanent_embedding_error_is_not_retried(index) -> None:
    embedder = FlakyEmbedder(failures=1, error=EmbeddingError("bad reply"))

    outcome = _synchronizer(index, embedder).handle(_event("CREATED"))

    assert outcome.state is SyncState.SKIPPED
    assert embedder.calls == 1


def test_index_unavailable_during_replace_is_retried() -> None:
    flaky = FlakyIndex(DIM, failures=1)

    outcome = _synchronizer(flaky).handle(_event("CREATED"))

    assert outcome.state is SyncState.ACKED
    assert outcome.attempts == 2
    assert flaky.count("42") == 1


class SlowEmbedder:
    """Records how many embeds overlap for one record."""

    def __init__(self, delay: float = 0.05) -> None:
        self.inner = HashedEmbeddingProvider(DIM)
        self.delay = delay
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    @property
    def dim(self) -> int:
        return DIM

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        return self.inner.embed(text)


def test_concurrent_deliveries_of_one_record_leave_one_entry(index) -> None:
    embedder = SlowEmbedder()
    synchronizer = _synchronizer(index, embedder)
    event = _event("DIARY_CREATED")

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(synchronizer.handle, [event] * 4))

    assert all(outcome.state is SyncState.ACKED for outcome in outcomes)
    assert embedder.peak == 1
    assert index.count("42") == 1



def test_failed_redelivery_keeps_the_live_entry() -> None:
    flaky = FlakyIndex(DIM, failures=0)
    synchronizer = _synchronizer(flaky)
    synchronizer.handle(_event("CREATED"))
    flaky.failures = 3

    outcome = synchronizer.handle(_event("CREATED", text="저녁에는 괜찮아졌어요"))

    assert outcome.state is SyncState.SKIPPED
    assert flaky.count("42") == 1
    assert flaky.query(HashedEmbeddingProvider(DIM).embed("아침에 설사를 했어요"))[0].content == "아침에 설사를 했어요"
