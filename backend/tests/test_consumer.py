"""Partitioned consumer and offset tracking tests."""

from __future__ import annotations

import threading

import orjson

from pet_context.ingest.consumer import DeliveredEvent, OffsetTracker, PartitionedConsumer
from pet_context.ingest.embeddings import HashedEmbeddingProvider
from pet_context.ingest.synchronizer import IndexSynchronizer
from pet_context.retrieval.vector_index import InMemoryVectorIndex

DIM = 16


def _payload(event_type: str, record_id: str, text: str = "산책을 오래 했어요") -> bytes:
    return orjson.dumps(
        {"eventType": event_type, "recordId": record_id, "ownerId": "u1", "subjectId": "p1", "text": text}
    )


def _consumer(index: InMemoryVectorIndex, commits: list[tuple[int, int]] | None = None, workers: int = 3):
    synchronizer = IndexSynchronizer(index, HashedEmbeddingProvider(DIM), backoff_seconds=0)
    commit = (lambda partition, offset: commits.append((partition, offset))) if commits is not None else None
    return PartitionedConsumer(synchronizer, workers=workers, commit=commit)


def test_offset_tracker_waits_for_in_flight_offsets() -> None:
    tracker = OffsetTracker()
    for offset in range(3):
        tracker.begin(0, offset)

    assert tracker.complete(0, 1) is None
    assert tracker.complete(0, 2) is None
    assert tracker.complete(0, 0) == 2
    assert tracker.committed(0) == 2


def test_offset_tracker_partitions_are_independent() -> None:
    tracker = OffsetTracker()
    tracker.begin(0, 5)
    tracker.begin(1, 3)

    assert tracker.complete(1, 3) == 3
    assert tracker.committed(0) is None


def test_same_record_always_routes_to_same_worker() -> None:
    consumer = _consumer(InMemoryVectorIndex(DIM))
    assert {consumer.worker_for("42") for _ in range(10)} == {consumer.worker_for("42")}
    assert all(0 <= consumer.worker_for(str(idx)) < 3 for idx in range(50))


def test_consume_applies_events_and_commits_last_offset() -> None:
    index = InMemoryVectorIndex(DIM)
    commits: list[tuple[int, int]] = []
    events = [
        DeliveredEvent(0, 0, _payload("CREATED", "1")),
        DeliveredEvent(0, 1, _payload("CREATED", "2")),
        DeliveredEvent(0, 2, _payload("UPDATED", "1", "비 오는 날 산책")),
        DeliveredEvent(0, 3, _payload("DELETED", "2")),
    ]

    with _consumer(index, commits) as consumer:
        stats = consumer.consume(events)

    assert stats.received == 4
    assert stats.acked == 4
    assert stats.committed == {0: 3}
    assert commits[-1] == (0, 3)
    assert [offset for _, offset in commits] == sorted(offset for _, offset in commits)
    assert index.count("1") == 1
    assert index.count("2") == 0


def test_malformed_payload_is_dropped_and_committed() -> None:
    index = InMemoryVectorIndex(DIM)
    commits: list[tuple[int, int]] = []
    events = [
        DeliveredEvent(0, 0, b"{not json"),
        DeliveredEvent(0, 1, _payload("DIARY_ARCHIVED", "3")),
        DeliveredEvent(0, 2, {"eventType": "CREATED"}),
    ]

    with _consumer(index, commits, workers=2) as consumer:
        stats = consumer.consume(events)

    assert stats.malformed == 2
    assert stats.skipped == 3
    assert stats.acked == 0
    assert commits[-1] == (0, 2)
    assert index.count() == 0


def test_commit_failure_does_not_stop_workers() -> None:
    index = InMemoryVectorIndex(DIM)
    calls: list[int] = []
    lock = threading.Lock()

    def failing_commit(partition: int, offset: int) -> None:
        with lock:
            calls.append(offset)
        raise RuntimeError("broker unavailable")

    synchronizer = IndexSynchronizer(index, HashedEmbeddingProvider(DIM), backoff_seconds=0)
    with PartitionedConsumer(synchronizer, workers=1, commit=failing_commit) as consumer:
        consumer.consume([DeliveredEvent(0, idx, _payload("CREATED", str(idx))) for idx in range(3)])

    assert calls == [0, 1, 2]
    assert index.count() == 3
