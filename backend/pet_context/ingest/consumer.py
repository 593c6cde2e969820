"""Partitioned consumer that drives the index synchronizer with manual commits."""

from __future__ import annotations

import queue
import threading
import zlib
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from pet_context.core.errors import MalformedEventError
from pet_context.core.logging import get_logger
from pet_context.ingest.events import parse_change_event
from pet_context.ingest.synchronizer import IndexSynchronizer, SyncState
from pet_context.models.events import ChangeEvent

logger = get_logger(__name__)

CommitCallback = Callable[[int, int], None]


@dataclass(slots=True)
class DeliveredEvent:
    """A raw payload as handed over by the transport, with its stream position."""

    partition: int
    offset: int
    payload: bytes | str | Mapping[str, Any]


@dataclass(slots=True)
class ConsumerStats:
    received: int = 0
    acked: int = 0
    skipped: int = 0
    malformed: int = 0
    committed: dict[int, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "received": self.received,
            "acked": self.acked,
            "skipped": self.skipped,
            "malformed": self.malformed,
            "committed": dict(self.committed),
        }


class OffsetTracker:
    """Track completed offsets so commits never pass an event still in flight."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: dict[int, set[int]] = defaultdict(set)
        self._completed: dict[int, set[int]] = defaultdict(set)
        self._committed: dict[int, int] = {}

    def begin(self, partition: int, offset: int) -> None:
        with self._lock:
            self._in_flight[partition].add(offset)

    def complete(self, partition: int, offset: int) -> int | None:
        """Mark an offset done; return the new committable offset if it advanced."""
        with self._lock:
            in_flight = self._in_flight[partition]
            completed = self._completed[partition]
            in_flight.discard(offset)
            completed.add(offset)
            floor = min(in_flight) if in_flight else None
            eligible = {item for item in completed if floor is None or item < floor}
            if not eligible:
                return None
            completed.difference_update(eligible)
            candidate = max(eligible)
            previous = self._committed.get(partition)
            if previous is not None and candidate <= previous:
                return None
            self._committed[partition] = candidate
            return candidate

    def committed(self, partition: int) -> int | None:
        with self._lock:
            return self._committed.get(partition)


@dataclass(slots=True)
class _WorkItem:
    delivered: DeliveredEvent
    event: ChangeEvent | None
    error: str | None = None


_STOP = object()


class PartitionedConsumer:
    """Small worker pool partitioned by record id.

    Events for the same record always land on the same worker queue, so an
    UPDATED can never overtake the CREATED it follows. Offsets are committed
    through ``commit`` only after the event reaches a terminal sync state.
    """

    def __init__(
        self,
        synchronizer: IndexSynchronizer,
        workers: int = 3,
        commit: CommitCallback | None = None,
        queue_size: int = 1000,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.synchronizer = synchronizer
        self.workers = workers
        self._commit = commit
        self._queues: list[queue.Queue] = [queue.Queue(maxsize=queue_size) for _ in range(workers)]
        self._threads: list[threading.Thread] = []
        self._tracker = OffsetTracker()
        self._stats = ConsumerStats()
        self._stats_lock = threading.Lock()
        self._lock = threading.Lock()
        self._commit_lock = threading.Lock()
        self._started = False

    @property
    def tracker(self) -> OffsetTracker:
        return self._tracker

    def worker_for(self, record_id: str) -> int:
        return zlib.crc32(record_id.encode("utf-8")) % self.workers

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._threads = [
                threading.Thread(target=self._run, args=(idx,), name=f"sync-worker-{idx}", daemon=True)
                for idx in range(self.workers)
            ]
            for thread in self._threads:
                thread.start()
            self._started = True

    def submit(self, delivered: DeliveredEvent) -> None:
        self.start()
        try:
            event = parse_change_event(delivered.payload)
            item = _WorkItem(delivered=delivered, event=event)
            worker = self.worker_for(event.record_id)
        except MalformedEventError as exc:
            item = _WorkItem(delivered=delivered, event=None, error=str(exc))
            worker = 0
        with self._stats_lock:
            self._stats.received += 1
        self._tracker.begin(delivered.partition, delivered.offset)
        self._queues[worker].put(item)

    def consume(self, events: Iterable[DeliveredEvent]) -> ConsumerStats:
        """Process a finite stream and wait until every event is settled."""
        for delivered in events:
            self.submit(delivered)
        self.drain()
        return self.stats()

    def drain(self) -> None:
        for work_queue in self._queues:
            work_queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self._started:
                return
            for work_queue in self._queues:
                work_queue.put(_STOP)
            for thread in self._threads:
                thread.join(timeout=timeout)
            self._threads = []
            self._started = False

    def close(self) -> None:
        self.drain()
        self.stop()

    def stats(self) -> ConsumerStats:
        with self._stats_lock:
            return ConsumerStats(
                received=self._stats.received,
                acked=self._stats.acked,
                skipped=self._stats.skipped,
                malformed=self._stats.malformed,
                committed=dict(self._stats.committed),
            )

    def __enter__(self) -> "PartitionedConsumer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Internal helpers -------------------------------------------------

    def _run(self, worker: int) -> None:
        work_queue = self._queues[worker]
        while True:
            item = work_queue.get()
            try:
                if item is _STOP:
                    return
                self._process(item)
            finally:
                work_queue.task_done()

    def _process(self, item: _WorkItem) -> None:
        delivered = item.delivered
        if item.event is None:
            logger.warning(
                "Dropping undecodable event at partition=%s offset=%s: %s",
                delivered.partition,
                delivered.offset,
                item.error,
            )
            with self._stats_lock:
                self._stats.malformed += 1
                self._stats.skipped += 1
            self._settle(delivered)
            return

        outcome = self.synchronizer.handle(item.event)
        with self._stats_lock:
            if outcome.state is SyncState.ACKED:
                self._stats.acked += 1
            else:
                self._stats.skipped += 1
        if outcome.committable:
            self._settle(delivered)

    def _settle(self, delivered: DeliveredEvent) -> None:
        # Serialized so commits reach the callback in increasing order.
        with self._commit_lock:
            offset = self._tracker.complete(delivered.partition, delivered.offset)
            if offset is None:
                return
            with self._stats_lock:
                self._stats.committed[delivered.partition] = offset
            if self._commit is None:
                return
            try:
                self._commit(delivered.partition, offset)
            except Exception:
                # Left uncommitted upstream, so the events are redelivered.
                logger.exception("Offset commit failed for partition=%s offset=%s", delivered.partition, offset)


__all__ = [
    "CommitCallback",
    "ConsumerStats",
    "DeliveredEvent",
    "OffsetTracker",
    "PartitionedConsumer",
]
