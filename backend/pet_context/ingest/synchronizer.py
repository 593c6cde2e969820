"""Keeps the vector index consistent with journal entry change events."""

from __future__ import annotations

import threading
import time
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from pet_context.core.errors import MalformedEventError, PetContextError, TransientError
from pet_context.core.logging import get_logger, log_context
from pet_context.core.metrics import SYNC_EVENTS, SYNC_RETRIES
from pet_context.ingest.embeddings import EmbeddingProvider
from pet_context.models.entities import VectorEntry
from pet_context.models.events import ChangeEvent, EventType
from pet_context.retrieval.vector_index import VectorIndex
from pet_context.utils.time import now_ms

logger = get_logger(__name__)


class SyncState(str, Enum):
    RECEIVED = "RECEIVED"
    EMBEDDING = "EMBEDDING"
    INDEX_MUTATING = "INDEX_MUTATING"
    ACKED = "ACKED"
    SKIPPED = "SKIPPED"


@dataclass(slots=True)
class SyncOutcome:
    record_id: str | None
    event_type: str | None
    state: SyncState
    attempts: int = 0
    error: str | None = None

    @property
    def committable(self) -> bool:
        return self.state in (SyncState.ACKED, SyncState.SKIPPED)


class IndexSynchronizer:
    """Apply change events to the vector index with bounded fixed-delay retries.

    Every event ends in ACKED (index mutation acknowledged) or SKIPPED (dropped
    as malformed, or transient failures outlasted the retry budget). Both are
    terminal and allow the consumer to commit the event's offset.
    """

    def __init__(
        self,
        index: VectorIndex,
        embedder: EmbeddingProvider,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        lock_stripes: int = 64,
    ) -> None:
        self.index = index
        self.embedder = embedder
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        # Events for one record are applied one at a time, whichever thread delivers them.
        self._record_locks = [threading.Lock() for _ in range(max(1, lock_stripes))]

    def handle(self, event: ChangeEvent) -> SyncOutcome:
        kind = event.kind
        self._transition(event, SyncState.RECEIVED)
        if kind is None:
            logger.warning(
                "Dropping change event with unknown type '%s' for record %s",
                event.event_type,
                event.record_id,
            )
            return self._finish(event, SyncState.SKIPPED, attempts=0, error="unknown event type")
        try:
            _validate(event, kind)
        except MalformedEventError as exc:
            logger.warning("Dropping malformed change event for record %s: %s", event.record_id, exc)
            return self._finish(event, SyncState.SKIPPED, attempts=0, error=str(exc))

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.backoff_seconds),
            retry=retry_if_exception_type(TransientError),
            before_sleep=self._before_retry,
            sleep=self._sleep,
            reraise=True,
        )
        attempts = 0
        try:
            with self._lock_for(event.record_id):
                for attempt in retrying:
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        self._apply(event, kind)
        except TransientError as exc:
            logger.error(
                "Skipping %s for record %s after %s attempts: %s",
                kind.value,
                event.record_id,
                attempts,
                exc,
            )
            return self._finish(event, SyncState.SKIPPED, attempts=attempts, error=str(exc))
        except PetContextError as exc:
            logger.error("Skipping %s for record %s: %s", kind.value, event.record_id, exc)
            return self._finish(event, SyncState.SKIPPED, attempts=attempts, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected failure applying %s for record %s", kind.value, event.record_id)
            return self._finish(event, SyncState.SKIPPED, attempts=attempts, error=str(exc))
        return self._finish(event, SyncState.ACKED, attempts=attempts)

    # Internal helpers -------------------------------------------------

    def _apply(self, event: ChangeEvent, kind: EventType) -> None:
        if kind is EventType.DELETED:
            self._transition(event, SyncState.INDEX_MUTATING)
            removed = self.index.delete(event.record_id)
            if not removed:
                logger.debug("No vector entry to delete for record %s", event.record_id)
            return

        self._transition(event, SyncState.EMBEDDING)
        embedding = self.embedder.embed(event.text or "")
        self._transition(event, SyncState.INDEX_MUTATING)
        # A redelivered CREATED and every UPDATED replace the previous entry.
        removed = self.index.replace(
            VectorEntry(
                record_id=event.record_id,
                owner_id=event.owner_id,
                subject_id=event.subject_id,
                embedding=embedding,
                content=event.text or "",
                inserted_at=event.timestamp or now_ms(),
            )
        )
        if kind is EventType.UPDATED and not removed:
            logger.info("UPDATED record %s had no previous entry; inserted", event.record_id)

    def _lock_for(self, record_id: str) -> threading.Lock:
        return self._record_locks[zlib.crc32(record_id.encode("utf-8")) % len(self._record_locks)]

    def _transition(self, event: ChangeEvent, state: SyncState) -> None:
        logger.debug(
            "Record %s -> %s",
            event.record_id,
            state.value,
            extra=log_context(record_id=event.record_id, state=state.value),
        )

    def _finish(
        self,
        event: ChangeEvent,
        state: SyncState,
        attempts: int,
        error: str | None = None,
    ) -> SyncOutcome:
        kind = event.kind
        event_label = kind.value if kind else "UNKNOWN"
        SYNC_EVENTS.labels(event_type=event_label, state=state.value).inc()
        logger.info(
            "%s %s for record %s",
            state.value,
            event_label,
            event.record_id,
            extra=log_context(
                record_id=event.record_id,
                event_type=event_label,
                state=state.value,
                attempts=attempts,
            ),
        )
        return SyncOutcome(
            record_id=event.record_id,
            event_type=event.event_type,
            state=state,
            attempts=attempts,
            error=error,
        )

    def _before_retry(self, retry_state: RetryCallState) -> None:
        SYNC_RETRIES.inc()
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Attempt %s failed, retrying in %.1fs: %s",
            retry_state.attempt_number,
            self.backoff_seconds,
            exception,
        )


def _validate(event: ChangeEvent, kind: EventType) -> None:
    if kind in (EventType.CREATED, EventType.UPDATED) and not (event.text and event.text.strip()):
        raise MalformedEventError(f"{kind.value} event is missing its text body")


__all__ = ["IndexSynchronizer", "SyncOutcome", "SyncState"]
