"""JSON-lines event log replay with committed offsets persisted in SQLite."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pet_context.core.logging import get_logger
from pet_context.db.sqlite import SQLiteDatabase
from pet_context.ingest.consumer import DeliveredEvent, PartitionedConsumer
from pet_context.ingest.synchronizer import IndexSynchronizer
from pet_context.utils.time import now_ms

logger = get_logger(__name__)

LOG_PARTITION = 0


class OffsetStore:
    """Committed consumer offsets per (group, partition)."""

    def __init__(self, db: SQLiteDatabase, group_id: str) -> None:
        self.db = db
        self.group_id = group_id

    def committed(self, partition: int = LOG_PARTITION) -> int | None:
        row = self.db.execute(
            "SELECT committed_offset FROM consumer_offsets WHERE group_id = ? AND partition = ?",
            [self.group_id, partition],
        ).fetchone()
        return int(row["committed_offset"]) if row else None

    def commit(self, partition: int, offset: int) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO consumer_offsets (group_id, partition, committed_offset, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (group_id, partition) DO UPDATE SET
                  committed_offset = excluded.committed_offset,
                  updated_at = excluded.updated_at
                WHERE excluded.committed_offset > consumer_offsets.committed_offset
                """,
                [self.group_id, partition, offset, now_ms()],
            )

    def reset(self, partition: int = LOG_PARTITION) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                "DELETE FROM consumer_offsets WHERE group_id = ? AND partition = ?",
                [self.group_id, partition],
            )


@dataclass(slots=True)
class ReplayStats:
    replayed: int = 0
    already_committed: int = 0
    acked: int = 0
    skipped: int = 0
    malformed: int = 0
    committed_offset: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "replayed": self.replayed,
            "already_committed": self.already_committed,
            "acked": self.acked,
            "skipped": self.skipped,
            "malformed": self.malformed,
            "committed_offset": self.committed_offset,
        }


def replay_event_log(
    path: Path,
    synchronizer: IndexSynchronizer,
    store: OffsetStore,
    workers: int = 3,
) -> ReplayStats:
    """Feed every line past the committed offset through a partitioned consumer.

    The line number is the event offset. Lines at or below the committed
    offset were settled by an earlier run and are not redelivered.
    """
    start = store.committed(LOG_PARTITION)
    stats = ReplayStats()
    consumer = PartitionedConsumer(synchronizer, workers=workers, commit=store.commit)
    with consumer:
        with path.expanduser().open("rb") as fh:
            for offset, line in enumerate(fh):
                if start is not None and offset <= start:
                    stats.already_committed += 1
                    continue
                consumer.submit(DeliveredEvent(partition=LOG_PARTITION, offset=offset, payload=line.strip()))
                stats.replayed += 1
    consumer_stats = consumer.stats()
    stats.acked = consumer_stats.acked
    stats.skipped = consumer_stats.skipped
    stats.malformed = consumer_stats.malformed
    try:
        stats.committed_offset = store.committed(LOG_PARTITION)
    except sqlite3.Error as exc:
        logger.warning("Could not read back committed offset for %s: %s", path, exc)
    logger.info(
        "Replayed %s events from %s (%s already committed)",
        stats.replayed,
        path,
        stats.already_committed,
    )
    return stats


__all__ = ["OffsetStore", "ReplayStats", "replay_event_log"]
