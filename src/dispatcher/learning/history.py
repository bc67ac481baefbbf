"""
History Store - Append-Only Outcome Log with Per-Executor Counters

Every dispatch attempt that reached an outcome is appended here; the k-NN
recommender learns from the log and the stats API reports from it.

Concurrency:
- One writer lock serializes appends. The record id, the durable insert, the
  in-memory append and the counter update happen in the same critical
  section, so counters always equal a fold over the log.
- Readers take the current snapshot (an immutable log tuple plus counters)
  without the lock; each append swaps in a new snapshot (copy-on-write).

Durability is best effort: if the database cannot be written the store keeps
going in memory, flags itself degraded, and ``save()`` flushes the backlog
once the database is reachable again.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from dispatcher.errors import StoreUnavailableError
from dispatcher.scoring.features import TaskFeatures
from dispatcher.storage.database import Database

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


@dataclass(frozen=True)
class HistoryRecord:
    """One completed dispatch attempt. Never mutated after creation."""

    record_id: int
    features: TaskFeatures
    executor_id: str
    quality_score: float
    success: bool
    duration_ms: int
    timestamp: float
    task_preview: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.quality_score <= 10.0:
            raise ValueError(f"quality_score must be in [0.0, 10.0], got {self.quality_score}")
        if self.duration_ms < 0:
            raise ValueError(f"duration_ms must be >= 0, got {self.duration_ms}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.record_id,
            "executor_id": self.executor_id,
            "quality_score": self.quality_score,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp,
            "difficulty": self.features.difficulty,
            "tags": sorted(self.features.tags),
            "task_preview": self.task_preview,
        }


@dataclass
class PerformanceCounter:
    """Running totals for one executor, derived from the log."""

    attempts: int = 0
    successes: int = 0
    total_quality: float = 0.0
    total_duration_ms: int = 0

    def add(self, record: HistoryRecord) -> None:
        self.attempts += 1
        if record.success:
            self.successes += 1
        self.total_quality += record.quality_score
        self.total_duration_ms += record.duration_ms

    @property
    def failures(self) -> int:
        return self.attempts - self.successes

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0

    @property
    def avg_quality(self) -> float:
        return self.total_quality / self.attempts if self.attempts else 0.0

    @property
    def avg_duration_ms(self) -> float:
        return self.total_duration_ms / self.attempts if self.attempts else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "success_rate": round(self.success_rate, 3),
            "avg_quality": round(self.avg_quality, 3),
            "avg_duration_ms": round(self.avg_duration_ms, 1),
        }


def fold_counters(records: Iterable[HistoryRecord]) -> dict[str, PerformanceCounter]:
    """Rebuild per-executor counters from a sequence of records."""
    counters: dict[str, PerformanceCounter] = {}
    for record in records:
        counters.setdefault(record.executor_id, PerformanceCounter()).add(record)
    return counters


@dataclass(frozen=True)
class _Snapshot:
    records: tuple[HistoryRecord, ...] = ()
    counters: dict[str, PerformanceCounter] = field(default_factory=dict)


def _copy_counters(counters: dict[str, PerformanceCounter]) -> dict[str, PerformanceCounter]:
    return {eid: replace(c) for eid, c in counters.items()}


class HistoryStore:
    """
    Durable, append-only log of dispatch outcomes.

    Storage layout: one row per record in the ``history`` table, read in full
    by ``load()`` and appended row by row afterwards.
    """

    def __init__(self, db: Database | None = None, autoload: bool = True) -> None:
        self.db = db
        self._lock = threading.Lock()
        self._snapshot = _Snapshot()
        self._unsaved: list[HistoryRecord] = []
        self._next_id = 1
        self._loaded = db is None
        self.degraded = False
        self.degraded_reason: str | None = None
        if db is not None and autoload:
            self.load()

    @classmethod
    def in_memory(cls) -> HistoryStore:
        """Store without a durable backend (tests, previews)."""
        return cls(db=None)

    @property
    def persistent(self) -> bool:
        return self.db is not None

    # ── persistence boundary ─────────────────────────────────────────────

    def load(self) -> int:
        """
        Read the full log from the database.

        A missing database initializes an empty log. An unreadable one leaves
        the in-memory log untouched and marks the store degraded. Records
        appended in memory before the first successful load are renumbered
        after the stored ones and written out.

        Returns:
            Number of records loaded from the database
        """
        if self.db is None:
            return 0

        with self._lock:
            try:
                loaded = self._load_locked()
            except StoreUnavailableError:
                return 0
            if self._unsaved:
                try:
                    self._flush_locked()
                except StoreUnavailableError as e:
                    logger.debug("Pending records still unsaved: %s", e)

        logger.debug("Loaded %d history records from %s", loaded, self.db.db_path)
        return loaded

    def save(self) -> int:
        """
        Flush records that only exist in memory.

        If the log was never loaded, it is loaded first so pending records
        get ids after the stored ones.

        Returns:
            Number of records written

        Raises:
            StoreUnavailableError: The database is still unreachable.
        """
        if self.db is None:
            return 0

        with self._lock:
            if not self._loaded:
                self._load_locked()
            if not self._unsaved:
                return 0
            return self._flush_locked()

    def _load_locked(self) -> int:
        """Merge the stored log with pending records. Caller holds the lock."""
        assert self.db is not None
        try:
            self.db.ensure_tables()
            rows = self.db.execute("SELECT * FROM history ORDER BY id ASC")
        except (sqlite3.Error, OSError) as e:
            self._mark_degraded(f"load failed: {e}")
            raise StoreUnavailableError(str(e)) from e

        stored = tuple(_row_to_record(row) for row in rows)
        first_free = stored[-1].record_id + 1 if stored else 1
        pending = [
            replace(record, record_id=first_free + offset)
            for offset, record in enumerate(self._unsaved)
        ]
        records = (*stored, *pending)

        self._snapshot = _Snapshot(records=records, counters=fold_counters(records))
        self._unsaved = pending
        self._next_id = records[-1].record_id + 1 if records else 1
        self._loaded = True
        if not pending:
            self._clear_degraded()
        return len(stored)

    def _flush_locked(self) -> int:
        """Write the pending backlog in one transaction. Caller holds the lock."""
        assert self.db is not None
        pending = list(self._unsaved)
        try:
            self.db.ensure_tables()
            self.db.execute_many(_INSERT_SQL, (_record_to_row(r) for r in pending))
        except (sqlite3.Error, OSError) as e:
            self._mark_degraded(f"save failed: {e}")
            raise StoreUnavailableError(str(e)) from e
        self._unsaved.clear()
        self._clear_degraded()
        logger.info("Flushed %d pending history records", len(pending))
        return len(pending)

    def _persist(self, record: HistoryRecord) -> bool:
        if self.db is None:
            return True
        try:
            self.db.execute_insert(_INSERT_SQL, _record_to_row(record))
        except (sqlite3.Error, OSError) as e:
            self._mark_degraded(f"append failed: {e}")
            return False
        return True

    def _mark_degraded(self, reason: str) -> None:
        if not self.degraded:
            logger.warning("History store unavailable, continuing in memory: %s", reason)
        self.degraded = True
        self.degraded_reason = reason

    def _clear_degraded(self) -> None:
        if self.degraded:
            logger.info("History store available again")
        self.degraded = False
        self.degraded_reason = None

    def _recover_locked(self) -> None:
        """Retry the load or the backlog flush before a write. Caller holds the lock."""
        try:
            if not self._loaded:
                self._load_locked()
            if self._unsaved:
                self._flush_locked()
        except StoreUnavailableError as e:
            logger.debug("History store still unavailable: %s", e)

    # ── writes ───────────────────────────────────────────────────────────

    def append(
        self,
        features: TaskFeatures,
        executor_id: str,
        quality_score: float,
        success: bool,
        duration_ms: int,
        timestamp: float | None = None,
        task_preview: str = "",
    ) -> HistoryRecord:
        """Append one record and update its executor's counter atomically.

        While the stored log has not been loaded, records stay in memory; their
        ids are provisional and are reassigned after the stored ones once the
        database becomes readable.
        """
        with self._lock:
            if self.db is not None and (not self._loaded or self._unsaved):
                self._recover_locked()

            record = HistoryRecord(
                record_id=self._next_id,
                features=features,
                executor_id=executor_id,
                quality_score=quality_score,
                success=success,
                duration_ms=duration_ms,
                timestamp=time.time() if timestamp is None else timestamp,
                task_preview=task_preview[:PREVIEW_LENGTH],
            )
            # Queue behind pending records so the durable log stays in id order
            if not self._loaded or self._unsaved or not self._persist(record):
                self._unsaved.append(record)
            self._next_id += 1

            counters = dict(self._snapshot.counters)
            counter = replace(counters.get(executor_id, PerformanceCounter()))
            counter.add(record)
            counters[executor_id] = counter
            self._snapshot = _Snapshot(
                records=(*self._snapshot.records, record),
                counters=counters,
            )

        return record

    # ── reads ────────────────────────────────────────────────────────────

    def all_records(self) -> tuple[HistoryRecord, ...]:
        return self._snapshot.records

    def records_since(self, record_id: int) -> tuple[HistoryRecord, ...]:
        """Records appended after ``record_id`` (exclusive)."""
        return tuple(r for r in self._snapshot.records if r.record_id > record_id)

    def recent(self, limit: int) -> tuple[HistoryRecord, ...]:
        """Newest ``limit`` records, newest first."""
        if limit <= 0:
            return ()
        return tuple(reversed(self._snapshot.records[-limit:]))

    def performance(self) -> dict[str, PerformanceCounter]:
        """Copy of the per-executor counters."""
        return _copy_counters(self._snapshot.counters)

    def rebuild_counters(self) -> dict[str, PerformanceCounter]:
        """Recompute counters from the log and replace the running ones."""
        with self._lock:
            records = self._snapshot.records
            self._snapshot = _Snapshot(records=records, counters=fold_counters(records))
            return _copy_counters(self._snapshot.counters)

    def pending_writes(self) -> int:
        with self._lock:
            return len(self._unsaved)

    def stats_snapshot(self) -> dict[str, Any]:
        """Aggregate statistics over the current log."""
        snapshot = self._snapshot
        records = snapshot.records
        pending = self.pending_writes()

        if not records:
            return {
                "total_records": 0,
                "success_rate": 0.0,
                "avg_quality": 0.0,
                "unique_executors": 0,
                "oldest_record": None,
                "newest_record": None,
                "per_executor": {},
                "pending_writes": pending,
                "degraded": self.degraded,
            }

        successes = sum(1 for r in records if r.success)
        return {
            "total_records": len(records),
            "success_rate": round(successes / len(records), 3),
            "avg_quality": round(sum(r.quality_score for r in records) / len(records), 3),
            "unique_executors": len(snapshot.counters),
            "oldest_record": min(r.timestamp for r in records),
            "newest_record": max(r.timestamp for r in records),
            "per_executor": {eid: c.to_dict() for eid, c in snapshot.counters.items()},
            "pending_writes": pending,
            "degraded": self.degraded,
        }

    def __len__(self) -> int:
        return len(self._snapshot.records)


_INSERT_SQL = """
INSERT INTO history (
    id, executor_id, vector, difficulty, tags,
    quality_score, success, duration_ms, timestamp, task_preview
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def _record_to_row(record: HistoryRecord) -> tuple[Any, ...]:
    return (
        record.record_id,
        record.executor_id,
        json.dumps(list(record.features.vector)),
        record.features.difficulty,
        json.dumps(sorted(record.features.tags)),
        record.quality_score,
        1 if record.success else 0,
        record.duration_ms,
        record.timestamp,
        record.task_preview,
    )


def _row_to_record(row: Any) -> HistoryRecord:
    """Convert database row to HistoryRecord."""
    return HistoryRecord(
        record_id=row["id"],
        features=TaskFeatures(
            vector=tuple(float(v) for v in json.loads(row["vector"])),
            difficulty=row["difficulty"],
            tags=frozenset(json.loads(row["tags"]) if row["tags"] else []),
        ),
        executor_id=row["executor_id"],
        quality_score=row["quality_score"],
        success=bool(row["success"]),
        duration_ms=row["duration_ms"],
        timestamp=row["timestamp"],
        task_preview=row["task_preview"] or "",
    )
