"""HealingDB - SQLite-backed store for work items, error logs, failure patterns and LLM call costs.

One aiosqlite connection guarded by an asyncio.Lock. Every sqlite failure
(and any call made before ``init``) surfaces as StoreUnavailable so callers
have a single exception to handle.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite

from skillheal.config import HEALING_DB_PATH
from skillheal.healing.models import Diagnosis, ErrorContext, FailurePattern, StoreUnavailable
from skillheal.routing.executor import CallAttempt

logger = logging.getLogger(__name__)

WORK_ITEM_STATUSES = ("idle", "running", "scheduled", "error", "completed")


def _remove_db_files(db_path: str) -> None:
    """Remove database file and WAL/SHM sidecars so a clean DB can be created."""
    for path in (db_path, db_path + "-wal", db_path + "-shm", db_path + "-journal"):
        try:
            if os.path.exists(path):
                os.unlink(path)
                logger.info("Removed %s", path)
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)


class HealingDB:
    """SQLite-based store used by the healing engine and the router's cost tracking.

    Tables:
    - work_items: schedulable units (enabled flag, status, next run, retry count)
    - error_logs: one entry per failed run, with diagnosis and fix bookkeeping
    - failure_patterns: recurring failures keyed by fingerprint
    - llm_calls: every model call attempt with tokens and cost

    Usage:
        db = HealingDB("data/healing.db")
        await db.init()

        schedule_id = await db.add_work_item("daily-report")
        error_id = await db.log_error(context, fingerprint, "timeout")
        pattern = await db.upsert_failure_pattern(fingerprint, sig, "timeout", initial_count=3)

        stats = await db.get_healing_stats()

    """

    def __init__(self, db_path: str = HEALING_DB_PATH):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._initialized = False

    async def init(self) -> None:
        """Open the connection and create tables.

        A missing or corrupted database file is removed and recreated once.

        """
        if self._initialized:
            return

        dir_path = os.path.dirname(self.db_path)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)

        for attempt in range(2):
            try:
                self._db = await aiosqlite.connect(self.db_path)
                self._db.row_factory = aiosqlite.Row
                await self._db.execute("PRAGMA journal_mode=WAL")
                await self._db.execute("PRAGMA busy_timeout=5000")
                await self._create_tables()
                await self._migrate_patterns_counted_through()
                self._initialized = True
                logger.info("HealingDB initialized at %s", self.db_path)
                return
            except (sqlite3.Error, OSError) as e:
                if self._db:
                    try:
                        await self._db.close()
                    except (sqlite3.Error, ValueError) as close_error:
                        logger.debug("Ignoring close error: %s", close_error)
                    self._db = None
                if attempt == 0:
                    logger.warning("Database missing or corrupted (%s), creating new one: %s", type(e).__name__, e)
                    _remove_db_files(self.db_path)
                else:
                    raise StoreUnavailable(f"Cannot open {self.db_path}: {e}") from e

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            self._initialized = False

    async def _create_tables(self) -> None:
        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS work_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                item_id TEXT NOT NULL,
                enabled INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL DEFAULT 'idle',
                next_run_at REAL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_work_items_next_run ON work_items(enabled, next_run_at);

            CREATE TABLE IF NOT EXISTS error_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                schedule_id INTEGER NOT NULL,
                item_id TEXT NOT NULL,
                fingerprint TEXT NOT NULL,
                error_type TEXT NOT NULL,
                error_message TEXT NOT NULL,
                stack_trace TEXT,
                attempt_number INTEGER NOT NULL DEFAULT 1,
                diagnosis TEXT,
                fix_attempted TEXT,
                fix_successful INTEGER,
                escalated INTEGER NOT NULL DEFAULT 0,
                escalation_reason TEXT,
                created_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_error_logs_fingerprint ON error_logs(fingerprint, created_at);
            CREATE INDEX IF NOT EXISTS idx_error_logs_created ON error_logs(created_at);

            CREATE TABLE IF NOT EXISTS failure_patterns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                fingerprint TEXT UNIQUE NOT NULL,
                signature TEXT NOT NULL,
                error_type TEXT NOT NULL,
                occurrence_count INTEGER NOT NULL DEFAULT 1,
                last_occurrence REAL NOT NULL,
                known_fix TEXT,
                prevention_strategy TEXT,
                counted_through_id INTEGER,
                created_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS llm_calls (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id INTEGER,
                model_id TEXT NOT NULL,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                cost REAL NOT NULL DEFAULT 0,
                latency_ms INTEGER NOT NULL DEFAULT 0,
                success INTEGER NOT NULL,
                outcome TEXT NOT NULL,
                error TEXT,
                created_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_llm_calls_model ON llm_calls(model_id);
        """)
        await self._db.commit()

    async def _migrate_patterns_counted_through(self) -> None:
        """Add failure_patterns.counted_through_id if missing (databases created before it existed)."""
        try:
            await self._db.execute("ALTER TABLE failure_patterns ADD COLUMN counted_through_id INTEGER")
            await self._db.commit()
            logger.info("Added failure_patterns.counted_through_id column")
        except sqlite3.OperationalError as e:
            if "duplicate column" not in str(e).lower():
                raise

    @asynccontextmanager
    async def _locked(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the lock and translate sqlite failures into StoreUnavailable."""
        async with self._lock:
            if self._db is None:
                raise StoreUnavailable("HealingDB is not initialized")
            try:
                yield self._db
            except sqlite3.Error as e:
                logger.error("HealingDB operation failed: %s", e)
                raise StoreUnavailable(str(e)) from e

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    async def add_work_item(self, item_id: str, enabled: bool = True) -> int:
        """Register a work item and return its schedule id."""
        now = time.time()
        async with self._locked() as db:
            cursor = await db.execute(
                """INSERT INTO work_items (item_id, enabled, status, created_at, updated_at)
                   VALUES (?, ?, 'idle', ?, ?)""",
                (item_id, int(enabled), now, now),
            )
            await db.commit()
            return cursor.lastrowid

    async def get_work_item(self, schedule_id: int) -> dict | None:
        async with self._locked() as db:
            cursor = await db.execute("SELECT * FROM work_items WHERE id = ?", (schedule_id,))
            row = await cursor.fetchone()
            if row is None:
                return None
            item = dict(row)
            item["enabled"] = bool(item["enabled"])
            return item

    async def list_work_items(self) -> list[dict]:
        async with self._locked() as db:
            cursor = await db.execute("SELECT * FROM work_items ORDER BY id")
            rows = await cursor.fetchall()
            return [dict(row) | {"enabled": bool(row["enabled"])} for row in rows]

    async def set_work_item_enabled(self, schedule_id: int, enabled: bool, status: str | None = None) -> bool:
        """Flip the enabled flag (and optionally the status).

        Returns:
            True if the work item exists and was updated

        """
        if status is not None and status not in WORK_ITEM_STATUSES:
            raise ValueError(f"Unknown work item status: {status}")
        async with self._locked() as db:
            cursor = await db.execute(
                """UPDATE work_items
                   SET enabled = ?, status = COALESCE(?, status), updated_at = ?
                   WHERE id = ?""",
                (int(enabled), status, time.time(), schedule_id),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def schedule_next_run(self, schedule_id: int, next_run_at: float) -> bool:
        """Set the next eligible run, mark the item scheduled and bump its retry count."""
        async with self._locked() as db:
            cursor = await db.execute(
                """UPDATE work_items
                   SET next_run_at = ?, status = 'scheduled', retry_count = retry_count + 1, updated_at = ?
                   WHERE id = ?""",
                (next_run_at, time.time(), schedule_id),
            )
            await db.commit()
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Error log
    # ------------------------------------------------------------------

    async def log_error(self, context: ErrorContext, fingerprint: str, error_type: str) -> int:
        """Record a failed run. Returns the error entry id."""
        async with self._locked() as db:
            cursor = await db.execute(
                """INSERT INTO error_logs
                   (schedule_id, item_id, fingerprint, error_type, error_message, stack_trace,
                    attempt_number, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    context.schedule_id,
                    context.item_id,
                    fingerprint,
                    error_type,
                    context.error_message,
                    context.error_stack,
                    context.attempt_number,
                    context.timestamp,
                ),
            )
            await db.commit()
            return cursor.lastrowid

    async def get_error(self, error_id: int) -> dict | None:
        async with self._locked() as db:
            cursor = await db.execute("SELECT * FROM error_logs WHERE id = ?", (error_id,))
            row = await cursor.fetchone()
            return _error_row(row) if row else None

    async def count_recent_errors(self, fingerprint: str, since: float) -> int:
        """Count recorded errors with this fingerprint created at or after since."""
        async with self._locked() as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM error_logs WHERE fingerprint = ? AND created_at >= ?",
                (fingerprint, since),
            )
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def record_fix_attempt(self, error_id: int, fix_attempted: str, diagnosis: Diagnosis | None = None) -> None:
        """Store what was tried; the outcome stays unknown until confirmed."""
        diagnosis_json = json.dumps(diagnosis.to_dict()) if diagnosis else None
        async with self._locked() as db:
            await db.execute(
                """UPDATE error_logs
                   SET fix_attempted = ?, fix_successful = NULL, diagnosis = COALESCE(?, diagnosis)
                   WHERE id = ?""",
                (fix_attempted, diagnosis_json, error_id),
            )
            await db.commit()

    async def set_fix_successful(self, error_id: int, succeeded: bool) -> bool:
        async with self._locked() as db:
            cursor = await db.execute(
                "UPDATE error_logs SET fix_successful = ? WHERE id = ?",
                (int(succeeded), error_id),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def mark_escalated(self, error_id: int, reason: str, diagnosis: Diagnosis | None = None) -> None:
        diagnosis_json = json.dumps(diagnosis.to_dict()) if diagnosis else None
        async with self._locked() as db:
            await db.execute(
                """UPDATE error_logs
                   SET escalated = 1, escalation_reason = ?, diagnosis = COALESCE(?, diagnosis)
                   WHERE id = ?""",
                (reason, diagnosis_json, error_id),
            )
            await db.commit()

    async def get_recent_errors(self, limit: int = 20) -> list[dict]:
        async with self._locked() as db:
            cursor = await db.execute(
                "SELECT * FROM error_logs ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()
            return [_error_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Failure patterns
    # ------------------------------------------------------------------

    async def upsert_failure_pattern(
        self,
        fingerprint: str,
        signature: str,
        error_type: str,
        initial_count: int = 1,
        now: float | None = None,
    ) -> FailurePattern:
        """Create the pattern with initial_count, or add one occurrence to it.

        The insert-or-increment is a single statement, so concurrent callers
        for the same fingerprint never lose an increment or create a second row.

        Returns:
            The pattern as stored after the write

        """
        now = now if now is not None else time.time()
        async with self._locked() as db:
            await db.execute(
                """INSERT INTO failure_patterns
                   (fingerprint, signature, error_type, occurrence_count, last_occurrence, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(fingerprint) DO UPDATE SET
                       occurrence_count = occurrence_count + 1,
                       last_occurrence = excluded.last_occurrence""",
                (fingerprint, signature, error_type, max(1, initial_count), now, now),
            )
            await db.commit()
            cursor = await db.execute("SELECT * FROM failure_patterns WHERE fingerprint = ?", (fingerprint,))
            row = await cursor.fetchone()
            return FailurePattern.from_row(row)

    async def track_occurrence(
        self,
        fingerprint: str,
        signature: str,
        error_type: str,
        since: float,
        threshold: int,
        error_id: int | None = None,
        count_current: bool = False,
        now: float | None = None,
    ) -> FailurePattern | None:
        """Count one occurrence of a failure against its pattern.

        Lookup, window count and insert-or-increment happen under one lock
        hold. A new pattern starts at the number of logged errors in the
        window and remembers the highest error id it counted; occurrences
        whose error entry is at or below that id are not counted again.

        Args:
            fingerprint: Failure fingerprint
            signature: Message signature stored on a new pattern
            error_type: Category stored on a new pattern
            since: Start of the recurrence window, epoch seconds
            threshold: Occurrences within the window that create a pattern
            error_id: Error entry of this occurrence, if it was logged
            count_current: Add one for an occurrence that is not in the error log
            now: Occurrence time (default: time.time())

        Returns:
            The pattern after the update, or None while below threshold

        """
        now = now if now is not None else time.time()
        async with self._locked() as db:
            cursor = await db.execute("SELECT * FROM failure_patterns WHERE fingerprint = ?", (fingerprint,))
            row = await cursor.fetchone()

            if row is not None:
                through = row["counted_through_id"]
                if error_id is not None and through is not None and error_id <= through:
                    return FailurePattern.from_row(row)
                await db.execute(
                    """UPDATE failure_patterns
                       SET occurrence_count = occurrence_count + 1, last_occurrence = ?
                       WHERE fingerprint = ?""",
                    (now, fingerprint),
                )
            else:
                cursor = await db.execute(
                    "SELECT COUNT(*), MAX(id) FROM error_logs WHERE fingerprint = ? AND created_at >= ?",
                    (fingerprint, since),
                )
                count, through = await cursor.fetchone()
                if count_current:
                    count += 1
                if count < threshold:
                    return None
                await db.execute(
                    """INSERT INTO failure_patterns
                       (fingerprint, signature, error_type, occurrence_count, last_occurrence,
                        counted_through_id, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (fingerprint, signature, error_type, count, now, through, now),
                )
                logger.info("Error seen %d times since %.0f, recording failure pattern %s", count, since, fingerprint[:12])

            await db.commit()
            cursor = await db.execute("SELECT * FROM failure_patterns WHERE fingerprint = ?", (fingerprint,))
            return FailurePattern.from_row(await cursor.fetchone())

    async def get_failure_pattern(self, fingerprint: str) -> FailurePattern | None:
        async with self._locked() as db:
            cursor = await db.execute("SELECT * FROM failure_patterns WHERE fingerprint = ?", (fingerprint,))
            row = await cursor.fetchone()
            return FailurePattern.from_row(row) if row else None

    async def set_known_fix(self, fingerprint: str, known_fix: str, prevention_strategy: str | None = None) -> bool:
        """Attach a confirmed fix to an existing pattern. Returns False if there is none."""
        async with self._locked() as db:
            cursor = await db.execute(
                """UPDATE failure_patterns
                   SET known_fix = ?, prevention_strategy = COALESCE(?, prevention_strategy)
                   WHERE fingerprint = ?""",
                (known_fix, prevention_strategy, fingerprint),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def list_failure_patterns(self, limit: int = 10) -> list[FailurePattern]:
        async with self._locked() as db:
            cursor = await db.execute(
                "SELECT * FROM failure_patterns ORDER BY occurrence_count DESC, last_occurrence DESC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()
            return [FailurePattern.from_row(row) for row in rows]

    async def get_healing_stats(self, top: int = 10) -> dict:
        """Summary of error outcomes and the most frequent patterns.

        Returns:
            Dict with total_errors, resolved, escalated, pending,
            resolution_rate and top_patterns

        """
        async with self._locked() as db:
            cursor = await db.execute(
                """SELECT COUNT(*) AS total,
                          COALESCE(SUM(CASE WHEN fix_successful = 1 THEN 1 ELSE 0 END), 0) AS resolved,
                          COALESCE(SUM(escalated), 0) AS escalated
                   FROM error_logs"""
            )
            totals = await cursor.fetchone()
            cursor = await db.execute(
                "SELECT * FROM failure_patterns ORDER BY occurrence_count DESC LIMIT ?",
                (top,),
            )
            patterns = [FailurePattern.from_row(row) for row in await cursor.fetchall()]

        total = totals["total"]
        resolved = totals["resolved"]
        escalated = totals["escalated"]
        return {
            "total_errors": total,
            "resolved": resolved,
            "escalated": escalated,
            "pending": max(0, total - resolved - escalated),
            "resolution_rate": resolved / total if total else 0.0,
            "top_patterns": [
                {
                    "fingerprint": p.fingerprint,
                    "signature": p.signature,
                    "error_type": p.error_type,
                    "occurrence_count": p.occurrence_count,
                    "known_fix": p.known_fix,
                }
                for p in patterns
            ],
        }

    # ------------------------------------------------------------------
    # LLM call cost tracking
    # ------------------------------------------------------------------

    async def record_llm_call(self, attempt: CallAttempt, run_id: int | None = None) -> None:
        async with self._locked() as db:
            await db.execute(
                """INSERT INTO llm_calls
                   (run_id, model_id, input_tokens, output_tokens, cost, latency_ms, success, outcome, error, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    run_id,
                    attempt.model_id,
                    attempt.input_tokens,
                    attempt.output_tokens,
                    attempt.cost,
                    attempt.latency_ms,
                    int(attempt.succeeded),
                    attempt.outcome,
                    attempt.error,
                    attempt.started_at,
                ),
            )
            await db.commit()

    async def get_usage_stats(self) -> dict:
        """Per-model call counts, tokens, cost, success rate and average latency."""
        async with self._locked() as db:
            cursor = await db.execute(
                """SELECT model_id,
                          COUNT(*) AS calls,
                          SUM(success) AS successes,
                          SUM(input_tokens) AS input_tokens,
                          SUM(output_tokens) AS output_tokens,
                          SUM(cost) AS cost,
                          AVG(latency_ms) AS avg_latency_ms
                   FROM llm_calls
                   GROUP BY model_id
                   ORDER BY cost DESC, calls DESC"""
            )
            rows = await cursor.fetchall()

        models = []
        for row in rows:
            calls = row["calls"]
            models.append({
                "model_id": row["model_id"],
                "calls": calls,
                "success_rate": (row["successes"] or 0) / calls if calls else 0.0,
                "input_tokens": row["input_tokens"] or 0,
                "output_tokens": row["output_tokens"] or 0,
                "cost": row["cost"] or 0.0,
                "avg_latency_ms": int(row["avg_latency_ms"] or 0),
            })
        return {
            "total_calls": sum(m["calls"] for m in models),
            "total_cost": sum(m["cost"] for m in models),
            "models": models,
        }


def _error_row(row: aiosqlite.Row) -> dict:
    entry = dict(row)
    entry["escalated"] = bool(entry["escalated"])
    if entry["fix_successful"] is not None:
        entry["fix_successful"] = bool(entry["fix_successful"])
    if entry["diagnosis"]:
        try:
            entry["diagnosis"] = json.loads(entry["diagnosis"])
        except ValueError:
            logger.warning("Unreadable diagnosis on error %s", entry["id"])
    return entry
