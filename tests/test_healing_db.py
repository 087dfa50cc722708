"""Tests for HealingDB: work items, error log, failure patterns, usage."""

import time

import aiosqlite

import pytest

from skillheal.healing.models import Diagnosis, ErrorContext, FixStrategy, StoreUnavailable
from skillheal.healing_db import HealingDB
from skillheal.routing.executor import CallAttempt, FailureReason


def _context(schedule_id=1, message="boom", ts=None):
    return ErrorContext(
        schedule_id=schedule_id,
        item_id="daily-report",
        error_message=message,
        error_stack="at main()",
        attempt_number=2,
        timestamp=ts if ts is not None else time.time(),
    )


# ============ Work items ============

@pytest.mark.asyncio
async def test_add_and_get_work_item(healing_db):
    schedule_id = await healing_db.add_work_item("daily-report")
    item = await healing_db.get_work_item(schedule_id)
    assert item["item_id"] == "daily-report"
    assert item["enabled"] is True
    assert item["status"] == "idle"
    assert item["retry_count"] == 0
    assert item["next_run_at"] is None


@pytest.mark.asyncio
async def test_get_missing_work_item(healing_db):
    assert await healing_db.get_work_item(999) is None


@pytest.mark.asyncio
async def test_set_enabled(healing_db):
    schedule_id = await healing_db.add_work_item("x")
    assert await healing_db.set_work_item_enabled(schedule_id, False) is True
    assert (await healing_db.get_work_item(schedule_id))["enabled"] is False

    assert await healing_db.set_work_item_enabled(schedule_id, True, status="idle") is True
    item = await healing_db.get_work_item(schedule_id)
    assert item["enabled"] is True
    assert item["status"] == "idle"

    assert await healing_db.set_work_item_enabled(999, True) is False


@pytest.mark.asyncio
async def test_set_enabled_rejects_unknown_status(healing_db):
    schedule_id = await healing_db.add_work_item("x")
    with pytest.raises(ValueError):
        await healing_db.set_work_item_enabled(schedule_id, True, status="sleeping")


@pytest.mark.asyncio
async def test_schedule_next_run(healing_db):
    schedule_id = await healing_db.add_work_item("x")
    assert await healing_db.schedule_next_run(schedule_id, 12345.0) is True
    assert await healing_db.schedule_next_run(schedule_id, 23456.0) is True
    item = await healing_db.get_work_item(schedule_id)
    assert item["next_run_at"] == 23456.0
    assert item["status"] == "scheduled"
    assert item["retry_count"] == 2
    assert await healing_db.schedule_next_run(999, 1.0) is False


# ============ Error log ============

@pytest.mark.asyncio
async def test_log_error_roundtrip(healing_db):
    error_id = await healing_db.log_error(_context(), "fp1", "timeout")
    entry = await healing_db.get_error(error_id)
    assert entry["fingerprint"] == "fp1"
    assert entry["error_type"] == "timeout"
    assert entry["error_message"] == "boom"
    assert entry["stack_trace"] == "at main()"
    assert entry["attempt_number"] == 2
    assert entry["escalated"] is False
    assert entry["fix_successful"] is None


@pytest.mark.asyncio
async def test_count_recent_errors_window(healing_db):
    now = time.time()
    await healing_db.log_error(_context(ts=now - 10 * 86400), "fp", "unknown")
    await healing_db.log_error(_context(ts=now - 86400), "fp", "unknown")
    await healing_db.log_error(_context(ts=now), "fp", "unknown")
    await healing_db.log_error(_context(ts=now), "other", "unknown")
    assert await healing_db.count_recent_errors("fp", now - 7 * 86400) == 2


@pytest.mark.asyncio
async def test_fix_attempt_and_confirmation(healing_db):
    error_id = await healing_db.log_error(_context(), "fp", "unknown")
    diagnosis = Diagnosis(root_cause="stale lock", fix_strategy=FixStrategy.RESTART, confidence=0.8)
    await healing_db.record_fix_attempt(error_id, "restart", diagnosis)

    entry = await healing_db.get_error(error_id)
    assert entry["fix_attempted"] == "restart"
    assert entry["fix_successful"] is None
    assert entry["diagnosis"]["fix_strategy"] == "restart"

    assert await healing_db.set_fix_successful(error_id, True) is True
    assert (await healing_db.get_error(error_id))["fix_successful"] is True
    assert await healing_db.set_fix_successful(999, True) is False


@pytest.mark.asyncio
async def test_mark_escalated(healing_db):
    error_id = await healing_db.log_error(_context(), "fp", "unknown")
    await healing_db.mark_escalated(error_id, "needs a human", Diagnosis(explanation="needs a human"))
    entry = await healing_db.get_error(error_id)
    assert entry["escalated"] is True
    assert entry["escalation_reason"] == "needs a human"
    assert entry["diagnosis"]["explanation"] == "needs a human"


@pytest.mark.asyncio
async def test_recent_errors_newest_first(healing_db):
    now = time.time()
    for i in range(5):
        await healing_db.log_error(_context(message=f"e{i}", ts=now + i), f"fp{i}", "unknown")
    recent = await healing_db.get_recent_errors(limit=3)
    assert [e["error_message"] for e in recent] == ["e4", "e3", "e2"]


# ============ Failure patterns ============

@pytest.mark.asyncio
async def test_upsert_creates_then_increments(healing_db):
    created = await healing_db.upsert_failure_pattern("fp", "sig", "timeout", initial_count=3, now=100.0)
    assert created.occurrence_count == 3
    assert created.created_at == 100.0

    updated = await healing_db.upsert_failure_pattern("fp", "sig", "timeout", initial_count=3, now=200.0)
    assert updated.occurrence_count == 4
    assert updated.last_occurrence == 200.0
    assert updated.created_at == 100.0
    assert updated.id == created.id


@pytest.mark.asyncio
async def test_get_failure_pattern_missing(healing_db):
    assert await healing_db.get_failure_pattern("nope") is None


@pytest.mark.asyncio
async def test_set_known_fix(healing_db):
    assert await healing_db.set_known_fix("fp", "restart") is False
    await healing_db.upsert_failure_pattern("fp", "sig", "timeout", initial_count=3)
    assert await healing_db.set_known_fix("fp", "restart", prevention_strategy="add jitter") is True
    pattern = await healing_db.get_failure_pattern("fp")
    assert pattern.known_fix == "restart"
    assert pattern.prevention_strategy == "add jitter"


@pytest.mark.asyncio
async def test_healing_stats(healing_db):
    e1 = await healing_db.log_error(_context(), "fp", "timeout")
    e2 = await healing_db.log_error(_context(), "fp", "timeout")
    await healing_db.log_error(_context(), "fp", "timeout")
    await healing_db.set_fix_successful(e1, True)
    await healing_db.mark_escalated(e2, "manual")
    await healing_db.upsert_failure_pattern("fp", "boom", "timeout", initial_count=3)

    stats = await healing_db.get_healing_stats()
    assert stats["total_errors"] == 3
    assert stats["resolved"] == 1
    assert stats["escalated"] == 1
    assert stats["pending"] == 1
    assert stats["resolution_rate"] == pytest.approx(1 / 3)
    assert stats["top_patterns"][0]["occurrence_count"] == 3


@pytest.mark.asyncio
async def test_healing_stats_empty(healing_db):
    stats = await healing_db.get_healing_stats()
    assert stats["total_errors"] == 0
    assert stats["resolution_rate"] == 0.0
    assert stats["top_patterns"] == []


# ============ LLM usage ============

@pytest.mark.asyncio
async def test_usage_stats(healing_db):
    await healing_db.record_llm_call(CallAttempt("a", input_tokens=10, output_tokens=5, cost=0.5, latency_ms=100))
    await healing_db.record_llm_call(CallAttempt("a", reason=FailureReason.TIMEOUT, latency_ms=300), run_id=7)
    await healing_db.record_llm_call(CallAttempt("b", input_tokens=1, output_tokens=1, cost=0.1, latency_ms=50))

    usage = await healing_db.get_usage_stats()
    assert usage["total_calls"] == 3
    assert usage["total_cost"] == pytest.approx(0.6)
    by_model = {m["model_id"]: m for m in usage["models"]}
    assert by_model["a"]["calls"] == 2
    assert by_model["a"]["success_rate"] == pytest.approx(0.5)
    assert by_model["a"]["avg_latency_ms"] == 200
    assert by_model["b"]["input_tokens"] == 1


# ============ Availability ============

@pytest.mark.asyncio
async def test_uninitialized_store_is_unavailable(temp_db):
    db = HealingDB(temp_db)
    with pytest.raises(StoreUnavailable):
        await db.get_work_item(1)


@pytest.mark.asyncio
async def test_closed_store_is_unavailable(temp_db):
    db = HealingDB(temp_db)
    await db.init()
    await db.close()
    with pytest.raises(StoreUnavailable):
        await db.log_error(_context(), "fp", "unknown")


@pytest.mark.asyncio
async def test_corrupted_file_is_recreated(temp_db):
    with open(temp_db, "wb") as f:
        f.write(b"this is not a sqlite database" * 10)
    db = HealingDB(temp_db)
    await db.init()
    try:
        schedule_id = await db.add_work_item("x")
        assert schedule_id > 0
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_track_occurrence_skips_errors_counted_at_creation(healing_db):
    now = time.time()
    ids = [await healing_db.log_error(_context(ts=now), "fp", "timeout") for _ in range(3)]

    created = await healing_db.track_occurrence("fp", "boom", "timeout", since=now - 60, threshold=3, error_id=ids[0], now=now)
    assert created.occurrence_count == 3

    again = await healing_db.track_occurrence("fp", "boom", "timeout", since=now - 60, threshold=3, error_id=ids[2], now=now)
    assert again.occurrence_count == 3

    later = await healing_db.log_error(_context(ts=now), "fp", "timeout")
    bumped = await healing_db.track_occurrence("fp", "boom", "timeout", since=now - 60, threshold=3, error_id=later, now=now)
    assert bumped.occurrence_count == 4


@pytest.mark.asyncio
async def test_init_adds_counted_through_column(temp_db):
    async with aiosqlite.connect(temp_db) as conn:
        await conn.execute(
            """CREATE TABLE failure_patterns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                fingerprint TEXT UNIQUE NOT NULL,
                signature TEXT NOT NULL,
                error_type TEXT NOT NULL,
                occurrence_count INTEGER NOT NULL DEFAULT 1,
                last_occurrence REAL NOT NULL,
                known_fix TEXT,
                prevention_strategy TEXT,
                created_at REAL NOT NULL
            )"""
        )
        await conn.execute(
            "INSERT INTO failure_patterns (fingerprint, signature, error_type, occurrence_count, last_occurrence, created_at)"
            " VALUES ('fp', 'sig', 'timeout', 3, 1.0, 1.0)"
        )
        await conn.commit()

    db = HealingDB(temp_db)
    await db.init()
    try:
        pattern = await db.track_occurrence("fp", "sig", "timeout", since=0.0, threshold=3, error_id=1)
        assert pattern.occurrence_count == 4
    finally:
        await db.close()
