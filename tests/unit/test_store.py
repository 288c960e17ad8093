"""Unit tests for JobStore against a mocked asyncpg pool."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from publish_queue.ddl import PUBLISH_JOBS_TABLE_DDL
from publish_queue.errors import JobNotFoundError
from publish_queue.models import JobStatus
from publish_queue.store import JobStore, _affected_rows

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_row(**overrides):
    row = {
        "id": 1,
        "requester_id": "42",
        "post_url": "https://x.com/a/status/1",
        "user_text": "hi",
        "status": "processing",
        "available_at": NOW,
        "retry_count": 0,
        "last_delay_ms": 0,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


@pytest.fixture
def conn():
    conn = AsyncMock()
    conn.execute.return_value = "UPDATE 0"
    return conn


@pytest.fixture
def pg_store(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = False
    return JobStore(pool)


def test_affected_rows():
    assert _affected_rows("DELETE 5") == 5
    assert _affected_rows("UPDATE 0") == 0
    assert _affected_rows("") == 0


@pytest.mark.asyncio
async def test_initialize_creates_schema_and_recovers(pg_store, conn):
    conn.execute.side_effect = ["CREATE TABLE", "UPDATE 2"]

    recovered = await pg_store.initialize(NOW)

    assert recovered == 2
    assert conn.execute.call_args_list[0].args[0] == PUBLISH_JOBS_TABLE_DDL
    recover_call = conn.execute.call_args_list[1]
    assert recover_call.args[1:] == ("pending", NOW, "processing")


@pytest.mark.asyncio
async def test_enqueue_returns_generated_id(pg_store, conn):
    conn.fetchval.return_value = 17

    job_id = await pg_store.enqueue(42, "https://x.com/a/status/1", "text", available_at=NOW)

    assert job_id == 17
    args = conn.fetchval.call_args.args
    assert "RETURNING id" in args[0]
    assert args[1:] == ("42", "https://x.com/a/status/1", "text", "pending", NOW, 0, 0)


@pytest.mark.asyncio
async def test_reserve_next_uses_skip_locked(pg_store, conn):
    conn.fetchrow.return_value = make_row()

    job = await pg_store.reserve_next(NOW)

    sql = conn.fetchrow.call_args.args[0]
    assert "FOR UPDATE SKIP LOCKED" in sql
    assert "ORDER BY available_at ASC, id ASC" in sql
    assert conn.fetchrow.call_args.args[1:] == ("processing", "pending", NOW)
    assert job.id == 1
    assert job.status == JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_reserve_next_empty(pg_store, conn):
    conn.fetchrow.return_value = None

    assert await pg_store.reserve_next(NOW) is None


@pytest.mark.asyncio
async def test_get_job_missing(pg_store, conn):
    conn.fetchrow.return_value = None

    with pytest.raises(JobNotFoundError):
        await pg_store.get_job(5)


@pytest.mark.asyncio
@pytest.mark.parametrize("count_retry,increment", [(True, 1), (False, 0)])
async def test_reschedule_retry_budget(pg_store, conn, count_retry, increment):
    conn.execute.return_value = "UPDATE 1"

    moved = await pg_store.reschedule(3, NOW, 10_000, count_retry=count_retry)

    assert moved
    sql, *params = conn.execute.call_args.args
    assert "GREATEST(available_at, $2)" in sql
    assert params == ["pending", NOW, 10_000, increment, 3, "processing"]


@pytest.mark.asyncio
async def test_reschedule_of_removed_job(pg_store, conn):
    conn.execute.return_value = "UPDATE 0"

    assert not await pg_store.reschedule(3, NOW, 10_000)


@pytest.mark.asyncio
async def test_complete_and_fail_delete_row(pg_store, conn):
    conn.execute.return_value = "DELETE 1"
    assert await pg_store.complete(1)

    conn.execute.return_value = "DELETE 0"
    assert not await pg_store.fail(1)


@pytest.mark.asyncio
async def test_clear_all_returns_count(pg_store, conn):
    conn.execute.return_value = "DELETE 4"

    assert await pg_store.clear_all() == 4


@pytest.mark.asyncio
async def test_status_summary(pg_store, conn):
    conn.fetch.return_value = [
        {"status": "pending", "count": 3, "earliest_available_at": NOW, "max_retry_count": 2},
        {"status": "processing", "count": 1, "earliest_available_at": NOW, "max_retry_count": None},
    ]

    summary = await pg_store.status_summary()

    assert [(e.status, e.count, e.max_retry_count) for e in summary] == [
        ("pending", 3, 2),
        ("processing", 1, 0),
    ]


@pytest.mark.asyncio
async def test_peek_next_available_at(pg_store, conn):
    conn.fetchval.return_value = NOW

    assert await pg_store.peek_next_available_at() == NOW
    assert "MIN(available_at)" in conn.fetchval.call_args.args[0]


def test_ddl_constrains_status():
    assert "CHECK (status IN ('pending', 'processing'))" in PUBLISH_JOBS_TABLE_DDL
    assert "(status, available_at, id)" in PUBLISH_JOBS_TABLE_DDL
