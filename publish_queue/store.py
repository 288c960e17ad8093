"""Database store layer for publish jobs."""

import logging
from datetime import datetime
from typing import List, Optional

import asyncpg

from publish_queue.ddl import PUBLISH_JOBS_TABLE_DDL
from publish_queue.errors import JobNotFoundError
from publish_queue.models import Job, JobStatus, QueueStatusEntry, utc_now

logger = logging.getLogger(__name__)


def _affected_rows(result: str) -> int:
    # asyncpg returns the command tag, e.g. "DELETE 5"
    return int(result.split()[-1]) if result else 0


class JobStore:
    """Durable publish job table with atomic reservation.

    Every mutation is a single SQL statement, so a partial write can never
    leave a row half-updated. Reservation relies on ``FOR UPDATE SKIP LOCKED``
    so that two callers can never reserve the same row.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def initialize(self, now: Optional[datetime] = None) -> int:
        """
        Create the schema and recover jobs interrupted by a previous run.

        Any row still marked ``processing`` had no live executor once the
        process died; it is returned to ``pending`` and made eligible at
        ``now``. Must be called once per process before the first reservation.

        Returns the number of recovered rows.
        """
        now = now or utc_now()
        async with self.db_pool.acquire() as conn:
            await conn.execute(PUBLISH_JOBS_TABLE_DDL)
            result = await conn.execute(
                """
                UPDATE publish_jobs
                SET status = $1, available_at = $2, updated_at = now()
                WHERE status = $3
                """,
                JobStatus.PENDING.value,
                now,
                JobStatus.PROCESSING.value,
            )

        recovered = _affected_rows(result)
        if recovered:
            logger.warning(f"Recovered {recovered} interrupted jobs from a previous run")
        return recovered

    async def enqueue(
        self,
        requester_id: str,
        post_url: str,
        user_text: str = "",
        available_at: Optional[datetime] = None,
        retry_count: int = 0,
        last_delay_ms: int = 0,
    ) -> int:
        """Insert a new pending job and return its id."""
        if available_at is None:
            available_at = utc_now()

        async with self.db_pool.acquire() as conn:
            job_id = await conn.fetchval(
                """
                INSERT INTO publish_jobs (
                    requester_id, post_url, user_text, status,
                    available_at, retry_count, last_delay_ms
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING id
                """,
                str(requester_id),
                post_url,
                user_text,
                JobStatus.PENDING.value,
                available_at,
                retry_count,
                last_delay_ms,
            )

        return job_id

    async def get_job(self, job_id: int) -> Job:
        """Get a job by ID."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM publish_jobs WHERE id = $1", job_id)

        if not row:
            raise JobNotFoundError(job_id)

        return self._row_to_job(row)

    async def reserve_next(self, now: datetime) -> Optional[Job]:
        """
        Atomically reserve the next eligible job.

        Selects the pending row with the smallest ``(available_at, id)`` whose
        ``available_at <= now``, flips it to ``processing`` and returns a
        snapshot. Returns None when nothing is eligible.
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE publish_jobs
                SET status = $1, updated_at = now()
                WHERE id = (
                    SELECT id FROM publish_jobs
                    WHERE status = $2
                      AND available_at <= $3
                    ORDER BY available_at ASC, id ASC
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING *
                """,
                JobStatus.PROCESSING.value,
                JobStatus.PENDING.value,
                now,
            )

        return self._row_to_job(row) if row else None

    async def peek_next_available_at(self) -> Optional[datetime]:
        """Earliest ``available_at`` among pending rows, or None."""
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT MIN(available_at) FROM publish_jobs WHERE status = $1",
                JobStatus.PENDING.value,
            )

    async def reschedule(
        self,
        job_id: int,
        new_available_at: datetime,
        delay_ms: int,
        count_retry: bool = True,
    ) -> bool:
        """
        Return a processing job to pending at a later time.

        ``available_at`` never moves backwards. ``count_retry=False`` keeps the
        retry budget untouched (used for rate limiting).

        Returns False when the row no longer exists (e.g. the queue was cleared).
        """
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE publish_jobs
                SET status = $1,
                    available_at = GREATEST(available_at, $2),
                    last_delay_ms = $3,
                    retry_count = retry_count + $4,
                    updated_at = now()
                WHERE id = $5 AND status = $6
                """,
                JobStatus.PENDING.value,
                new_available_at,
                delay_ms,
                1 if count_retry else 0,
                job_id,
                JobStatus.PROCESSING.value,
            )
        return _affected_rows(result) > 0

    async def complete(self, job_id: int) -> bool:
        """Remove a successfully published job."""
        removed = await self._delete(job_id)
        logger.debug(f"Job {job_id} completed and removed (found={removed})")
        return removed

    async def fail(self, job_id: int) -> bool:
        """Remove a permanently failed job."""
        removed = await self._delete(job_id)
        logger.debug(f"Job {job_id} failed and removed (found={removed})")
        return removed

    async def clear_all(self) -> int:
        """Delete every pending and processing job. Returns the count removed."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM publish_jobs WHERE status IN ($1, $2)",
                JobStatus.PENDING.value,
                JobStatus.PROCESSING.value,
            )
        return _affected_rows(result)

    async def status_summary(self) -> List[QueueStatusEntry]:
        """Aggregate view of the queue grouped by status."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT status,
                       COUNT(*) AS count,
                       MIN(available_at) AS earliest_available_at,
                       MAX(retry_count) AS max_retry_count
                FROM publish_jobs
                GROUP BY status
                ORDER BY status
                """
            )

        return [
            QueueStatusEntry(
                status=row["status"],
                count=row["count"],
                earliest_available_at=row["earliest_available_at"],
                max_retry_count=row["max_retry_count"] or 0,
            )
            for row in rows
        ]

    async def _delete(self, job_id: int) -> bool:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("DELETE FROM publish_jobs WHERE id = $1", job_id)
        return _affected_rows(result) > 0

    def _row_to_job(self, row: asyncpg.Record) -> Job:
        """Convert a database row to a Job model."""
        return Job(
            id=row["id"],
            requester_id=row["requester_id"],
            post_url=row["post_url"],
            user_text=row["user_text"],
            status=JobStatus(row["status"]),
            available_at=row["available_at"],
            retry_count=row["retry_count"],
            last_delay_ms=row["last_delay_ms"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
