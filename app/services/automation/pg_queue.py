"""
Backend PostgreSQL da fila de jobs (asyncpg).

O claim do dequeue é um único UPDATE sobre um SELECT ... FOR UPDATE SKIP
LOCKED: workers concorrentes (inclusive em processos distintos) nunca
recebem o mesmo job.
"""

import asyncio
import functools
import json
import logging
import random
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import asyncpg

from app.services.automation.backoff import RetryPolicy
from app.services.automation.errors import JobNotFound, QueueUnavailable
from app.services.automation.models import (
    CompletedJobEntry,
    Job,
    JobStatus,
    JobType,
    Priority,
    payload_from_dict,
    utcnow,
)
from app.services.automation.queue import (
    LEASE_EXPIRED_ERROR,
    RECENT_COMPLETED_LIMIT,
    JobQueue,
    apply_failure,
    prepare_for_enqueue,
    summarize_finished,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS automation_jobs (
    id            TEXT PRIMARY KEY,
    job_type      TEXT NOT NULL,
    priority      SMALLINT NOT NULL,
    payload       JSONB NOT NULL,
    status        TEXT NOT NULL,
    retry_count   INTEGER NOT NULL DEFAULT 0,
    max_retries   INTEGER NOT NULL,
    error_msg     TEXT NOT NULL DEFAULT '',
    created_at    TIMESTAMPTZ NOT NULL,
    updated_at    TIMESTAMPTZ NOT NULL,
    available_at  TIMESTAMPTZ NOT NULL,
    claimed_at    TIMESTAMPTZ,
    completed_at  TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS idx_automation_jobs_claim
    ON automation_jobs (job_type, status, priority DESC, available_at);
CREATE INDEX IF NOT EXISTS idx_automation_jobs_finished
    ON automation_jobs (status, completed_at DESC);
"""

# Erros de conectividade viram QueueUnavailable; erros de SQL propagam como estão
_CONNECTIVITY_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
)


def _translate_errors(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except _CONNECTIVITY_ERRORS as e:
            logger.error(f"[JobQueue] ❌ Postgres indisponível em {func.__name__}: {e}")
            raise QueueUnavailable(str(e)) from e
    return wrapper


def _row_to_job(row) -> Job:
    job_type = JobType(row["job_type"])
    payload = row["payload"]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return Job(
        id=row["id"],
        job_type=job_type,
        payload=payload_from_dict(job_type, payload),
        priority=Priority(row["priority"]),
        status=JobStatus(row["status"]),
        retry_count=row["retry_count"],
        max_retries=row["max_retries"],
        error_msg=row["error_msg"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        available_at=row["available_at"],
        claimed_at=row["claimed_at"],
        completed_at=row["completed_at"],
    )


class PostgresJobQueue(JobQueue):
    """Fila de jobs persistida na tabela automation_jobs."""

    def __init__(
        self,
        pool: asyncpg.Pool,
        policy: Optional[RetryPolicy] = None,
        completed_keep: int = 1000,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[Callable[[], float]] = None,
    ):
        self._pool = pool
        self._policy = policy or RetryPolicy()
        self._completed_keep = completed_keep
        self._clock = clock
        self._rng = rng or random.random

    @_translate_errors
    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("[JobQueue] ✅ Schema automation_jobs verificado")

    @_translate_errors
    async def enqueue(self, job: Job) -> str:
        prepare_for_enqueue(job, self._clock(), self._policy)
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO automation_jobs (
                    id, job_type, priority, payload, status, retry_count, max_retries,
                    error_msg, created_at, updated_at, available_at
                ) VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8, $9, $10, $11)
                """,
                job.id,
                job.job_type.value,
                int(job.priority),
                json.dumps(job.payload.to_dict()),
                job.status.value,
                job.retry_count,
                job.max_retries,
                job.error_msg,
                job.created_at,
                job.updated_at,
                job.available_at,
            )
        return job.id

    @_translate_errors
    async def dequeue(self, job_type: JobType) -> Optional[Job]:
        now = self._clock()
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE automation_jobs
                   SET status = 'in_progress', claimed_at = $2, updated_at = $2
                 WHERE id = (
                    SELECT id FROM automation_jobs
                     WHERE job_type = $1 AND status = 'pending' AND available_at <= $2
                     ORDER BY priority DESC, available_at ASC, created_at ASC
                     LIMIT 1
                     FOR UPDATE SKIP LOCKED
                 )
                RETURNING *
                """,
                job_type.value,
                now,
            )
        return _row_to_job(row) if row else None

    @_translate_errors
    async def complete_job(self, job_id: str) -> None:
        now = self._clock()
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE automation_jobs
                   SET status = 'completed', completed_at = $2, updated_at = $2, claimed_at = NULL
                 WHERE id = $1 AND status NOT IN ('completed', 'failed')
                """,
                job_id,
                now,
            )
            if result.endswith(" 0"):
                exists = await conn.fetchval("SELECT 1 FROM automation_jobs WHERE id = $1", job_id)
                if not exists:
                    raise JobNotFound(job_id)

    @_translate_errors
    async def fail_job(self, job_id: str, error: str, retryable: bool = True) -> None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT * FROM automation_jobs WHERE id = $1 FOR UPDATE", job_id
                )
                if row is None:
                    raise JobNotFound(job_id)
                job = _row_to_job(row)
                if job.is_terminal:
                    return
                await self._store_failure(conn, job, error, retryable)

    async def _store_failure(self, conn, job: Job, error: str, retryable: bool) -> None:
        requeued = apply_failure(job, error, retryable, self._clock(), self._policy, self._rng)
        await conn.execute(
            """
            UPDATE automation_jobs
               SET status = $2, priority = $3, retry_count = $4, error_msg = $5,
                   updated_at = $6, available_at = $7, claimed_at = NULL, completed_at = $8
             WHERE id = $1
            """,
            job.id,
            job.status.value,
            int(job.priority),
            job.retry_count,
            job.error_msg,
            job.updated_at,
            job.available_at,
            job.completed_at,
        )
        if requeued:
            logger.info(f"[JobQueue] 🔁 {job.id} re-tentativa {job.retry_count}/{job.max_retries}: {error}")
        else:
            logger.warning(f"[JobQueue] ❌ {job.id} falhou definitivamente: {error}")

    @_translate_errors
    async def get_job(self, job_id: str) -> Job:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM automation_jobs WHERE id = $1", job_id)
        if row is None:
            raise JobNotFound(job_id)
        return _row_to_job(row)

    @_translate_errors
    async def get_queue_stats(self) -> Dict[str, int]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT job_type, status, priority, COUNT(*) AS n
                  FROM automation_jobs
                 WHERE status IN ('pending', 'in_progress')
                 GROUP BY job_type, status, priority
                """
            )
        stats: Dict[str, int] = {t.value: 0 for t in JobType}
        stats["in_progress"] = 0
        for row in rows:
            if row["status"] == JobStatus.IN_PROGRESS.value:
                stats["in_progress"] += row["n"]
                continue
            stats[row["job_type"]] = stats.get(row["job_type"], 0) + row["n"]
            stats[f"{row['job_type']}_priority_{row['priority']}"] = row["n"]
        return stats

    @_translate_errors
    async def get_completed_jobs_stats(self) -> Dict:
        async with self._pool.acquire() as conn:
            totals = await conn.fetch(
                """
                SELECT status, job_type, COUNT(*) AS n
                  FROM automation_jobs
                 WHERE status IN ('completed', 'failed')
                 GROUP BY status, job_type
                """
            )
            recent = await conn.fetch(
                """
                SELECT id, job_type, status, completed_at, payload
                  FROM automation_jobs
                 WHERE status IN ('completed', 'failed')
                 ORDER BY completed_at DESC
                 LIMIT $1
                """,
                RECENT_COMPLETED_LIMIT,
            )
            last_24h = await conn.fetchval(
                """
                SELECT COUNT(*) FROM automation_jobs
                 WHERE status = 'completed' AND completed_at >= $1
                """,
                self._clock() - timedelta(hours=24),
            )

        total_completed = 0
        total_failed = 0
        by_type: Dict[str, int] = {}
        for row in totals:
            if row["status"] == JobStatus.COMPLETED.value:
                total_completed += row["n"]
                by_type[row["job_type"]] = row["n"]
            else:
                total_failed += row["n"]

        entries = [
            CompletedJobEntry(
                id=row["id"],
                job_type=JobType(row["job_type"]),
                status=JobStatus(row["status"]),
                finished_at=row["completed_at"],
                payload=json.loads(row["payload"]) if isinstance(row["payload"], str) else row["payload"],
            )
            for row in recent
        ]
        stats = summarize_finished(entries, self._clock(), total_completed, total_failed, by_type)
        stats["completed_last_24h"] = last_24h
        return stats

    @_translate_errors
    async def requeue_stale(self, lease_seconds: float) -> int:
        cutoff = self._clock() - timedelta(seconds=lease_seconds)
        count = 0
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(
                    """
                    SELECT * FROM automation_jobs
                     WHERE status = 'in_progress' AND claimed_at <= $1
                     FOR UPDATE SKIP LOCKED
                    """,
                    cutoff,
                )
                for row in rows:
                    await self._store_failure(conn, _row_to_job(row), LEASE_EXPIRED_ERROR, True)
                    count += 1
        if count:
            logger.warning(f"[JobQueue] ⏰ {count} jobs com lease vencido devolvidos à fila")
        return count

    @_translate_errors
    async def prune_finished(self) -> int:
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                """
                DELETE FROM automation_jobs
                 WHERE status IN ('completed', 'failed')
                   AND id NOT IN (
                    SELECT id FROM automation_jobs
                     WHERE status IN ('completed', 'failed')
                     ORDER BY completed_at DESC
                     LIMIT $1
                   )
                """,
                self._completed_keep,
            )
        deleted = int(result.split()[-1])
        if deleted:
            logger.info(f"[JobQueue] 🧹 {deleted} jobs finalizados antigos removidos")
        return deleted
