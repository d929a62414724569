# app/jobs/repository.py
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor

from app.jobs.model import Job, JobStatus, JobType

_COLUMNS = "id, type, entity_id, status, attempts, last_error, created_at, claimed_by"

# last_error is free text from arbitrary exceptions; keep rows bounded
MAX_ERROR_LEN = 2000


def _to_job(row: dict[str, Any]) -> Job:
    return Job(
        id=row["id"],
        type=JobType(row["type"]),
        entity_id=row["entity_id"],
        status=JobStatus(row["status"]),
        attempts=int(row["attempts"] or 0),
        last_error=row.get("last_error"),
        created_at=row["created_at"],
        claimed_by=row.get("claimed_by"),
    )


def _clip(error: Optional[str]) -> Optional[str]:
    if error is None:
        return None
    return error[:MAX_ERROR_LEN]


# ==========================================================
# Writes
# ==========================================================

def enqueue(conn, *, job_type: JobType, entity_id: UUID) -> Job:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO pipeline.jobs (type, entity_id, status)
            VALUES (%s, %s, 'QUEUED')
            RETURNING {_COLUMNS}
            """,
            (JobType(job_type).value, entity_id),
        )
        return _to_job(cur.fetchone())


def claim_next(conn, *, worker_id: str) -> Optional[Job]:
    """
    Atomically pick the oldest QUEUED job, mark it PROCESSING and bump its
    attempt counter. SKIP LOCKED means a concurrent claimant never waits on,
    or receives, a row another claimant already holds.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            WITH picked AS (
              SELECT j.id
              FROM pipeline.jobs j
              WHERE j.status = 'QUEUED'
              ORDER BY j.created_at ASC, j.id ASC
              LIMIT 1
              FOR UPDATE SKIP LOCKED
            )
            UPDATE pipeline.jobs j
            SET status = 'PROCESSING',
                attempts = j.attempts + 1,
                claimed_by = %s,
                claimed_at = now(),
                updated_at = now()
            FROM picked
            WHERE j.id = picked.id
            RETURNING j.id, j.type, j.entity_id, j.status, j.attempts, j.last_error, j.created_at, j.claimed_by
            """,
            (worker_id,),
        )
        row = cur.fetchone()
        return _to_job(row) if row else None


def finalize(conn, *, job_id: UUID, success: bool, error: Optional[str] = None) -> bool:
    """PROCESSING -> COMPLETED | FAILED. Returns False if the job was not PROCESSING."""
    new_status = JobStatus.COMPLETED if success else JobStatus.FAILED
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE pipeline.jobs
            SET status = %s,
                last_error = CASE WHEN %s THEN last_error ELSE %s END,
                updated_at = now()
            WHERE id = %s
              AND status = 'PROCESSING'
            """,
            (new_status.value, success, _clip(error), job_id),
        )
        return cur.rowcount == 1


def record_attempt(conn, *, job_id: UUID, error: Optional[str]) -> int:
    """Count an in-process retry against the job and keep the error that caused it."""
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE pipeline.jobs
            SET attempts = attempts + 1,
                last_error = %s,
                updated_at = now()
            WHERE id = %s
            RETURNING attempts
            """,
            (_clip(error), job_id),
        )
        row = cur.fetchone()
        return int(row[0]) if row else 0


REAPED_ERROR = "TIMEOUT: worker lost while processing"


def reap_stale(conn, *, stale_seconds: int, max_attempts: int) -> int:
    """
    Jobs left in PROCESSING by a crashed worker go back to QUEUED, or to
    FAILED once they have used up their attempts.

    A VERIFY job's submission was moved to PROCESSING by the lost worker, so
    in the same transaction it goes back to PENDING (job requeued) or to
    FAILED (job given up). Otherwise the next claim would find nothing to
    verify and the submission would never leave PROCESSING.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            WITH stale AS (
              SELECT id
              FROM pipeline.jobs
              WHERE status = 'PROCESSING'
                AND claimed_at <= (now() - (%s || ' seconds')::interval)
              FOR UPDATE SKIP LOCKED
            )
            UPDATE pipeline.jobs j
            SET status = CASE WHEN j.attempts >= %s THEN 'FAILED' ELSE 'QUEUED' END,
                last_error = COALESCE(j.last_error, %s),
                claimed_by = NULL,
                updated_at = now()
            FROM stale
            WHERE j.id = stale.id
            RETURNING j.type, j.entity_id, j.status
            """,
            (str(stale_seconds), max_attempts, REAPED_ERROR),
        )
        reaped = cur.fetchall()

        for job_type, entity_id, job_status in reaped:
            if job_type != JobType.VERIFY.value:
                continue
            requeued = job_status == JobStatus.QUEUED.value
            cur.execute(
                """
                UPDATE pipeline.submissions
                SET status = %s,
                    last_error = %s,
                    updated_at = now()
                WHERE id = %s
                  AND status = 'PROCESSING'
                """,
                (
                    "PENDING" if requeued else "FAILED",
                    None if requeued else REAPED_ERROR,
                    entity_id,
                ),
            )
        return len(reaped)


# ==========================================================
# Reads
# ==========================================================

def get_job(conn, job_id: UUID) -> Optional[Job]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(f"SELECT {_COLUMNS} FROM pipeline.jobs WHERE id = %s", (job_id,))
        row = cur.fetchone()
        return _to_job(row) if row else None


def queue_stats(conn) -> dict[str, int]:
    with conn.cursor() as cur:
        cur.execute("SELECT status, COUNT(*) FROM pipeline.jobs GROUP BY status")
        counts = {status: int(n) for status, n in cur.fetchall()}
    return {s.value.lower(): counts.get(s.value, 0) for s in JobStatus}


def has_open_job(conn, *, job_type: JobType, entity_id: UUID) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT 1
            FROM pipeline.jobs
            WHERE type = %s
              AND entity_id = %s
              AND status IN ('QUEUED', 'PROCESSING')
            LIMIT 1
            """,
            (JobType(job_type).value, entity_id),
        )
        return cur.fetchone() is not None
