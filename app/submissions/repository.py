# app/submissions/repository.py
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor

from app.submissions.model import Submission, SubmissionStatus
from app.submissions.state_machine import assert_transition

_COLUMNS = """
    id, quest_id, wallet, device_fingerprint, content_hash, receipt_path,
    zip_prefix, justification_text, status, last_error, created_at
"""


def _to_submission(row: dict[str, Any]) -> Submission:
    return Submission(
        id=row["id"],
        quest_id=row["quest_id"],
        wallet=row["wallet"],
        device_fingerprint=row["device_fingerprint"],
        content_hash=row["content_hash"],
        receipt_path=row["receipt_path"],
        zip_prefix=row.get("zip_prefix") or "",
        justification_text=row.get("justification_text") or "",
        status=SubmissionStatus(row["status"]),
        last_error=row.get("last_error"),
        created_at=row.get("created_at"),
    )


def get_submission(conn, submission_id: UUID) -> Optional[Submission]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM pipeline.submissions WHERE id = %s",
            (submission_id,),
        )
        row = cur.fetchone()
        return _to_submission(row) if row else None


def lock_submission(conn, submission_id: UUID) -> Optional[Submission]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM pipeline.submissions WHERE id = %s FOR UPDATE",
            (submission_id,),
        )
        row = cur.fetchone()
        return _to_submission(row) if row else None


def transition_status(
    conn,
    *,
    submission_id: UUID,
    from_status: SubmissionStatus,
    new_status: SubmissionStatus,
    last_error: Optional[str] = None,
) -> bool:
    """
    Compare-and-set the submission status. Returns False if the row is no
    longer in ``from_status`` (someone else moved it first).
    """
    assert_transition(from_status, new_status)
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE pipeline.submissions
            SET status = %s,
                last_error = %s,
                updated_at = now()
            WHERE id = %s
              AND status = %s
            """,
            (SubmissionStatus(new_status).value, last_error, submission_id, SubmissionStatus(from_status).value),
        )
        return cur.rowcount == 1
