# app/verification/repository.py
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import Json, RealDictCursor

from app.verification.model import Decision, VerificationResult, trace_from_dict


def _to_result(row: dict[str, Any]) -> VerificationResult:
    return VerificationResult(
        id=row["id"],
        submission_id=row["submission_id"],
        decision=Decision(row["decision"]),
        trace=trace_from_dict(row["trace"]),
        risk_score=float(row["risk_score"]),
        reasons=list(row.get("reasons") or []),
        created_at=row.get("created_at"),
    )


def get_verification_result(conn, submission_id: UUID) -> Optional[VerificationResult]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, submission_id, decision, trace, risk_score, reasons, created_at
            FROM pipeline.verification_results
            WHERE submission_id = %s
            """,
            (submission_id,),
        )
        row = cur.fetchone()
        return _to_result(row) if row else None


def save_verification_result(conn, result: VerificationResult) -> bool:
    """
    Insert or replace the single result for a submission. Replacement is
    refused once the submission is PAID; returns False in that case.
    """
    receipt_fp, fuzzy_fp = result.fingerprints
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO pipeline.verification_results (
              submission_id, decision, trace, risk_score, reasons,
              receipt_fingerprint, fuzzy_fingerprint
            )
            SELECT %s, %s, %s::jsonb, %s, %s::jsonb, %s, %s
            WHERE NOT EXISTS (
              SELECT 1 FROM pipeline.submissions WHERE id = %s AND status = 'PAID'
            )
            ON CONFLICT (submission_id) DO UPDATE
              SET decision = EXCLUDED.decision,
                  trace = EXCLUDED.trace,
                  risk_score = EXCLUDED.risk_score,
                  reasons = EXCLUDED.reasons,
                  receipt_fingerprint = EXCLUDED.receipt_fingerprint,
                  fuzzy_fingerprint = EXCLUDED.fuzzy_fingerprint,
                  updated_at = now()
            """,
            (
                result.submission_id,
                result.decision.value,
                Json(result.trace.to_dict()),
                float(result.risk_score),
                Json(list(result.reasons)),
                receipt_fp,
                fuzzy_fp,
                result.submission_id,
            ),
        )
        return cur.rowcount == 1
