# services/admin_override.py
from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from app.errors import InvalidState, NotFound
from app.jobs import repository as jobs_repo
from app.jobs.model import JobType
from app.payouts import repository as payouts_repo
from app.payouts.model import PayoutStatus
from app.submissions import repository as submissions_repo
from app.submissions.model import SubmissionStatus
from app.submissions.state_machine import OVERRIDE_SOURCES
from app.verification import repository as verification_repo
from app.verification.model import Decision, OverrideTrace, VerificationResult
from services.audit_log import record_audit_event

logger = logging.getLogger("questpay.admin")


def force_approve(conn, *, submission_id: UUID, actor_id: str, reason: str) -> dict[str, Any]:
    """
    Replace the verification result with a synthetic APPROVE, move the
    submission to APPROVED and queue its payout.
    """
    sub = submissions_repo.lock_submission(conn, submission_id)
    if sub is None:
        raise NotFound(f"Submission {submission_id} not found")
    if sub.status not in OVERRIDE_SOURCES:
        raise InvalidState(f"Submission {sub.id} is {sub.status.value}; cannot force-approve")

    payout = payouts_repo.get_payout_by_submission(conn, sub.id)
    if payout is not None and payout.status == PayoutStatus.COMPLETED:
        raise InvalidState(f"Submission {sub.id} already has a completed payout")

    result = VerificationResult(
        submission_id=sub.id,
        decision=Decision.APPROVE,
        trace=OverrideTrace(actor_id=actor_id, reason=reason),
        risk_score=0.0,
        reasons=[f"Admin override: {reason}"],
    )
    if not verification_repo.save_verification_result(conn, result):
        raise InvalidState(f"Verification result for {sub.id} is frozen")

    submissions_repo.transition_status(
        conn,
        submission_id=sub.id,
        from_status=sub.status,
        new_status=SubmissionStatus.APPROVED,
    )

    job = None
    if not jobs_repo.has_open_job(conn, job_type=JobType.PAYOUT, entity_id=sub.id):
        job = jobs_repo.enqueue(conn, job_type=JobType.PAYOUT, entity_id=sub.id)

    record_audit_event(
        conn,
        entity_type="submission",
        entity_id=str(sub.id),
        actor_id=f"admin:{actor_id}",
        event_type="force_approved",
        payload={"from": sub.status.value, "reason": reason, "payout_job_id": str(job.id) if job else None},
    )
    logger.warning("submission=%s force-approved by %s (was %s)", sub.id, actor_id, sub.status.value)

    return {
        "submission_id": str(sub.id),
        "previous_status": sub.status.value,
        "status": SubmissionStatus.APPROVED.value,
        "payout_job_id": str(job.id) if job else None,
    }


def retry_payout(conn, *, submission_id: UUID, actor_id: str) -> dict[str, Any]:
    """Queue a new PAYOUT job for an APPROVED submission whose payout FAILED."""
    sub = submissions_repo.lock_submission(conn, submission_id)
    if sub is None:
        raise NotFound(f"Submission {submission_id} not found")
    if sub.status != SubmissionStatus.APPROVED:
        raise InvalidState(f"Submission {sub.id} is {sub.status.value}; only APPROVED payouts can be retried")

    payout = payouts_repo.get_payout_by_submission(conn, sub.id)
    if payout is None or payout.status != PayoutStatus.FAILED:
        raise InvalidState(f"Submission {sub.id} has no failed payout to retry")

    if jobs_repo.has_open_job(conn, job_type=JobType.PAYOUT, entity_id=sub.id):
        raise InvalidState(f"A payout job for {sub.id} is already queued")

    job = jobs_repo.enqueue(conn, job_type=JobType.PAYOUT, entity_id=sub.id)
    record_audit_event(
        conn,
        entity_type="payout",
        entity_id=str(payout.id),
        actor_id=f"admin:{actor_id}",
        event_type="payout_retry_requested",
        payload={"submission_id": str(sub.id), "job_id": str(job.id), "previous_error": payout.last_error},
    )
    return {"submission_id": str(sub.id), "payout_id": str(payout.id), "job_id": str(job.id)}
