# services/status.py
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from app.errors import KIND_CODES, ErrorCode, ErrorKind, NotFound, kind_of, user_message
from app.payouts import repository as payouts_repo
from app.payouts.model import Payout, PayoutStatus
from app.submissions import repository as submissions_repo
from app.submissions.model import Submission, SubmissionStatus
from app.verification import repository as verification_repo
from app.verification.model import Decision, PipelineTrace, VerificationResult
from services.audit_log import list_audit_events


def _message_code(sub: Submission, result: Optional[VerificationResult], payout: Optional[Payout]) -> Optional[ErrorCode]:
    if sub.status == SubmissionStatus.REJECTED:
        if result is not None and isinstance(result.trace, PipelineTrace) and result.trace.risk.duplicate:
            return ErrorCode.DUPLICATE_RECEIPT
        return ErrorCode.POLICY_VIOLATION

    if sub.status == SubmissionStatus.FAILED:
        kind = kind_of(sub.last_error)
        if kind == ErrorKind.NOT_FOUND:
            return ErrorCode.QUEST_NOT_FOUND
        return KIND_CODES.get(kind, ErrorCode.INTERNAL_ERROR)

    if sub.status == SubmissionStatus.APPROVED and payout is not None and payout.status == PayoutStatus.FAILED:
        return KIND_CODES.get(kind_of(payout.last_error), ErrorCode.INTERNAL_ERROR)

    return None


def project_status(
    sub: Submission,
    result: Optional[VerificationResult],
    payout: Optional[Payout],
) -> dict[str, Any]:
    """Read-only view a caller can render for every state."""
    code = _message_code(sub, result, payout)
    rejected = result is not None and result.decision == Decision.REJECT
    return {
        "submission_id": str(sub.id),
        "quest_id": str(sub.quest_id),
        "status": sub.status.value,
        "decision": result.decision.value if result else None,
        "risk_score": result.risk_score if result else None,
        "decision_trace": result.trace.to_dict() if result else None,
        "rejection_reasons": list(result.reasons) if rejected else None,
        "transfer_reference": payout.transfer_ref if payout else None,
        "payout_status": payout.status.value if payout else None,
        "synthetic": payout.synthetic if payout else None,
        "error_code": code.value if code else None,
        "message": user_message(code) if code else None,
    }


def submission_status(conn, submission_id: UUID) -> dict[str, Any]:
    sub = submissions_repo.get_submission(conn, submission_id)
    if sub is None:
        raise NotFound(f"Submission {submission_id} not found")
    result = verification_repo.get_verification_result(conn, sub.id)
    payout = payouts_repo.get_payout_by_submission(conn, sub.id)
    return project_status(sub, result, payout)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def payout_audit_record(conn, payout_id: UUID) -> dict[str, Any]:
    payout = payouts_repo.get_payout(conn, payout_id)
    if payout is None:
        raise NotFound(f"Payout {payout_id} not found")

    result = verification_repo.get_verification_result(conn, payout.submission_id)
    events = list_audit_events(conn, entity_type="payout", entity_id=str(payout.id))
    events += list_audit_events(conn, entity_type="submission", entity_id=str(payout.submission_id))
    events.sort(key=lambda e: e["created_at"])

    return {
        "payout": {
            "id": str(payout.id),
            "submission_id": str(payout.submission_id),
            "quest_id": str(payout.quest_id),
            "amount": payout.amount,
            "currency": payout.currency,
            "status": payout.status.value,
            "transfer_reference": payout.transfer_ref,
            "synthetic": payout.synthetic,
            "attempts": payout.attempts,
            "last_error": payout.last_error,
            "created_at": _iso(payout.created_at),
            "updated_at": _iso(payout.updated_at),
        },
        "decision": result.decision.value if result else None,
        "decision_trace": result.trace.to_dict() if result else None,
        "events": [
            {
                "id": str(e["id"]),
                "entity_type": e["entity_type"],
                "entity_id": e["entity_id"],
                "actor_id": e["actor_id"],
                "event_type": e["event_type"],
                "payload": e.get("payload") or {},
                "created_at": _iso(e.get("created_at")),
            }
            for e in events
        ],
    }
