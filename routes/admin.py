# routes/admin.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from db import get_conn
from deps.admin import AdminActor, require_admin, require_overrides_enabled
from schemas import ForceApproveRequest, ForceApproveResponse, RetryPayoutResponse
from services.admin_override import force_approve, retry_payout
from services.audit_log import list_audit_events
from services.http_errors import to_http_exception

router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.post("/submissions/{submission_id}/force-approve", response_model=ForceApproveResponse)
def admin_force_approve(
    submission_id: UUID,
    req: ForceApproveRequest,
    admin: AdminActor = Depends(require_overrides_enabled),
):
    try:
        with get_conn() as conn:
            return force_approve(conn, submission_id=submission_id, actor_id=admin.actor_id, reason=req.reason)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/submissions/{submission_id}/retry-payout", response_model=RetryPayoutResponse)
def admin_retry_payout(
    submission_id: UUID,
    admin: AdminActor = Depends(require_admin),
):
    try:
        with get_conn() as conn:
            return retry_payout(conn, submission_id=submission_id, actor_id=admin.actor_id)
    except Exception as e:
        raise to_http_exception(e)


@router.get("/audit-events")
def admin_audit_events(
    entity_type: str = Query(..., pattern="^(submission|payout)$"),
    entity_id: str = Query(..., min_length=1, max_length=64),
    limit: int = Query(100, ge=1, le=500),
    _admin: AdminActor = Depends(require_admin),
):
    with get_conn() as conn:
        rows = list_audit_events(conn, entity_type=entity_type, entity_id=entity_id.strip(), limit=limit)

    events = [
        {
            "id": str(row["id"]),
            "created_at": row["created_at"].isoformat() if row.get("created_at") else None,
            "actor_id": row["actor_id"],
            "event_type": row["event_type"],
            "entity_type": row["entity_type"],
            "entity_id": row["entity_id"],
            "payload": row.get("payload") or {},
        }
        for row in rows
    ]
    return {"events": events, "count": len(events), "limit": limit}
