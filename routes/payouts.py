# routes/payouts.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from db import get_conn
from services.http_errors import to_http_exception
from services.status import payout_audit_record

router = APIRouter(prefix="/v1/payouts", tags=["payouts"])


@router.get("/{payout_id}/audit")
def get_payout_audit(payout_id: UUID):
    try:
        with get_conn() as conn:
            return payout_audit_record(conn, payout_id)
    except Exception as e:
        raise to_http_exception(e)
