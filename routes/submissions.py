# routes/submissions.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from db import get_conn
from schemas import SubmissionStatusResponse
from services.http_errors import to_http_exception
from services.status import submission_status

router = APIRouter(prefix="/v1/submissions", tags=["submissions"])


@router.get("/{submission_id}/status", response_model=SubmissionStatusResponse)
def get_submission_status(submission_id: UUID):
    try:
        with get_conn() as conn:
            return submission_status(conn, submission_id)
    except Exception as e:
        raise to_http_exception(e)
