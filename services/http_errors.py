# services/http_errors.py
from __future__ import annotations

import logging
import re

from fastapi import HTTPException

from app.errors import ErrorCode, PipelineError, user_message
from app.submissions.state_machine import InvalidTransition

logger = logging.getLogger("questpay.http")

ERROR_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.SUBMISSION_NOT_FOUND: 404,
    ErrorCode.QUEST_NOT_FOUND: 404,
    ErrorCode.INVALID_INPUT: 422,
    ErrorCode.OCR_UNREADABLE: 422,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.DUPLICATE_RECEIPT: 409,
    ErrorCode.BUDGET_EXHAUSTED: 409,
    ErrorCode.POLICY_VIOLATION: 409,
    ErrorCode.UPSTREAM_UNAVAILABLE: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}

# codes raised by the database itself: RAISE 'DB_ERROR: CODE' or a named CHECK constraint
DB_ERROR_CODES: dict[str, ErrorCode] = {
    "AUDIT_APPEND_ONLY": ErrorCode.INVALID_STATE,
    "quests_budget_bounds": ErrorCode.BUDGET_EXHAUSTED,
    "payouts_completed_has_ref": ErrorCode.INVALID_STATE,
}

_DB_ERROR_PATTERN = re.compile(r"\b(" + "|".join(map(re.escape, DB_ERROR_CODES.keys())) + r")\b")


def _db_code(exc: Exception) -> ErrorCode | None:
    diag = getattr(exc, "diag", None)
    if diag is not None:
        constraint = getattr(diag, "constraint_name", None)
        if constraint in DB_ERROR_CODES:
            return DB_ERROR_CODES[constraint]
        primary = getattr(diag, "message_primary", None)
        if isinstance(primary, str):
            m = _DB_ERROR_PATTERN.search(primary)
            if m:
                return DB_ERROR_CODES[m.group(1)]

    m = _DB_ERROR_PATTERN.search(str(exc))
    if m:
        return DB_ERROR_CODES[m.group(1)]
    return None


def error_code_for(exc: Exception) -> ErrorCode:
    if isinstance(exc, PipelineError):
        return exc.code
    if isinstance(exc, InvalidTransition):
        return ErrorCode.INVALID_STATE
    return _db_code(exc) or ErrorCode.INTERNAL_ERROR


def to_http_exception(exc: Exception) -> HTTPException:
    """Known errors keep their code; anything else fails closed as a bare 500."""
    code = error_code_for(exc)
    status = ERROR_HTTP_STATUS.get(code, 500)
    if status >= 500 and code == ErrorCode.INTERNAL_ERROR:
        logger.exception("unhandled error", exc_info=exc)
        return HTTPException(status_code=500, detail="Internal server error")

    detail = {"code": code.value, "message": user_message(code)}
    if isinstance(exc, PipelineError):
        detail["detail"] = exc.message
    return HTTPException(status_code=status, detail=detail)
