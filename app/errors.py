# app/errors.py
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    UNREADABLE = "UNREADABLE"
    POLICY_VIOLATION = "POLICY_VIOLATION"
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    TIMEOUT = "TIMEOUT"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL = "INTERNAL"


RETRYABLE_KINDS = frozenset({ErrorKind.TRANSIENT_NETWORK, ErrorKind.TIMEOUT})


class ErrorCode(str, Enum):
    DUPLICATE_RECEIPT = "DUPLICATE_RECEIPT"
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"
    OCR_UNREADABLE = "OCR_UNREADABLE"
    POLICY_VIOLATION = "POLICY_VIOLATION"
    SUBMISSION_NOT_FOUND = "SUBMISSION_NOT_FOUND"
    QUEST_NOT_FOUND = "QUEST_NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_STATE = "INVALID_STATE"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.DUPLICATE_RECEIPT: "Looks like this receipt was already used.",
    ErrorCode.BUDGET_EXHAUSTED: "This quest ran out of funds.",
    ErrorCode.OCR_UNREADABLE: "We couldn't read your receipt. Try a clearer photo.",
    ErrorCode.POLICY_VIOLATION: "This submission doesn't meet the quest requirements.",
    ErrorCode.SUBMISSION_NOT_FOUND: "Submission not found.",
    ErrorCode.QUEST_NOT_FOUND: "Quest not found.",
    ErrorCode.INVALID_INPUT: "Invalid input provided.",
    ErrorCode.INVALID_STATE: "This action isn't allowed in the submission's current state.",
    ErrorCode.UPSTREAM_UNAVAILABLE: "A payment or verification service is temporarily unavailable.",
    ErrorCode.INTERNAL_ERROR: "An internal error occurred. Please try again.",
}


def user_message(code: ErrorCode | str | None) -> str:
    try:
        return ERROR_MESSAGES[ErrorCode(code)]
    except (ValueError, KeyError):
        return ERROR_MESSAGES[ErrorCode.INTERNAL_ERROR]


class PipelineError(Exception):
    """Base error for everything the pipeline raises on purpose.

    ``kind`` drives retry and terminal-state decisions, ``code`` is the stable
    identifier surfaced to callers.
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, *, kind: ErrorKind | None = None, code: ErrorCode | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        if code is not None:
            self.code = code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class InvalidInput(PipelineError):
    kind = ErrorKind.INVALID_INPUT
    code = ErrorCode.INVALID_INPUT


class NotFound(PipelineError):
    kind = ErrorKind.NOT_FOUND
    code = ErrorCode.SUBMISSION_NOT_FOUND


class ExtractionFailed(PipelineError):
    kind = ErrorKind.UNREADABLE
    code = ErrorCode.OCR_UNREADABLE


class PolicyViolation(PipelineError):
    kind = ErrorKind.POLICY_VIOLATION
    code = ErrorCode.POLICY_VIOLATION


class BudgetExhausted(PolicyViolation):
    kind = ErrorKind.BUDGET_EXHAUSTED
    code = ErrorCode.BUDGET_EXHAUSTED


class TransientFailure(PipelineError):
    kind = ErrorKind.TRANSIENT_NETWORK
    code = ErrorCode.UPSTREAM_UNAVAILABLE


class CallTimeout(TransientFailure):
    kind = ErrorKind.TIMEOUT


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, PipelineError) and exc.kind in RETRYABLE_KINDS


class InvalidState(InvalidInput):
    code = ErrorCode.INVALID_STATE


KIND_CODES: dict[ErrorKind, ErrorCode] = {
    ErrorKind.INVALID_INPUT: ErrorCode.INVALID_INPUT,
    ErrorKind.UNREADABLE: ErrorCode.OCR_UNREADABLE,
    ErrorKind.POLICY_VIOLATION: ErrorCode.POLICY_VIOLATION,
    ErrorKind.BUDGET_EXHAUSTED: ErrorCode.BUDGET_EXHAUSTED,
    ErrorKind.TRANSIENT_NETWORK: ErrorCode.UPSTREAM_UNAVAILABLE,
    ErrorKind.TIMEOUT: ErrorCode.UPSTREAM_UNAVAILABLE,
    ErrorKind.NOT_FOUND: ErrorCode.SUBMISSION_NOT_FOUND,
    ErrorKind.INTERNAL: ErrorCode.INTERNAL_ERROR,
}


def describe_error(exc: BaseException) -> str:
    """Stored form of an error: "KIND: message"; the kind prefix is parsed back by kind_of()."""
    if isinstance(exc, PipelineError):
        return f"{exc.kind.value}: {exc.message}"
    return f"{ErrorKind.INTERNAL.value}: {type(exc).__name__}: {exc}"


def kind_of(stored_error: str | None) -> ErrorKind | None:
    if not stored_error:
        return None
    head = stored_error.split(":", 1)[0].strip()
    try:
        return ErrorKind(head)
    except ValueError:
        return None
