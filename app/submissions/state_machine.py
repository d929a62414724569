# app/submissions/state_machine.py
from __future__ import annotations

from app.submissions.model import SubmissionStatus as S


class InvalidTransition(Exception):
    pass


ALLOWED = {
    S.PENDING: {S.PROCESSING, S.FAILED, S.APPROVED},  # PENDING->APPROVED only via admin override
    S.PROCESSING: {S.APPROVED, S.REJECTED, S.FAILED, S.PENDING},  # ->PENDING only when a stale VERIFY job is requeued
    S.APPROVED: {S.PAID, S.APPROVED},  # APPROVED->APPROVED when a payout fails and awaits retry
    S.REJECTED: {S.APPROVED},  # admin override
    S.FAILED: {S.APPROVED},  # admin override
    S.PAID: set(),
}

OVERRIDE_SOURCES = {S.PENDING, S.PROCESSING, S.REJECTED, S.FAILED, S.APPROVED}


def assert_transition(old: S | str, new: S | str) -> None:
    old_s, new_s = S(old), S(new)
    if new_s not in ALLOWED.get(old_s, set()):
        raise InvalidTransition(f"Illegal submission transition: {old_s.value} -> {new_s.value}")


def is_terminal(status: S | str) -> bool:
    return S(status) in {S.REJECTED, S.FAILED, S.PAID}
