# app/payouts/executor.py
"""
Payout executor.

One attempt is one database transaction:

    lock submission -> idempotence check -> re-validate APPROVED + result
    -> lock quest -> budget check -> authorize -> debit -> transfer
    -> payout COMPLETED, submission PAID, audit event

A policy/budget rejection or a failed transfer is persisted (payout FAILED,
budget recredited when a debit already happened) and committed before the
error is re-raised, so the retry wrapper and the worker see it while the
database never holds a debit without a COMPLETED or recredited payout.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional
from uuid import UUID

from app.errors import (
    BudgetExhausted,
    ErrorCode,
    InvalidInput,
    NotFound,
    PipelineError,
    PolicyViolation,
    describe_error,
)
from app.jobs import repository as jobs_repo
from app.payouts import repository as payouts_repo
from app.payouts.model import Payout, PayoutOutcome, PayoutStatus
from app.providers.base import SpendAuthorizer, TransferRail
from app.quests import repository as quests_repo
from app.quests.model import Quest
from app.risk.fingerprint import text_hash
from app.submissions import repository as submissions_repo
from app.submissions.model import Submission, SubmissionStatus
from app.verification import repository as verification_repo
from app.verification.model import Decision, OverrideTrace, PipelineTrace, VerificationResult
from services.audit_log import SYSTEM_ACTOR, record_audit_event
from services.metrics import increment_payout_attempt
from services.retry import call_with_timeout, retry_transient

logger = logging.getLogger("questpay.payout")

PAYOUT_ACTOR = "stage:payout"


def stage_ids(result: VerificationResult) -> list[str]:
    if isinstance(result.trace, OverrideTrace):
        return [f"admin:{result.trace.actor_id}", PAYOUT_ACTOR]
    return ["stage:verifier", "stage:risk", PAYOUT_ACTOR]


class PayoutExecutor:
    def __init__(
        self,
        *,
        authorizer: SpendAuthorizer,
        rail: TransferRail,
        conn_factory=None,
        timeout_s: float = 10.0,
        retry_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if conn_factory is None:
            from db import get_conn as conn_factory
        self.authorizer = authorizer
        self.rail = rail
        self._conn_factory = conn_factory
        self.timeout_s = timeout_s
        self.retry_attempts = retry_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    # ------------------------------------------------------
    # entry point
    # ------------------------------------------------------

    def execute(self, submission_id: UUID, *, job_id: Optional[UUID] = None) -> PayoutOutcome:
        def on_retry(attempt: int, exc: BaseException) -> None:
            increment_payout_attempt("retry")
            if job_id is None:
                return
            with self._conn_factory() as conn:
                jobs_repo.record_attempt(conn, job_id=job_id, error=describe_error(exc))

        return retry_transient(
            lambda: self._attempt(submission_id),
            attempts=self.retry_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            on_retry=on_retry,
            sleep=self._sleep,
        )

    # ------------------------------------------------------
    # one attempt == one transaction
    # ------------------------------------------------------

    def _attempt(self, submission_id: UUID) -> PayoutOutcome:
        failure: Optional[PipelineError] = None

        with self._conn_factory() as conn:
            sub = submissions_repo.lock_submission(conn, submission_id)
            if sub is None:
                raise NotFound(f"Submission {submission_id} not found")

            existing = payouts_repo.get_payout_by_submission(conn, sub.id)
            if existing is not None and existing.status == PayoutStatus.COMPLETED:
                logger.info("submission=%s already paid ref=%s", sub.id, existing.transfer_ref)
                increment_payout_attempt("replayed")
                return PayoutOutcome(
                    payout_id=existing.id,
                    transfer_ref=existing.transfer_ref,
                    synthetic=existing.synthetic,
                    budget_remaining=None,
                    replayed=True,
                )

            if sub.status != SubmissionStatus.APPROVED:
                raise InvalidInput(f"Submission {sub.id} is {sub.status.value}, expected APPROVED")

            result = verification_repo.get_verification_result(conn, sub.id)
            if result is None or result.decision != Decision.APPROVE:
                raise InvalidInput(f"Verification result not found for submission {sub.id}")

            quest = quests_repo.lock_quest(conn, sub.quest_id)
            if quest is None:
                raise NotFound(f"Quest {sub.quest_id} not found", code=ErrorCode.QUEST_NOT_FOUND)

            payout = payouts_repo.begin_attempt(
                conn,
                submission_id=sub.id,
                quest_id=quest.id,
                amount=quest.unit_amount,
                currency=quest.currency,
            )

            try:
                return self._spend(conn, sub, quest, result, payout)
            except PipelineError as exc:
                failure = exc
                payouts_repo.mark_failed(conn, payout_id=payout.id, error=describe_error(exc))
                record_audit_event(
                    conn,
                    entity_type="payout",
                    entity_id=str(payout.id),
                    actor_id=PAYOUT_ACTOR,
                    event_type="payout_failed",
                    payload={
                        "submission_id": str(sub.id),
                        "error": str(exc),
                        "kind": exc.kind.value,
                        "attempt": payout.attempts,
                    },
                )

        # FAILED payout (and any recredit) is committed at this point
        increment_payout_attempt("failed")
        logger.warning("payout failed submission=%s kind=%s: %s", submission_id, failure.kind.value, failure)
        raise failure

    def _spend(
        self,
        conn,
        sub: Submission,
        quest: Quest,
        result: VerificationResult,
        payout: Payout,
    ) -> PayoutOutcome:
        amount = quest.unit_amount

        if not quest.can_fund(amount):
            raise BudgetExhausted(f"Budget exhausted: {quest.budget_remaining} remaining, {amount} needed")

        merchant = None
        if isinstance(result.trace, PipelineTrace):
            merchant = result.trace.verifier.fields.merchant

        # local DB reads only; bounded by the session statement_timeout
        auth = self.authorizer.authorize(
            conn,
            policy=quest.policy,
            amount=amount,
            wallet=sub.wallet,
            quest_id=quest.id,
            device_fingerprint=sub.device_fingerprint,
            budget_remaining=quest.budget_remaining,
            merchant=merchant,
        )
        if not auth.authorized:
            raise PolicyViolation(f"Policy violation: {auth.reason}")

        remaining = quests_repo.debit_budget(conn, quest_id=quest.id, amount=amount)
        if remaining is None:
            raise BudgetExhausted("Budget exhausted")

        try:
            transfer = call_with_timeout(
                lambda: self.rail.send(submission_id=sub.id, wallet=sub.wallet, amount=amount, currency=quest.currency),
                timeout_s=self.timeout_s,
                label="transfer rail",
            )
        except Exception as exc:
            restored = quests_repo.recredit_budget(conn, quest_id=quest.id, amount=amount)
            logger.warning("transfer failed submission=%s, recredited budget to %s", sub.id, restored)
            if isinstance(exc, PipelineError):
                raise
            raise PipelineError(f"Transfer failed: {type(exc).__name__}: {exc}") from exc

        payouts_repo.mark_completed(
            conn,
            payout_id=payout.id,
            transfer_ref=transfer.transfer_ref,
            synthetic=transfer.synthetic,
        )
        moved = submissions_repo.transition_status(
            conn,
            submission_id=sub.id,
            from_status=SubmissionStatus.APPROVED,
            new_status=SubmissionStatus.PAID,
        )
        if not moved:
            # row is locked by us; anything else is a bug, roll the whole attempt back
            raise RuntimeError(f"Submission {sub.id} left APPROVED while locked")

        record_audit_event(
            conn,
            entity_type="payout",
            entity_id=str(payout.id),
            actor_id=PAYOUT_ACTOR,
            event_type="payout_completed",
            payload={
                "submission_id": str(sub.id),
                "quest_id": str(quest.id),
                "amount": amount,
                "currency": quest.currency,
                "transfer_ref": transfer.transfer_ref,
                "synthetic": transfer.synthetic,
                "budget_remaining": remaining,
                "decision_trace": result.trace.to_dict(),
                "justification_hash": text_hash(sub.justification_text),
                "stages": stage_ids(result),
            },
        )
        record_audit_event(
            conn,
            entity_type="submission",
            entity_id=str(sub.id),
            actor_id=SYSTEM_ACTOR,
            event_type="status_changed",
            payload={"from": SubmissionStatus.APPROVED.value, "to": SubmissionStatus.PAID.value},
        )

        increment_payout_attempt("success")
        logger.info(
            "payout completed submission=%s amount=%s ref=%s synthetic=%s remaining=%s",
            sub.id,
            amount,
            transfer.transfer_ref,
            transfer.synthetic,
            remaining,
        )
        return PayoutOutcome(
            payout_id=payout.id,
            transfer_ref=transfer.transfer_ref,
            synthetic=transfer.synthetic,
            budget_remaining=remaining,
        )
