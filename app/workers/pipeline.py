# app/workers/pipeline.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional
from uuid import UUID

from app.errors import ErrorCode, ExtractionFailed, NotFound, PipelineError, describe_error
from app.jobs import repository as jobs_repo
from app.jobs.model import Job, JobType
from app.payouts.executor import PayoutExecutor
from app.providers.base import FieldExtractor
from app.providers.extractor import read_receipt
from app.quests import repository as quests_repo
from app.risk import repository as risk_repo
from app.risk.engine import RiskConfig, assess_risk
from app.risk.repository import SqlRiskLookups
from app.submissions import repository as submissions_repo
from app.submissions.model import Submission, SubmissionStatus
from app.verification import repository as verification_repo
from app.verification.model import Decision, PipelineTrace, VerificationResult
from app.verification.predicates import parse_predicates
from app.verification.verifier import ContributorFacts, verify
from services.audit_log import SYSTEM_ACTOR, record_audit_event
from services.retry import call_with_timeout, retry_transient

logger = logging.getLogger("questpay.pipeline")


class Pipeline:
    """VERIFY = rule verifier + risk engine; PAYOUT = payout executor."""

    def __init__(
        self,
        *,
        extractor: FieldExtractor,
        executor: PayoutExecutor,
        conn_factory=None,
        risk_config: Optional[RiskConfig] = None,
        approval_threshold: float = 0.5,
        receipts_dir: str | Path = "uploads",
        demo_mode: bool = False,
        timeout_s: float = 10.0,
        retry_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if conn_factory is None:
            from db import get_conn as conn_factory
        self.extractor = extractor
        self.executor = executor
        self._conn_factory = conn_factory
        self.risk_config = risk_config
        self.approval_threshold = approval_threshold
        self.receipts_dir = receipts_dir
        self.demo_mode = demo_mode
        self.timeout_s = timeout_s
        self.retry_attempts = retry_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._retry_kwargs = {"sleep": sleep} if sleep is not None else {}

    def run_job(self, job: Job) -> None:
        if job.type == JobType.VERIFY:
            self.verify_submission(job.entity_id)
        elif job.type == JobType.PAYOUT:
            self.executor.execute(job.entity_id, job_id=job.id)
        else:
            raise PipelineError(f"Unknown job type: {job.type}")

    # ------------------------------------------------------
    # VERIFY
    # ------------------------------------------------------

    def verify_submission(self, submission_id: UUID) -> Optional[VerificationResult]:
        with self._conn_factory() as conn:
            sub = submissions_repo.lock_submission(conn, submission_id)
            if sub is None:
                raise NotFound(f"Submission {submission_id} not found")
            if sub.status != SubmissionStatus.PENDING:
                logger.info("submission=%s is %s, nothing to verify", sub.id, sub.status.value)
                return None
            submissions_repo.transition_status(
                conn,
                submission_id=sub.id,
                from_status=SubmissionStatus.PENDING,
                new_status=SubmissionStatus.PROCESSING,
            )
            quest = quests_repo.get_quest(conn, sub.quest_id)
            contributor = quests_repo.get_contributor(conn, sub.wallet)

        try:
            if quest is None:
                raise NotFound(f"Quest {sub.quest_id} not found", code=ErrorCode.QUEST_NOT_FOUND)
            predicates = parse_predicates(quest.eligibility)

            image = self._load_receipt(sub)
            fields = retry_transient(
                lambda: call_with_timeout(
                    lambda: self.extractor.extract(image, sub.content_hash),
                    timeout_s=self.timeout_s,
                    label="field extractor",
                ),
                attempts=self.retry_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                **self._retry_kwargs,
            )

            facts = ContributorFacts(zip_prefix=sub.zip_prefix, age=contributor.age if contributor else None)
            with self._conn_factory() as conn:
                risk_repo.lock_risk_scope(conn, wallet=sub.wallet, device_fingerprint=sub.device_fingerprint)
                verifier_trace = verify(predicates, fields, facts)
                risk = assess_risk(sub, fields, SqlRiskLookups(conn), config=self.risk_config)

                approved = verifier_trace.all_passed and risk.risk_score < self.approval_threshold
                result = VerificationResult(
                    submission_id=sub.id,
                    decision=Decision.APPROVE if approved else Decision.REJECT,
                    trace=PipelineTrace(verifier=verifier_trace, risk=risk),
                    risk_score=risk.risk_score,
                    reasons=verifier_trace.failure_reasons + list(risk.reasons),
                )
                if not verification_repo.save_verification_result(conn, result):
                    raise PipelineError(f"Verification result for {sub.id} is frozen")

                new_status = SubmissionStatus.APPROVED if approved else SubmissionStatus.REJECTED
                moved = submissions_repo.transition_status(
                    conn,
                    submission_id=sub.id,
                    from_status=SubmissionStatus.PROCESSING,
                    new_status=new_status,
                )
                if not moved:
                    raise PipelineError(f"Submission {sub.id} left PROCESSING during verification")

                if approved:
                    jobs_repo.enqueue(conn, job_type=JobType.PAYOUT, entity_id=sub.id)

                record_audit_event(
                    conn,
                    entity_type="submission",
                    entity_id=str(sub.id),
                    actor_id="stage:verifier",
                    event_type="verification_completed",
                    payload={
                        "decision": result.decision.value,
                        "risk_score": result.risk_score,
                        "reasons": result.reasons,
                        "flags": list(risk.flags),
                    },
                )

            logger.info(
                "submission=%s decision=%s risk=%.2f reasons=%d",
                sub.id,
                result.decision.value,
                result.risk_score,
                len(result.reasons),
            )
            return result

        except Exception as exc:
            self._mark_failed(sub, exc)
            raise

    def _load_receipt(self, sub: Submission) -> bytes:
        try:
            return read_receipt(self.receipts_dir, sub.receipt_path)
        except ExtractionFailed:
            # demo submissions are resolved from fixtures by content hash alone
            if self.demo_mode:
                return b""
            raise

    def _mark_failed(self, sub: Submission, exc: BaseException) -> None:
        message = describe_error(exc)
        try:
            with self._conn_factory() as conn:
                submissions_repo.transition_status(
                    conn,
                    submission_id=sub.id,
                    from_status=SubmissionStatus.PROCESSING,
                    new_status=SubmissionStatus.FAILED,
                    last_error=message[:2000],
                )
                record_audit_event(
                    conn,
                    entity_type="submission",
                    entity_id=str(sub.id),
                    actor_id=SYSTEM_ACTOR,
                    event_type="verification_failed",
                    payload={"error": message},
                )
        except Exception:
            # the original error is what the job records; this one is only logged
            logger.exception("could not mark submission=%s FAILED", sub.id)
