# schemas.py
from __future__ import annotations

from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Any, Optional, List, Literal

from app.jobs.model import Job

JobTypeName = Literal["VERIFY", "PAYOUT"]


# -------- JOBS --------
class EnqueueJobRequest(BaseModel):
    type: JobTypeName
    entity_id: UUID


class JobResponse(BaseModel):
    id: UUID
    type: JobTypeName
    entity_id: UUID
    status: str
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.id,
            type=job.type.value,
            entity_id=job.entity_id,
            status=job.status.value,
            attempts=job.attempts,
            last_error=job.last_error,
            created_at=job.created_at,
        )


class QueueStatsResponse(BaseModel):
    queued: int
    processing: int
    completed: int
    failed: int


# -------- SUBMISSIONS --------
class SubmissionStatusResponse(BaseModel):
    submission_id: UUID
    quest_id: UUID
    status: str
    decision: Optional[str] = None
    risk_score: Optional[float] = None
    decision_trace: Optional[dict[str, Any]] = None
    rejection_reasons: Optional[List[str]] = None
    transfer_reference: Optional[str] = None
    payout_status: Optional[str] = None
    synthetic: Optional[bool] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


# -------- ADMIN --------
class ForceApproveRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=500)


class ForceApproveResponse(BaseModel):
    submission_id: UUID
    previous_status: str
    status: str
    payout_job_id: Optional[UUID] = None


class RetryPayoutResponse(BaseModel):
    submission_id: UUID
    payout_id: UUID
    job_id: UUID
