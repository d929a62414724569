# routes/jobs.py
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from app.errors import InvalidState, NotFound
from app.jobs import repository as jobs_repo
from app.jobs.model import JobType
from app.submissions import repository as submissions_repo
from app.submissions.model import SubmissionStatus
from db import get_conn
from schemas import EnqueueJobRequest, JobResponse, QueueStatsResponse
from services.http_errors import to_http_exception

logger = logging.getLogger("questpay.api")
router = APIRouter(prefix="/v1", tags=["jobs"])

# the status a submission must be in for each job type to make sense
_REQUIRED_STATUS = {
    JobType.VERIFY: SubmissionStatus.PENDING,
    JobType.PAYOUT: SubmissionStatus.APPROVED,
}


@router.post("/jobs", response_model=JobResponse, status_code=201)
def enqueue_job(req: EnqueueJobRequest):
    job_type = JobType(req.type)
    try:
        with get_conn() as conn:
            sub = submissions_repo.get_submission(conn, req.entity_id)
            if sub is None:
                raise NotFound(f"Submission {req.entity_id} not found")
            required = _REQUIRED_STATUS[job_type]
            if sub.status != required:
                raise InvalidState(f"{job_type.value} needs a {required.value} submission, got {sub.status.value}")
            if jobs_repo.has_open_job(conn, job_type=job_type, entity_id=sub.id):
                raise InvalidState(f"A {job_type.value} job for {sub.id} is already queued")
            job = jobs_repo.enqueue(conn, job_type=job_type, entity_id=sub.id)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e)

    logger.info("enqueued job=%s type=%s entity=%s", job.id, job.type.value, job.entity_id)
    return JobResponse.from_job(job)


@router.get("/queue/stats", response_model=QueueStatsResponse)
def queue_stats():
    with get_conn() as conn:
        stats = jobs_repo.queue_stats(conn)
    return QueueStatsResponse(**stats)
