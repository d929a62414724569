from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from uuid import UUID
from datetime import datetime
from enum import Enum


class JobType(str, Enum):
    VERIFY = "VERIFY"
    PAYOUT = "PAYOUT"


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Job:
    id: UUID
    type: JobType
    entity_id: UUID
    status: JobStatus
    attempts: int
    last_error: Optional[str]
    created_at: datetime
    claimed_by: Optional[str] = None
