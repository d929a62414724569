from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from uuid import UUID
from datetime import datetime
from enum import Enum


class SubmissionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    PAID = "PAID"


@dataclass(frozen=True)
class Submission:
    id: UUID
    quest_id: UUID
    wallet: str
    device_fingerprint: str
    content_hash: str
    receipt_path: str
    zip_prefix: str
    justification_text: str
    status: SubmissionStatus
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
