from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from uuid import UUID
from datetime import datetime
from enum import Enum


class PayoutStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Payout:
    id: UUID
    submission_id: UUID
    quest_id: UUID
    amount: int
    currency: str
    transfer_ref: Optional[str]
    synthetic: bool
    status: PayoutStatus
    last_error: Optional[str]
    attempts: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class PayoutOutcome:
    """What the executor hands back to the worker."""

    payout_id: UUID
    transfer_ref: str
    synthetic: bool
    budget_remaining: Optional[int]
    replayed: bool = False
