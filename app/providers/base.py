# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol
from uuid import UUID

from app.quests.model import SpendPolicy
from app.verification.model import ReceiptFields


@dataclass(frozen=True)
class Authorization:
    authorized: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class TransferResult:
    transfer_ref: str
    synthetic: bool
    response: Optional[dict[str, Any]] = None


class FieldExtractor(Protocol):
    """Raises ExtractionFailed (UNREADABLE) or a transient error."""

    def extract(self, image_bytes: bytes, content_hash: str) -> ReceiptFields: ...


class SpendAuthorizer(Protocol):
    def authorize(
        self,
        conn,
        *,
        policy: SpendPolicy,
        amount: int,
        wallet: str,
        quest_id: UUID,
        device_fingerprint: str,
        budget_remaining: int,
        merchant: Optional[str] = None,
    ) -> Authorization: ...


class TransferRail(Protocol):
    def send(self, *, submission_id: UUID, wallet: str, amount: int, currency: str) -> TransferResult: ...
