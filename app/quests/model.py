from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from app.errors import InvalidInput


class VelocityPolicy(BaseModel):
    max_approvals_per_device_per_day: Optional[int] = Field(default=None, ge=1)
    max_payouts_per_wallet_per_day: Optional[int] = Field(default=None, ge=1)


class SpendPolicy(BaseModel):
    """Limits the spend authorizer enforces for one quest (amounts in minor units)."""

    max_per_payout: Optional[int] = Field(default=None, ge=1)
    max_per_day: Optional[int] = Field(default=None, ge=1)
    vendor_allow_list: list[str] = Field(default_factory=list)
    velocity: VelocityPolicy = Field(default_factory=VelocityPolicy)


def parse_spend_policy(raw: dict[str, Any] | None) -> SpendPolicy:
    try:
        return SpendPolicy.model_validate(raw or {})
    except ValidationError as exc:
        raise InvalidInput(f"Malformed spend policy: {exc.errors()[0].get('msg')}")


@dataclass(frozen=True)
class Quest:
    id: UUID
    name: str
    currency: str
    unit_amount: int
    budget_total: int
    budget_remaining: int
    eligibility: list[dict[str, Any]] = field(default_factory=list)
    spend_policy: dict[str, Any] = field(default_factory=dict)

    @property
    def policy(self) -> SpendPolicy:
        return parse_spend_policy(self.spend_policy)

    def can_fund(self, amount: int) -> bool:
        return self.budget_remaining >= amount


@dataclass(frozen=True)
class Contributor:
    wallet: str
    age: Optional[int] = None
