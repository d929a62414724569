# app/verification/model.py
"""
Decision trace types.

The persisted trace is a tagged union: ``{"kind": "pipeline", "verifier":
{...}, "risk": {...}}`` for a normal run, or ``{"kind": "override", ...}``
when an admin forced the decision. ``trace_from_dict`` restores either shape.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID


class Decision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


@dataclass(frozen=True)
class ReceiptFields:
    merchant: str
    date_iso: str
    amount_minor: int
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ReceiptFields":
        return cls(
            merchant=str(raw.get("merchant") or ""),
            date_iso=str(raw.get("date_iso") or raw.get("dateISO") or raw.get("date") or ""),
            amount_minor=int(raw.get("amount_minor") or raw.get("amountCents") or 0),
            confidence=float(raw.get("confidence") or 0.0),
        )


@dataclass(frozen=True)
class PredicateOutcome:
    field: str
    context: str
    observed: Any
    passed: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class VerifierTrace:
    outcomes: list[PredicateOutcome]
    fields: ReceiptFields
    confidence: float
    kind: str = "verifier"

    @property
    def all_passed(self) -> bool:
        return all(o.passed for o in self.outcomes)

    @property
    def failure_reasons(self) -> list[str]:
        return [o.reason for o in self.outcomes if not o.passed and o.reason]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "outcomes": [asdict(o) for o in self.outcomes],
            "fields": self.fields.to_dict(),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "VerifierTrace":
        return cls(
            outcomes=[PredicateOutcome(**o) for o in raw.get("outcomes") or []],
            fields=ReceiptFields.from_dict(raw.get("fields") or {}),
            confidence=float(raw.get("confidence") or 0.0),
        )


@dataclass(frozen=True)
class RiskTrace:
    risk_score: float
    flags: list[str]
    reasons: list[str]
    receipt_fingerprint: str
    fuzzy_fingerprint: str
    duplicate_of: Optional[str] = None
    device_approvals_today: int = 0
    quality_score: Optional[float] = None
    quality_flags: list[str] = field(default_factory=list)
    kind: str = "risk"

    @property
    def duplicate(self) -> bool:
        return self.duplicate_of is not None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "RiskTrace":
        known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class PipelineTrace:
    verifier: VerifierTrace
    risk: RiskTrace
    kind: str = "pipeline"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "verifier": self.verifier.to_dict(), "risk": self.risk.to_dict()}


@dataclass(frozen=True)
class OverrideTrace:
    actor_id: str
    reason: str
    kind: str = "override"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "forced": True, "actor_id": self.actor_id, "reason": self.reason}


DecisionTrace = Union[PipelineTrace, OverrideTrace]


def trace_from_dict(raw: dict[str, Any]) -> DecisionTrace:
    kind = (raw or {}).get("kind")
    if kind == "pipeline":
        return PipelineTrace(
            verifier=VerifierTrace.from_dict(raw["verifier"]),
            risk=RiskTrace.from_dict(raw["risk"]),
        )
    if kind == "override":
        return OverrideTrace(actor_id=str(raw.get("actor_id") or ""), reason=str(raw.get("reason") or ""))
    raise ValueError(f"Unknown decision trace kind: {kind!r}")


@dataclass(frozen=True)
class VerificationResult:
    submission_id: UUID
    decision: Decision
    trace: DecisionTrace
    risk_score: float
    reasons: list[str]
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None

    @property
    def fingerprints(self) -> tuple[Optional[str], Optional[str]]:
        if isinstance(self.trace, PipelineTrace):
            return self.trace.risk.receipt_fingerprint, self.trace.risk.fuzzy_fingerprint
        return None, None
