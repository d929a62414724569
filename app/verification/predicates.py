# app/verification/predicates.py
"""
Eligibility predicates.

A quest stores its predicates as ``{"field": ..., "op": ..., "value": ...}``
objects. Each known ``field`` maps to exactly one typed variant below; a
predicate naming any other field parses to ``UnknownPredicate`` and always
fails. A known field with a bad operator or value is a malformed quest
definition and raises ``InvalidInput``.
"""
from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from app.errors import InvalidInput

NumericOp = Literal["<=", ">="]


def _as_str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError("value must be a string or a list of strings")
    items = [str(v).strip() for v in value if str(v).strip()]
    if not items:
        raise ValueError("value must not be empty")
    return items


class _Predicate(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def context(self) -> str:
        raise NotImplementedError


class MerchantPredicate(_Predicate):
    field: Literal["merchant"] = "merchant"
    op: Literal["in"] = "in"
    value: list[str]

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> list[str]:
        return _as_str_list(v)

    def context(self) -> str:
        return f"in [{', '.join(self.value)}]"


class ReceiptAgePredicate(_Predicate):
    field: Literal["receipt_age_days"] = "receipt_age_days"
    op: NumericOp
    value: int

    def context(self) -> str:
        return f"{self.op} {self.value} days"


class AmountPredicate(_Predicate):
    """Bound on the receipt total, in integer minor units (cents)."""

    field: Literal["amount"] = "amount"
    op: NumericOp
    value: int

    def context(self) -> str:
        return f"{self.op} {self.value}"


class ZipPrefixPredicate(_Predicate):
    field: Literal["zip_prefix"] = "zip_prefix"
    op: Literal["in"] = "in"
    value: list[str]

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> list[str]:
        return _as_str_list(v)

    def context(self) -> str:
        return f"in [{', '.join(self.value)}]"


class AgePredicate(_Predicate):
    field: Literal["age"] = "age"
    op: NumericOp
    value: int

    def context(self) -> str:
        return f"{self.op} {self.value}"


class UnknownPredicate(_Predicate):
    model_config = ConfigDict(frozen=True, extra="ignore")

    field: str
    op: str = ""
    value: Any = None

    def context(self) -> str:
        return f"{self.op} {self.value!r}".strip()


Predicate = Union[
    MerchantPredicate,
    ReceiptAgePredicate,
    AmountPredicate,
    ZipPrefixPredicate,
    AgePredicate,
    UnknownPredicate,
]

PREDICATE_KINDS: dict[str, type[_Predicate]] = {
    "merchant": MerchantPredicate,
    "receipt_age_days": ReceiptAgePredicate,
    "amount": AmountPredicate,
    "zip_prefix": ZipPrefixPredicate,
    "age": AgePredicate,
}


def parse_predicate(raw: Any, *, index: int = 0) -> Predicate:
    if not isinstance(raw, dict):
        raise InvalidInput(f"Predicate #{index} must be an object, got {type(raw).__name__}")

    field = raw.get("field")
    if not isinstance(field, str) or not field.strip():
        raise InvalidInput(f"Predicate #{index} is missing 'field'")

    kind = PREDICATE_KINDS.get(field.strip())
    if kind is None:
        return UnknownPredicate(field=field, op=str(raw.get("op") or ""), value=raw.get("value"))

    try:
        return kind.model_validate({**raw, "field": field.strip()})
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise InvalidInput(f"Malformed '{field}' predicate #{index} ({loc}): {first.get('msg')}")


def parse_predicates(raw: Any) -> list[Predicate]:
    """Parse a quest's ordered eligibility list. An empty or missing list is invalid."""
    if not isinstance(raw, list) or not raw:
        raise InvalidInput("Quest rules not found")
    return [parse_predicate(item, index=i) for i, item in enumerate(raw)]
