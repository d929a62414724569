# app/verification/verifier.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from app.verification.model import PredicateOutcome, ReceiptFields, VerifierTrace
from app.verification.predicates import (
    AgePredicate,
    AmountPredicate,
    MerchantPredicate,
    Predicate,
    ReceiptAgePredicate,
    UnknownPredicate,
    ZipPrefixPredicate,
)


@dataclass(frozen=True)
class ContributorFacts:
    """What the verifier may know about the contributor besides the receipt."""

    zip_prefix: str = ""
    age: Optional[int] = None


def format_minor(amount_minor: int) -> str:
    """2833 -> '$28.33' (integer math only)."""
    sign = "-" if amount_minor < 0 else ""
    units, cents = divmod(abs(int(amount_minor)), 100)
    return f"{sign}${units}.{cents:02d}"


def _compare(observed: int, op: str, bound: int) -> bool:
    if op == "<=":
        return observed <= bound
    if op == ">=":
        return observed >= bound
    raise ValueError(f"unsupported operator {op!r}")


def _parse_receipt_date(value: str) -> date:
    # "2025-01-15" or "2025-01-15T10:22:00Z"
    return date.fromisoformat((value or "").strip()[:10])


def _check_merchant(p: MerchantPredicate, fields: ReceiptFields, facts: ContributorFacts, today: date) -> PredicateOutcome:
    observed = fields.merchant
    merchant = (observed or "").strip().lower()
    allowed = [a.lower() for a in p.value]
    ok = bool(merchant) and any(a in merchant or merchant in a for a in allowed)
    reason = None if ok else f'Merchant "{observed}" not in allowed list: {", ".join(p.value)}'
    return PredicateOutcome(field=p.field, context=p.context(), observed=observed, passed=ok, reason=reason)


def _check_receipt_age(p: ReceiptAgePredicate, fields: ReceiptFields, facts: ContributorFacts, today: date) -> PredicateOutcome:
    try:
        receipt_date = _parse_receipt_date(fields.date_iso)
    except ValueError:
        return PredicateOutcome(
            field=p.field,
            context=p.context(),
            observed="invalid_date",
            passed=False,
            reason=f"Could not parse receipt date: {fields.date_iso}",
        )

    age_days = (today - receipt_date).days
    ok = _compare(age_days, p.op, p.value)
    reason = None if ok else f"Receipt age {age_days} days does not satisfy {p.op} {p.value}"
    return PredicateOutcome(field=p.field, context=p.context(), observed=age_days, passed=ok, reason=reason)


def _check_amount(p: AmountPredicate, fields: ReceiptFields, facts: ContributorFacts, today: date) -> PredicateOutcome:
    observed = int(fields.amount_minor)
    ok = _compare(observed, p.op, p.value)
    reason = None
    if not ok:
        reason = f"Amount {format_minor(observed)} does not satisfy {p.op} {format_minor(p.value)}"
    return PredicateOutcome(field=p.field, context=p.context(), observed=observed, passed=ok, reason=reason)


def _check_zip_prefix(p: ZipPrefixPredicate, fields: ReceiptFields, facts: ContributorFacts, today: date) -> PredicateOutcome:
    observed = (facts.zip_prefix or "").strip()
    ok = bool(observed) and any(observed.startswith(prefix) for prefix in p.value)
    reason = None if ok else f'ZIP prefix "{observed}" not in allowed list: {", ".join(p.value)}'
    return PredicateOutcome(field=p.field, context=p.context(), observed=observed, passed=ok, reason=reason)


def _check_age(p: AgePredicate, fields: ReceiptFields, facts: ContributorFacts, today: date) -> PredicateOutcome:
    if facts.age is None:
        return PredicateOutcome(
            field=p.field,
            context=p.context(),
            observed="unknown",
            passed=False,
            reason="Contributor age not provided",
        )
    ok = _compare(int(facts.age), p.op, p.value)
    reason = None if ok else f"Age {facts.age} does not satisfy {p.op} {p.value}"
    return PredicateOutcome(field=p.field, context=p.context(), observed=facts.age, passed=ok, reason=reason)


def _check_unknown(p: UnknownPredicate, fields: ReceiptFields, facts: ContributorFacts, today: date) -> PredicateOutcome:
    return PredicateOutcome(
        field=p.field,
        context=p.context(),
        observed="unknown_field",
        passed=False,
        reason=f"Unknown predicate field: {p.field}",
    )


_CHECKS: dict[type, Callable[..., PredicateOutcome]] = {
    MerchantPredicate: _check_merchant,
    ReceiptAgePredicate: _check_receipt_age,
    AmountPredicate: _check_amount,
    ZipPrefixPredicate: _check_zip_prefix,
    AgePredicate: _check_age,
    UnknownPredicate: _check_unknown,
}


def evaluate_predicate(
    predicate: Predicate,
    fields: ReceiptFields,
    facts: ContributorFacts,
    *,
    today: date,
) -> PredicateOutcome:
    check = _CHECKS[type(predicate)]
    return check(predicate, fields, facts, today)


def verify(
    predicates: list[Predicate],
    fields: ReceiptFields,
    facts: ContributorFacts,
    *,
    today: Optional[date] = None,
) -> VerifierTrace:
    """
    Evaluate every predicate in order. No short-circuit: the trace always holds
    one outcome per predicate so rejections can list every reason.
    """
    today = today or date.today()
    outcomes = [evaluate_predicate(p, fields, facts, today=today) for p in predicates]
    return VerifierTrace(outcomes=outcomes, fields=fields, confidence=fields.confidence)
