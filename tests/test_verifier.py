from __future__ import annotations

from datetime import date

import pytest

from app.errors import InvalidInput
from app.verification.model import ReceiptFields
from app.verification.predicates import (
    AmountPredicate,
    MerchantPredicate,
    UnknownPredicate,
    parse_predicate,
    parse_predicates,
)
from app.verification.verifier import ContributorFacts, format_minor, verify

TODAY = date(2025, 1, 20)


def _fields(merchant="chewy", date_iso="2025-01-15", amount_minor=2833):
    return ReceiptFields(merchant=merchant, date_iso=date_iso, amount_minor=amount_minor, confidence=0.95)


def test_amount_over_bound_reports_major_units():
    preds = parse_predicates([{"field": "amount", "op": "<=", "value": 5000}])
    trace = verify(preds, _fields(amount_minor=5001), ContributorFacts(), today=TODAY)

    assert trace.all_passed is False
    assert trace.failure_reasons == ["Amount $50.01 does not satisfy <= $50.00"]
    assert trace.outcomes[0].observed == 5001


def test_amount_at_bound_passes():
    preds = parse_predicates([{"field": "amount", "op": "<=", "value": 5000}])
    trace = verify(preds, _fields(amount_minor=5000), ContributorFacts(), today=TODAY)
    assert trace.all_passed is True
    assert trace.failure_reasons == []


def test_merchant_match_is_case_insensitive_substring():
    preds = parse_predicates([{"field": "merchant", "op": "in", "value": ["Chewy", "Petco"]}])
    assert verify(preds, _fields(merchant="CHEWY.COM"), ContributorFacts(), today=TODAY).all_passed
    trace = verify(preds, _fields(merchant="walmart"), ContributorFacts(), today=TODAY)
    assert trace.failure_reasons == ['Merchant "walmart" not in allowed list: Chewy, Petco']


def test_empty_merchant_fails():
    preds = parse_predicates([{"field": "merchant", "op": "in", "value": "Chewy"}])
    assert not verify(preds, _fields(merchant=""), ContributorFacts(), today=TODAY).all_passed


def test_receipt_age_uses_calendar_days():
    preds = parse_predicates([{"field": "receipt_age_days", "op": "<=", "value": 5}])
    assert verify(preds, _fields(date_iso="2025-01-15"), ContributorFacts(), today=TODAY).all_passed

    trace = verify(preds, _fields(date_iso="2025-01-14T23:59:00Z"), ContributorFacts(), today=TODAY)
    assert trace.failure_reasons == ["Receipt age 6 days does not satisfy <= 5"]


def test_unparsable_date_fails_closed():
    preds = parse_predicates([{"field": "receipt_age_days", "op": "<=", "value": 30}])
    trace = verify(preds, _fields(date_iso=""), ContributorFacts(), today=TODAY)
    assert trace.outcomes[0].observed == "invalid_date"
    assert not trace.all_passed


def test_zip_prefix_and_age_use_contributor_facts():
    preds = parse_predicates(
        [
            {"field": "zip_prefix", "op": "in", "value": ["941", "100"]},
            {"field": "age", "op": ">=", "value": 21},
        ]
    )
    ok = verify(preds, _fields(), ContributorFacts(zip_prefix="94107", age=29), today=TODAY)
    assert ok.all_passed

    bad = verify(preds, _fields(), ContributorFacts(zip_prefix="606", age=None), today=TODAY)
    assert bad.failure_reasons == [
        'ZIP prefix "606" not in allowed list: 941, 100',
        "Contributor age not provided",
    ]


def test_every_predicate_is_evaluated_in_order():
    preds = parse_predicates(
        [
            {"field": "merchant", "op": "in", "value": ["Petco"]},
            {"field": "amount", "op": ">=", "value": 9999},
            {"field": "age", "op": ">=", "value": 18},
        ]
    )
    trace = verify(preds, _fields(), ContributorFacts(age=40), today=TODAY)
    assert [o.field for o in trace.outcomes] == ["merchant", "amount", "age"]
    assert [o.passed for o in trace.outcomes] == [False, False, True]
    assert len(trace.failure_reasons) == 2


def test_unknown_field_parses_and_always_fails():
    pred = parse_predicate({"field": "loyalty_tier", "op": "==", "value": "gold"})
    assert isinstance(pred, UnknownPredicate)

    trace = verify([pred], _fields(), ContributorFacts(), today=TODAY)
    assert trace.failure_reasons == ["Unknown predicate field: loyalty_tier"]


def test_known_field_with_bad_operator_is_invalid_input():
    with pytest.raises(InvalidInput):
        parse_predicates([{"field": "amount", "op": "<", "value": 10}])


def test_missing_rules_are_invalid_input():
    with pytest.raises(InvalidInput, match="Quest rules not found"):
        parse_predicates([])
    with pytest.raises(InvalidInput):
        parse_predicates(None)
    with pytest.raises(InvalidInput):
        parse_predicates(["merchant"])


def test_parse_returns_typed_variants():
    preds = parse_predicates(
        [
            {"field": "merchant", "op": "in", "value": "Chewy"},
            {"field": "amount", "op": "<=", "value": "5000"},
        ]
    )
    assert isinstance(preds[0], MerchantPredicate)
    assert preds[0].value == ["Chewy"]
    assert isinstance(preds[1], AmountPredicate)
    assert preds[1].value == 5000


def test_format_minor():
    assert format_minor(2833) == "$28.33"
    assert format_minor(5) == "$0.05"
    assert format_minor(-150) == "-$1.50"
