from __future__ import annotations

import uuid
from datetime import datetime, timezone

from app.risk.engine import (
    DUPLICATE_FLAG,
    FUZZY_FLAG,
    VELOCITY_FLAG,
    RiskConfig,
    assess_risk,
    local_midnight,
)
from app.risk.fingerprint import fuzzy_fingerprint, receipt_fingerprint
from app.risk.quality import score_justification
from app.submissions.model import Submission, SubmissionStatus
from app.verification.model import ReceiptFields
from services import metrics

NOW = datetime(2025, 1, 20, 15, 0, tzinfo=timezone.utc)
CHEWY = ReceiptFields(merchant="Chewy", date_iso="2025-01-15", amount_minor=2833)


class StubLookups:
    def __init__(self, exact=None, fuzzy=None, device_count=0):
        self.exact = exact
        self.fuzzy = fuzzy
        self.device_count = device_count
        self.calls = []

    def find_exact_duplicate(self, *, wallet, exclude_id, fingerprint):
        self.calls.append("exact")
        return self.exact

    def find_fuzzy_duplicate(self, *, wallet, exclude_id, fingerprint, since):
        self.calls.append("fuzzy")
        self.fuzzy_since = since
        return self.fuzzy

    def count_device_approvals(self, *, device_fingerprint, quest_id, exclude_id, since):
        self.calls.append("device")
        self.device_since = since
        return self.device_count


def _submission(**kw):
    base = dict(
        id=uuid.uuid4(),
        quest_id=uuid.uuid4(),
        wallet="0xabc",
        device_fingerprint="dev-1",
        content_hash="h",
        receipt_path="h.jpg",
        zip_prefix="941",
        justification_text="bought food for my dog",
        status=SubmissionStatus.PROCESSING,
    )
    base.update(kw)
    return Submission(**base)


def test_exact_duplicate_short_circuits_to_max_risk():
    prior = str(uuid.uuid4())
    lookups = StubLookups(exact=prior, fuzzy="ignored", device_count=99)

    risk = assess_risk(_submission(), CHEWY, lookups, config=RiskConfig(), now=NOW)

    assert risk.risk_score == 1.0
    assert risk.flags == [DUPLICATE_FLAG]
    assert risk.duplicate_of == prior
    assert risk.duplicate is True
    assert lookups.calls == ["exact"]
    assert metrics.get_counter("risk_flags_total", {"flag": DUPLICATE_FLAG}) == 1


def test_clean_history_scores_zero():
    risk = assess_risk(_submission(), CHEWY, StubLookups(), config=RiskConfig(), now=NOW)
    assert risk.risk_score == 0.0
    assert risk.flags == []
    assert risk.receipt_fingerprint == receipt_fingerprint(CHEWY)
    assert risk.fuzzy_fingerprint == fuzzy_fingerprint(CHEWY)


def test_fuzzy_and_velocity_flags_cap_at_half():
    lookups = StubLookups(fuzzy=str(uuid.uuid4()), device_count=3)
    risk = assess_risk(_submission(), CHEWY, lookups, config=RiskConfig(device_velocity_cap=3), now=NOW)

    assert risk.flags == [FUZZY_FLAG, VELOCITY_FLAG]
    assert risk.risk_score == 0.5
    assert risk.device_approvals_today == 3
    assert "Device velocity limit exceeded: 3 approvals today" in risk.reasons


def test_windows_follow_config():
    lookups = StubLookups()
    assess_risk(
        _submission(),
        CHEWY,
        lookups,
        config=RiskConfig(fuzzy_window_days=7, timezone_name="America/New_York"),
        now=NOW,
    )
    assert (NOW - lookups.fuzzy_since).days == 7
    # 15:00 UTC is 10:00 in New York; the day started at 05:00 UTC
    assert lookups.device_since == datetime(2025, 1, 20, 5, 0, tzinfo=timezone.utc)


def test_local_midnight_utc():
    assert local_midnight(NOW, "UTC") == datetime(2025, 1, 20, tzinfo=timezone.utc)


def test_quality_is_informational_only():
    config = RiskConfig(quality_enabled=True, banned_phrases=("just testing",), keywords=("dog",))
    risk = assess_risk(_submission(justification_text="just testing"), CHEWY, StubLookups(), config=config, now=NOW)

    assert risk.risk_score == 0.0
    assert risk.quality_score is not None and risk.quality_score < 1.0
    assert "boilerplate" in risk.quality_flags


def test_fingerprint_normalizes_merchant_and_time():
    a = ReceiptFields(merchant="  CHEWY ", date_iso="2025-01-15T10:00:00Z", amount_minor=2833)
    assert receipt_fingerprint(a) == receipt_fingerprint(CHEWY)
    b = ReceiptFields(merchant="chewy", date_iso="2025-01-15", amount_minor=2900)
    assert receipt_fingerprint(b) != receipt_fingerprint(CHEWY)
    assert fuzzy_fingerprint(b) == fuzzy_fingerprint(CHEWY)


def test_score_justification_flags():
    q = score_justification(
        "my puppy loves the new chew toy and the kibble we picked up for him this week",
        min_words=12,
        short_words=20,
        banned_phrases=["this is a test"],
        keywords=["puppy"],
    )
    assert q.flags == ["short"]
    assert q.score == 0.9

    empty = score_justification("", min_words=12, short_words=20, banned_phrases=[], keywords=["dog"])
    assert empty.flags == ["too_short", "no_domain_keyword"]
    assert empty.score == 0.6
