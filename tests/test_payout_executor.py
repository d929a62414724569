from __future__ import annotations

import threading
import uuid

import pytest

from app.errors import BudgetExhausted, InvalidInput, NotFound, PolicyViolation, TransientFailure
from app.jobs.model import JobType
from app.payouts.executor import PayoutExecutor
from app.payouts.model import PayoutStatus
from app.providers.authorizer import PolicySpendAuthorizer
from app.providers.base import TransferResult
from app.submissions.model import SubmissionStatus
from app.verification.model import ReceiptFields
from services import metrics

CHEWY = ReceiptFields(merchant="chewy", date_iso="2025-01-15", amount_minor=2833, confidence=0.95)


class ScriptedRail:
    """Returns or raises the scripted outcomes in order, then keeps succeeding."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0
        self._lock = threading.Lock()

    def send(self, *, submission_id, wallet, amount, currency):
        with self._lock:
            self.calls += 1
            outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return TransferResult(transfer_ref=f"tx-{submission_id}-{self.calls}", synthetic=False)


def _executor(store, rail, **kw):
    return PayoutExecutor(
        authorizer=PolicySpendAuthorizer(),
        rail=rail,
        conn_factory=store.transaction,
        retry_attempts=kw.pop("retry_attempts", 3),
        base_delay=0,
        max_delay=0,
        sleep=lambda s: None,
        **kw,
    )


def test_approved_submission_is_paid_once(store):
    quest = store.add_quest(unit_amount=500, budget_total=5000)
    sub = store.add_approved(quest, CHEWY)

    outcome = _executor(store, ScriptedRail()).execute(sub.id)

    assert outcome.replayed is False
    assert outcome.budget_remaining == 4500
    assert store.quests[quest.id].budget_remaining == 4500
    assert store.submissions[sub.id].status == SubmissionStatus.PAID

    payout = store.payouts[sub.id]
    assert payout.status == PayoutStatus.COMPLETED
    assert payout.transfer_ref == outcome.transfer_ref
    assert payout.amount == 500

    completed = store.events("payout_completed")[0]
    assert completed["payload"]["stages"] == ["stage:verifier", "stage:risk", "stage:payout"]
    assert completed["payload"]["decision_trace"]["kind"] == "pipeline"
    assert len(completed["payload"]["justification_hash"]) == 64
    assert metrics.get_counter("payout_attempts_total", {"result": "success"}) == 1


def test_second_execute_replays_without_spending(store):
    quest = store.add_quest(unit_amount=500, budget_total=5000)
    sub = store.add_approved(quest, CHEWY)
    rail = ScriptedRail()
    executor = _executor(store, rail)

    first = executor.execute(sub.id)
    second = executor.execute(sub.id)

    assert second.replayed is True
    assert second.transfer_ref == first.transfer_ref
    assert rail.calls == 1
    assert store.quests[quest.id].budget_remaining == 4500
    assert metrics.get_counter("payout_attempts_total", {"result": "replayed"}) == 1


def test_transient_transfer_failure_then_success(store):
    quest = store.add_quest(unit_amount=500, budget_total=5000)
    sub = store.add_approved(quest, CHEWY)
    job = store.enqueue_job(JobType.PAYOUT, sub.id)
    job = store.claim_next(None, worker_id="w-0")
    assert job.attempts == 1

    rail = ScriptedRail(TransientFailure("connection reset by peer"))
    outcome = _executor(store, rail).execute(sub.id, job_id=job.id)

    assert rail.calls == 2
    assert store.jobs[job.id].attempts == 2
    assert store.jobs[job.id].last_error.startswith("TRANSIENT_NETWORK:")

    payout = store.payouts[sub.id]
    assert payout.status == PayoutStatus.COMPLETED
    assert payout.attempts == 2
    assert payout.transfer_ref == outcome.transfer_ref

    # first debit was recredited, so the budget moved by exactly one unit
    assert store.quests[quest.id].budget_remaining == 4500
    assert len(store.debits) - len(store.recredits) == 1
    assert metrics.get_counter("payout_attempts_total", {"result": "retry"}) == 1


def test_exhausted_retries_leave_failed_payout_and_recredited_budget(store):
    quest = store.add_quest(unit_amount=500, budget_total=5000)
    sub = store.add_approved(quest, CHEWY)
    rail = ScriptedRail(*[TransientFailure("down")] * 3)

    with pytest.raises(TransientFailure):
        _executor(store, rail).execute(sub.id)

    payout = store.payouts[sub.id]
    assert payout.status == PayoutStatus.FAILED
    assert payout.last_error == "TRANSIENT_NETWORK: down"
    assert store.quests[quest.id].budget_remaining == 5000
    assert store.submissions[sub.id].status == SubmissionStatus.APPROVED
    assert len(store.events("payout_failed")) == 3


def test_unexpected_rail_error_is_wrapped_and_recredited(store):
    quest = store.add_quest(unit_amount=500, budget_total=5000)
    sub = store.add_approved(quest, CHEWY)

    with pytest.raises(Exception) as ei:
        _executor(store, ScriptedRail(KeyError("boom"))).execute(sub.id)

    assert "Transfer failed: KeyError" in str(ei.value)
    assert store.quests[quest.id].budget_remaining == 5000
    assert store.payouts[sub.id].status == PayoutStatus.FAILED


def test_budget_exhausted_is_not_retried(store):
    quest = store.add_quest(unit_amount=500, budget_total=5000, budget_remaining=400)
    sub = store.add_approved(quest, CHEWY)
    rail = ScriptedRail()

    with pytest.raises(BudgetExhausted):
        _executor(store, rail).execute(sub.id)

    assert rail.calls == 0
    assert store.payouts[sub.id].status == PayoutStatus.FAILED
    assert store.payouts[sub.id].attempts == 1
    assert store.quests[quest.id].budget_remaining == 400
    assert store.submissions[sub.id].status == SubmissionStatus.APPROVED


def test_spend_policy_rejection_is_a_policy_violation(store):
    quest = store.add_quest(unit_amount=500, spend_policy={"max_per_payout": 100})
    sub = store.add_approved(quest, CHEWY)

    with pytest.raises(PolicyViolation, match="Policy violation: Amount 500 exceeds max_per_payout 100"):
        _executor(store, ScriptedRail()).execute(sub.id)
    assert store.debits == []


def test_wallet_velocity_applies_across_payouts(store):
    quest = store.add_quest(unit_amount=500, spend_policy={"velocity": {"max_payouts_per_wallet_per_day": 1}})
    first = store.add_approved(quest, CHEWY, wallet="0xsame")
    second = store.add_approved(quest, CHEWY, wallet="0xsame", content_hash="demo_hash_1")
    executor = _executor(store, ScriptedRail())

    executor.execute(first.id)
    with pytest.raises(PolicyViolation, match="Wallet velocity"):
        executor.execute(second.id)


def test_requires_approved_submission_with_result(store):
    quest = store.add_quest()
    pending = store.add_submission(quest)
    with pytest.raises(InvalidInput):
        _executor(store, ScriptedRail()).execute(pending.id)

    no_result = store.add_submission(quest, status=SubmissionStatus.APPROVED)
    with pytest.raises(InvalidInput, match="Verification result not found"):
        _executor(store, ScriptedRail()).execute(no_result.id)

    with pytest.raises(NotFound):
        _executor(store, ScriptedRail()).execute(uuid.uuid4())
    assert store.payouts == {}


def test_two_payouts_against_a_budget_for_one(store):
    quest = store.add_quest(unit_amount=10, budget_total=10)
    subs = [store.add_approved(quest, CHEWY, wallet=f"0x{i}") for i in range(2)]
    executor = _executor(store, ScriptedRail())

    results = {}
    barrier = threading.Barrier(2)

    def run(sid):
        barrier.wait()
        try:
            results[sid] = executor.execute(sid)
        except Exception as exc:
            results[sid] = exc

    threads = [threading.Thread(target=run, args=(s.id,)) for s in subs]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    outcomes = list(results.values())
    assert sum(1 for o in outcomes if isinstance(o, BudgetExhausted)) == 1
    paid = [o for o in outcomes if not isinstance(o, Exception)]
    assert len(paid) == 1
    assert paid[0].budget_remaining == 0
    assert store.quests[quest.id].budget_remaining == 0
    assert sorted(s.status.value for s in store.submissions.values()) == ["APPROVED", "PAID"]


def test_override_result_records_admin_stage(store):
    from services.admin_override import force_approve

    quest = store.add_quest()
    sub = store.add_submission(quest, status=SubmissionStatus.REJECTED)
    with store.transaction() as conn:
        force_approve(conn, submission_id=sub.id, actor_id="ops-alice", reason="manual review ok")

    _executor(store, ScriptedRail()).execute(sub.id)

    payload = store.events("payout_completed")[0]["payload"]
    assert payload["stages"] == ["admin:ops-alice", "stage:payout"]
    assert payload["decision_trace"]["forced"] is True
