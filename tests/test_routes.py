from __future__ import annotations

import uuid

from app.jobs.model import JobType
from app.payouts.executor import PayoutExecutor
from app.providers.authorizer import PolicySpendAuthorizer
from app.providers.transfer import SimulatedTransferRail
from app.submissions.model import SubmissionStatus
from app.verification.model import ReceiptFields
from settings import settings

CHEWY = ReceiptFields(merchant="chewy", date_iso="2025-01-15", amount_minor=2833, confidence=0.95)


def _pay(store, sub):
    executor = PayoutExecutor(
        authorizer=PolicySpendAuthorizer(),
        rail=SimulatedTransferRail(),
        conn_factory=store.transaction,
        sleep=lambda s: None,
    )
    return executor.execute(sub.id)


# ---------------------------
# health / metrics
# ---------------------------

def test_health(client, monkeypatch):
    monkeypatch.setattr(settings, "DEMO_MODE", True)
    r = client.get("/health")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert body["demo_mode"] is True
    assert body["transfer_mode"] == "simulated"
    assert r.headers.get("X-Request-Id")


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"X-Request-Id": "req-123"})
    assert r.headers["X-Request-Id"] == "req-123"


def test_readyz_reports_db_down(client, monkeypatch):
    import routes.health as health

    monkeypatch.setattr(health, "_check_db", lambda: (False, "OperationalError: refused"))
    r = client.get("/readyz")
    assert r.status_code == 503, r.text
    assert r.json()["ready"] is False
    assert r.json()["migrations_ok"] is False


def test_readyz_lists_missing_pipeline_tables(client, monkeypatch):
    import routes.health as health

    monkeypatch.setattr(health, "_check_db", lambda: (True, None))
    monkeypatch.setattr(health, "_check_schema", lambda: (False, ["payouts"]))
    r = client.get("/readyz")
    assert r.status_code == 503, r.text
    assert r.json()["missing_tables"] == ["payouts"]

    monkeypatch.setattr(health, "_check_schema", lambda: (True, []))
    r = client.get("/readyz")
    assert r.status_code == 200, r.text
    assert r.json()["ready"] is True


def test_metrics_include_counters_and_queue_depth(client, store):
    quest = store.add_quest()
    store.enqueue_job(JobType.VERIFY, store.add_submission(quest).id)
    _pay(store, store.add_approved(quest, CHEWY, wallet="0xpaid"))

    r = client.get("/metrics")
    assert r.status_code == 200, r.text
    assert 'payout_attempts_total{result="success"} 1' in r.text
    assert 'jobs_queue_depth{status="queued"} 1' in r.text


# ---------------------------
# jobs
# ---------------------------

def test_enqueue_verify_job(client, store):
    sub = store.add_submission(store.add_quest())
    r = client.post("/v1/jobs", json={"type": "VERIFY", "entity_id": str(sub.id)})
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["status"] == "QUEUED"
    assert body["attempts"] == 0

    dup = client.post("/v1/jobs", json={"type": "VERIFY", "entity_id": str(sub.id)})
    assert dup.status_code == 409, dup.text
    assert dup.json()["detail"]["code"] == "INVALID_STATE"


def test_enqueue_rejects_wrong_state_and_unknown_submission(client, store):
    sub = store.add_submission(store.add_quest())
    r = client.post("/v1/jobs", json={"type": "PAYOUT", "entity_id": str(sub.id)})
    assert r.status_code == 409, r.text

    r = client.post("/v1/jobs", json={"type": "VERIFY", "entity_id": str(uuid.uuid4())})
    assert r.status_code == 404, r.text
    assert r.json()["detail"]["code"] == "SUBMISSION_NOT_FOUND"

    r = client.post("/v1/jobs", json={"type": "REFUND", "entity_id": str(sub.id)})
    assert r.status_code == 422, r.text


def test_queue_stats(client, store):
    quest = store.add_quest()
    store.enqueue_job(JobType.VERIFY, store.add_submission(quest).id)
    store.enqueue_job(JobType.VERIFY, store.add_submission(quest).id)
    store.claim_next(None, worker_id="w")

    r = client.get("/v1/queue/stats")
    assert r.status_code == 200, r.text
    assert r.json() == {"queued": 1, "processing": 1, "completed": 0, "failed": 0}


# ---------------------------
# submissions / payouts
# ---------------------------

def test_submission_status_for_paid_submission(client, store):
    sub = store.add_approved(store.add_quest(), CHEWY)
    outcome = _pay(store, sub)

    r = client.get(f"/v1/submissions/{sub.id}/status")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "PAID"
    assert body["transfer_reference"] == outcome.transfer_ref
    assert body["decision"] == "APPROVE"
    assert body["decision_trace"]["kind"] == "pipeline"


def test_submission_status_not_found(client):
    r = client.get(f"/v1/submissions/{uuid.uuid4()}/status")
    assert r.status_code == 404, r.text


def test_payout_audit_record(client, store):
    sub = store.add_approved(store.add_quest(), CHEWY)
    outcome = _pay(store, sub)

    r = client.get(f"/v1/payouts/{outcome.payout_id}/audit")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["payout"]["status"] == "COMPLETED"
    assert body["payout"]["transfer_reference"] == outcome.transfer_ref
    assert [e["event_type"] for e in body["events"]] == ["payout_completed", "status_changed"]


# ---------------------------
# admin
# ---------------------------

def test_admin_routes_require_key(client, store):
    sub = store.add_submission(store.add_quest())
    r = client.post(f"/v1/admin/submissions/{sub.id}/retry-payout")
    assert r.status_code == 403, r.text
    assert r.json()["detail"] == "ADMIN_REQUIRED"

    r = client.post(f"/v1/admin/submissions/{sub.id}/retry-payout", headers={"X-Admin-API-Key": "wrong-key-000"})
    assert r.status_code == 403, r.text


def test_force_approve_requires_override_mode(client, store, admin_headers, monkeypatch):
    monkeypatch.setattr(settings, "DEMO_MODE", False)
    monkeypatch.setattr(settings, "ADMIN_OVERRIDES_ENABLED", False)
    sub = store.add_submission(store.add_quest(), status=SubmissionStatus.REJECTED)

    r = client.post(
        f"/v1/admin/submissions/{sub.id}/force-approve",
        json={"reason": "manual review"},
        headers=admin_headers,
    )
    assert r.status_code == 403, r.text
    assert r.json()["detail"] == "OVERRIDES_DISABLED"


def test_force_approve_rejected_submission(client, store, admin_headers, monkeypatch):
    monkeypatch.setattr(settings, "DEMO_MODE", True)
    sub = store.add_submission(store.add_quest(), status=SubmissionStatus.REJECTED)

    r = client.post(
        f"/v1/admin/submissions/{sub.id}/force-approve",
        json={"reason": "manual review"},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["previous_status"] == "REJECTED"
    assert body["status"] == "APPROVED"
    assert body["payout_job_id"]

    assert store.submissions[sub.id].status == SubmissionStatus.APPROVED
    assert store.results[sub.id].trace.actor_id == "ops-alice"
    assert store.events("force_approved")[0]["actor_id"] == "admin:ops-alice"


def test_force_approve_paid_submission_conflicts(client, store, admin_headers, monkeypatch):
    monkeypatch.setattr(settings, "DEMO_MODE", True)
    sub = store.add_approved(store.add_quest(), CHEWY)
    _pay(store, sub)

    r = client.post(
        f"/v1/admin/submissions/{sub.id}/force-approve",
        json={"reason": "again please"},
        headers=admin_headers,
    )
    assert r.status_code == 409, r.text
    assert r.json()["detail"]["code"] == "INVALID_STATE"


def test_retry_payout_after_failure(client, store, admin_headers):
    quest = store.add_quest(unit_amount=500, budget_total=5000, budget_remaining=100)
    sub = store.add_approved(quest, CHEWY)
    try:
        _pay(store, sub)
    except Exception:
        pass

    r = client.post(f"/v1/admin/submissions/{sub.id}/retry-payout", headers=admin_headers)
    assert r.status_code == 200, r.text
    job_id = r.json()["job_id"]
    assert store.jobs[uuid.UUID(job_id)].type == JobType.PAYOUT

    again = client.post(f"/v1/admin/submissions/{sub.id}/retry-payout", headers=admin_headers)
    assert again.status_code == 409, again.text


def test_retry_payout_without_failed_payout(client, store, admin_headers):
    sub = store.add_approved(store.add_quest(), CHEWY)
    r = client.post(f"/v1/admin/submissions/{sub.id}/retry-payout", headers=admin_headers)
    assert r.status_code == 409, r.text


def test_admin_audit_events(client, store, admin_headers):
    sub = store.add_approved(store.add_quest(), CHEWY)
    _pay(store, sub)

    r = client.get(
        "/v1/admin/audit-events",
        params={"entity_type": "submission", "entity_id": str(sub.id)},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["count"] == 1
    assert body["events"][0]["event_type"] == "status_changed"

    bad = client.get(
        "/v1/admin/audit-events",
        params={"entity_type": "quest", "entity_id": "x"},
        headers=admin_headers,
    )
    assert bad.status_code == 422, bad.text
