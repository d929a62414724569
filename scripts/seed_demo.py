# scripts/seed_demo.py
"""
Seed a demo quest, a contributor and a few PENDING submissions (with their
VERIFY jobs) that resolve through the receipt fixtures in DEMO_MODE.
"""
import os
import sys
import uuid

from psycopg2.extras import Json

from app.jobs import repository as jobs_repo
from app.jobs.model import JobType
from db import get_conn


DEMO_WALLET = "0xDEMO000000000000000000000000000000000001"

DEMO_ELIGIBILITY = [
    {"field": "merchant", "op": "in", "value": ["Chewy", "Petco"]},
    {"field": "receipt_age_days", "op": "<=", "value": 3650},
    {"field": "amount", "op": ">=", "value": 1000},
    {"field": "zip_prefix", "op": "in", "value": ["941", "100"]},
    {"field": "age", "op": ">=", "value": 18},
]

DEMO_POLICY = {
    "max_per_payout": 500,
    "max_per_day": 5000,
    "vendor_allow_list": ["chewy", "petco"],
    "velocity": {"max_approvals_per_device_per_day": 3, "max_payouts_per_wallet_per_day": 5},
}


def die(message, code=1):
    print(message)
    sys.exit(code)


def _get_env_int(name, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        die(f"{name} must be an integer, got {raw!r}")


def _ensure_quest(cur, *, name, unit_amount, budget_total):
    cur.execute("SELECT id FROM pipeline.quests WHERE name = %s LIMIT 1;", (name,))
    row = cur.fetchone()
    if row:
        return row[0], False

    cur.execute(
        """
        INSERT INTO pipeline.quests
          (name, currency, unit_amount, budget_total, budget_remaining, eligibility, spend_policy)
        VALUES (%s, 'USDC', %s, %s, %s, %s::jsonb, %s::jsonb)
        RETURNING id;
        """,
        (name, unit_amount, budget_total, budget_total, Json(DEMO_ELIGIBILITY), Json(DEMO_POLICY)),
    )
    return cur.fetchone()[0], True


def _ensure_contributor(cur, wallet, age):
    cur.execute(
        """
        INSERT INTO pipeline.contributors (wallet, age)
        VALUES (%s, %s)
        ON CONFLICT (wallet) DO UPDATE SET age = EXCLUDED.age;
        """,
        (wallet, age),
    )


def _insert_submission(cur, *, quest_id, wallet, device, content_hash, justification):
    submission_id = uuid.uuid4()
    cur.execute(
        """
        INSERT INTO pipeline.submissions
          (id, quest_id, wallet, device_fingerprint, content_hash, receipt_path, zip_prefix, justification_text)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s);
        """,
        (submission_id, quest_id, wallet, device, content_hash, f"{content_hash}.jpg", "941", justification),
    )
    return submission_id


def main():
    unit_amount = _get_env_int("DEMO_UNIT_AMOUNT", 500)
    budget_total = _get_env_int("DEMO_BUDGET_TOTAL", 5000)
    count = _get_env_int("DEMO_SUBMISSIONS", 3)

    with get_conn() as conn:
        with conn.cursor() as cur:
            quest_id, created = _ensure_quest(
                cur, name="Show us your pet-store receipt", unit_amount=unit_amount, budget_total=budget_total
            )
            _ensure_contributor(cur, DEMO_WALLET, 29)

            submission_ids = []
            for i in range(count):
                submission_ids.append(
                    _insert_submission(
                        cur,
                        quest_id=quest_id,
                        wallet=DEMO_WALLET,
                        device=f"demo-device-{i}",
                        content_hash=f"demo_hash_{i}",
                        justification="Picked up grain-free dog food and a chew toy for my puppy at the pet store.",
                    )
                )

        for submission_id in submission_ids:
            jobs_repo.enqueue(conn, job_type=JobType.VERIFY, entity_id=submission_id)

    print(f"quest={quest_id} ({'created' if created else 'existing'}) unit={unit_amount} budget={budget_total}")
    for submission_id in submission_ids:
        print(f"submission={submission_id} queued for VERIFY")


if __name__ == "__main__":
    main()
