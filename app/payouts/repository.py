# app/payouts/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor

from app.payouts.model import Payout, PayoutStatus
from app.payouts.state_machine import assert_completed_invariant

_COLUMNS = """
    id, submission_id, quest_id, amount, currency, transfer_ref, synthetic,
    status, last_error, attempts, created_at, updated_at
"""


def _to_payout(row: dict[str, Any]) -> Payout:
    return Payout(
        id=row["id"],
        submission_id=row["submission_id"],
        quest_id=row["quest_id"],
        amount=int(row["amount"]),
        currency=row["currency"],
        transfer_ref=row.get("transfer_ref"),
        synthetic=bool(row.get("synthetic")),
        status=PayoutStatus(row["status"]),
        last_error=row.get("last_error"),
        attempts=int(row.get("attempts") or 0),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


# ==========================================================
# Writes
# ==========================================================

def begin_attempt(conn, *, submission_id: UUID, quest_id: UUID, amount: int, currency: str) -> Payout:
    """
    Create the payout row on the first attempt; later attempts reuse it
    (FAILED -> PROCESSING). A COMPLETED row is returned untouched.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO pipeline.payouts (submission_id, quest_id, amount, currency, status, attempts)
            VALUES (%s, %s, %s, %s, 'PROCESSING', 1)
            ON CONFLICT (submission_id) DO UPDATE
              SET status = CASE WHEN pipeline.payouts.status = 'COMPLETED'
                                THEN pipeline.payouts.status ELSE 'PROCESSING' END,
                  attempts = CASE WHEN pipeline.payouts.status = 'COMPLETED'
                                  THEN pipeline.payouts.attempts ELSE pipeline.payouts.attempts + 1 END,
                  amount = CASE WHEN pipeline.payouts.status = 'COMPLETED'
                                THEN pipeline.payouts.amount ELSE EXCLUDED.amount END,
                  updated_at = now()
            RETURNING {_COLUMNS}
            """,
            (submission_id, quest_id, amount, currency),
        )
        return _to_payout(cur.fetchone())


def mark_completed(conn, *, payout_id: UUID, transfer_ref: str, synthetic: bool) -> bool:
    assert_completed_invariant(PayoutStatus.COMPLETED, transfer_ref)
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE pipeline.payouts
            SET status = 'COMPLETED',
                transfer_ref = %s,
                synthetic = %s,
                last_error = NULL,
                updated_at = now()
            WHERE id = %s
              AND status = 'PROCESSING'
            """,
            (transfer_ref, synthetic, payout_id),
        )
        return cur.rowcount == 1


def mark_failed(conn, *, payout_id: UUID, error: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE pipeline.payouts
            SET status = 'FAILED',
                last_error = %s,
                updated_at = now()
            WHERE id = %s
              AND status <> 'COMPLETED'
            """,
            (error[:2000], payout_id),
        )
        return cur.rowcount == 1


# ==========================================================
# Reads
# ==========================================================

def get_payout_by_submission(conn, submission_id: UUID) -> Optional[Payout]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM pipeline.payouts WHERE submission_id = %s",
            (submission_id,),
        )
        row = cur.fetchone()
        return _to_payout(row) if row else None


def get_payout(conn, payout_id: UUID) -> Optional[Payout]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(f"SELECT {_COLUMNS} FROM pipeline.payouts WHERE id = %s", (payout_id,))
        row = cur.fetchone()
        return _to_payout(row) if row else None


def completed_spend_since(conn, *, quest_id: UUID, since: datetime) -> int:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT COALESCE(SUM(amount), 0)
            FROM pipeline.payouts
            WHERE quest_id = %s
              AND status = 'COMPLETED'
              AND updated_at >= %s
            """,
            (quest_id, since),
        )
        return int(cur.fetchone()[0] or 0)


def completed_count_for_wallet_since(conn, *, quest_id: UUID, wallet: str, since: datetime) -> int:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT COUNT(*)
            FROM pipeline.payouts p
            JOIN pipeline.submissions s ON s.id = p.submission_id
            WHERE p.quest_id = %s
              AND s.wallet = %s
              AND p.status = 'COMPLETED'
              AND p.updated_at >= %s
            """,
            (quest_id, wallet, since),
        )
        return int(cur.fetchone()[0] or 0)


def completed_count_for_device_since(conn, *, quest_id: UUID, device_fingerprint: str, since: datetime) -> int:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT COUNT(*)
            FROM pipeline.payouts p
            JOIN pipeline.submissions s ON s.id = p.submission_id
            WHERE p.quest_id = %s
              AND s.device_fingerprint = %s
              AND p.status = 'COMPLETED'
              AND p.updated_at >= %s
            """,
            (quest_id, device_fingerprint, since),
        )
        return int(cur.fetchone()[0] or 0)
