# app/risk/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

# Submissions that already earned (or are about to earn) a payout.
_APPROVED_STATES = ("APPROVED", "PAID")


# Advisory lock namespaces (first key of pg_advisory_xact_lock(int, int)).
_WALLET_LOCK_SPACE = 7301
_DEVICE_LOCK_SPACE = 7302


def lock_risk_scope(conn, *, wallet: str, device_fingerprint: str) -> None:
    """
    Serialize risk decisions per wallet and per device until the transaction
    ends. The duplicate and velocity checks read APPROVED history, so two
    submissions from the same wallet must not both decide before either
    commits. Always wallet first, then device.
    """
    with conn.cursor() as cur:
        cur.execute("SELECT pg_advisory_xact_lock(%s, hashtext(%s))", (_WALLET_LOCK_SPACE, wallet))
        cur.execute("SELECT pg_advisory_xact_lock(%s, hashtext(%s))", (_DEVICE_LOCK_SPACE, device_fingerprint))


class SqlRiskLookups:
    """RiskLookups backed by the submissions/verification_results tables."""

    def __init__(self, conn):
        self.conn = conn

    def find_exact_duplicate(self, *, wallet: str, exclude_id: UUID, fingerprint: str) -> Optional[str]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.id::text
                FROM pipeline.submissions s
                JOIN pipeline.verification_results v ON v.submission_id = s.id
                WHERE s.wallet = %s
                  AND s.id <> %s
                  AND s.status IN %s
                  AND v.receipt_fingerprint = %s
                ORDER BY s.created_at ASC
                LIMIT 1
                """,
                (wallet, exclude_id, _APPROVED_STATES, fingerprint),
            )
            row = cur.fetchone()
            return row[0] if row else None

    def find_fuzzy_duplicate(
        self, *, wallet: str, exclude_id: UUID, fingerprint: str, since: datetime
    ) -> Optional[str]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.id::text
                FROM pipeline.submissions s
                JOIN pipeline.verification_results v ON v.submission_id = s.id
                WHERE s.wallet = %s
                  AND s.id <> %s
                  AND s.status IN %s
                  AND s.created_at >= %s
                  AND v.fuzzy_fingerprint = %s
                ORDER BY s.created_at DESC
                LIMIT 1
                """,
                (wallet, exclude_id, _APPROVED_STATES, since, fingerprint),
            )
            row = cur.fetchone()
            return row[0] if row else None

    def count_device_approvals(
        self, *, device_fingerprint: str, quest_id: UUID, exclude_id: UUID, since: datetime
    ) -> int:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT COUNT(*)
                FROM pipeline.submissions
                WHERE device_fingerprint = %s
                  AND quest_id = %s
                  AND id <> %s
                  AND status IN %s
                  AND created_at >= %s
                """,
                (device_fingerprint, quest_id, exclude_id, _APPROVED_STATES, since),
            )
            return int(cur.fetchone()[0] or 0)
