# app/quests/repository.py
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor

from app.quests.model import Contributor, Quest

_QUEST_COLUMNS = """
    id, name, currency, unit_amount, budget_total, budget_remaining,
    eligibility, spend_policy
"""


def _to_quest(row: dict[str, Any]) -> Quest:
    return Quest(
        id=row["id"],
        name=row["name"],
        currency=row["currency"],
        unit_amount=int(row["unit_amount"]),
        budget_total=int(row["budget_total"]),
        budget_remaining=int(row["budget_remaining"]),
        eligibility=list(row.get("eligibility") or []),
        spend_policy=dict(row.get("spend_policy") or {}),
    )


def get_quest(conn, quest_id: UUID) -> Optional[Quest]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {_QUEST_COLUMNS} FROM pipeline.quests WHERE id = %s",
            (quest_id,),
        )
        row = cur.fetchone()
        return _to_quest(row) if row else None


def lock_quest(conn, quest_id: UUID) -> Optional[Quest]:
    """
    Row-lock the quest for the rest of the transaction and re-read the budget.
    Concurrent payouts against the same quest serialize here.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {_QUEST_COLUMNS} FROM pipeline.quests WHERE id = %s FOR UPDATE",
            (quest_id,),
        )
        row = cur.fetchone()
        return _to_quest(row) if row else None


def debit_budget(conn, *, quest_id: UUID, amount: int) -> Optional[int]:
    """Returns the new budget_remaining, or None when the budget can't cover ``amount``."""
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE pipeline.quests
            SET budget_remaining = budget_remaining - %s,
                updated_at = now()
            WHERE id = %s
              AND budget_remaining >= %s
            RETURNING budget_remaining
            """,
            (amount, quest_id, amount),
        )
        row = cur.fetchone()
        return int(row[0]) if row else None


def recredit_budget(conn, *, quest_id: UUID, amount: int) -> int:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE pipeline.quests
            SET budget_remaining = LEAST(budget_total, budget_remaining + %s),
                updated_at = now()
            WHERE id = %s
            RETURNING budget_remaining
            """,
            (amount, quest_id),
        )
        row = cur.fetchone()
        return int(row[0])


def get_contributor(conn, wallet: str) -> Optional[Contributor]:
    with conn.cursor() as cur:
        cur.execute(
            "SELECT wallet, age FROM pipeline.contributors WHERE wallet = %s",
            (wallet,),
        )
        row = cur.fetchone()
        if not row:
            return None
        return Contributor(wallet=row[0], age=row[1])
