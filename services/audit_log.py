from __future__ import annotations

import logging
from typing import Any

from psycopg2.extras import Json, RealDictCursor

from services.metrics import increment_audit_failure

logger = logging.getLogger("questpay.audit")

SYSTEM_ACTOR = "system"


def record_audit_event(
    conn,
    *,
    entity_type: str,
    entity_id: str,
    actor_id: str,
    event_type: str,
    payload: dict[str, Any] | None = None,
) -> bool:
    """
    Append an audit event inside a savepoint. Best-effort: a failed write is
    logged and rolled back to the savepoint, the caller's transaction goes on.
    """
    try:
        with conn.cursor() as cur:
            cur.execute("SAVEPOINT audit_event")
            try:
                cur.execute(
                    """
                    INSERT INTO pipeline.audit_events (entity_type, entity_id, actor_id, event_type, payload)
                    VALUES (%s, %s, %s, %s, %s::jsonb)
                    """,
                    (entity_type, str(entity_id), actor_id, event_type, Json(payload or {})),
                )
            except Exception:
                cur.execute("ROLLBACK TO SAVEPOINT audit_event")
                raise
            cur.execute("RELEASE SAVEPOINT audit_event")
        return True
    except Exception:
        increment_audit_failure()
        logger.exception("audit write failed entity=%s:%s event=%s", entity_type, entity_id, event_type)
        return False


def list_audit_events(conn, *, entity_type: str, entity_id: str, limit: int = 200) -> list[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, entity_type, entity_id, actor_id, event_type, payload, created_at
            FROM pipeline.audit_events
            WHERE entity_type = %s
              AND entity_id = %s
            ORDER BY created_at ASC, id ASC
            LIMIT %s
            """,
            (entity_type, str(entity_id), int(limit)),
        )
        return [dict(r) for r in cur.fetchall()]
