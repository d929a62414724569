from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from db import get_conn
from settings import settings

router = APIRouter(tags=["health"])

MIGRATION_REVISION = "0001_pipeline_schema"


def _check_db() -> tuple[bool, str | None]:
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"


PIPELINE_TABLES = ("jobs", "submissions", "quests", "payouts", "verification_results", "audit_events")


def _check_schema() -> tuple[bool, list[str]]:
    """Baseline revision applied and every pipeline table present."""
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('public.alembic_version');")
                if not cur.fetchone()[0]:
                    return False, ["alembic_version"]
                cur.execute("SELECT version_num FROM alembic_version LIMIT 1;")
                row = cur.fetchone()
                missing = []
                for table in PIPELINE_TABLES:
                    cur.execute("SELECT to_regclass(%s);", (f"pipeline.{table}",))
                    if not cur.fetchone()[0]:
                        missing.append(table)
                return bool(row and row[0] == MIGRATION_REVISION and not missing), missing
    except Exception:
        return False, []


@router.get("/health")
def health():
    return {
        "ok": True,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "demo_mode": settings.DEMO_MODE,
        "transfer_mode": "simulated" if settings.DEMO_MODE else settings.TRANSFER_MODE,
    }


@router.get("/readyz")
def readyz():
    db_ok, db_error = _check_db()
    migrations_ok, missing = _check_schema() if db_ok else (False, [])
    ready = bool(db_ok and migrations_ok)
    body = {
        "ready": ready,
        "db_ok": db_ok,
        "db_error": db_error,
        "migrations_ok": migrations_ok,
        "missing_tables": missing,
        "migration_revision": MIGRATION_REVISION,
    }
    return JSONResponse(status_code=200 if ready else 503, content=body)
