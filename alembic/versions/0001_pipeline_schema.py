"""pipeline schema

Revision ID: 0001_pipeline_schema
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""

from __future__ import annotations

from pathlib import Path

from alembic import op


revision = "0001_pipeline_schema"
down_revision = None
branch_labels = None
depends_on = None


def _load_schema_sql() -> str:
    root = Path(__file__).resolve().parents[2]
    schema_path = root / "db" / "schema.sql"
    raw = schema_path.read_text(encoding="utf-8")

    lines = []
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("--"):
            continue
        lines.append(line)
    return "\n".join(lines)


def upgrade() -> None:
    op.execute(_load_schema_sql())


def downgrade() -> None:
    op.execute("DROP SCHEMA IF EXISTS pipeline CASCADE;")
