"""initial_schema

Creates every LearnSmart table from learnsmart/db/schema.sql.

Revision ID: 1f3a9c2e7b10
Revises:
Create Date: 2026-10-19 09:12:44.518302

"""
from typing import Sequence, Union
from pathlib import Path

from alembic import op
import sqlalchemy as sa


revision: str = "1f3a9c2e7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA_FILE = Path(__file__).resolve().parents[2] / "learnsmart" / "db" / "schema.sql"

# Children before parents so foreign keys never dangle
TABLES = (
    "messages", "subscriptions", "achievements", "learning_paths", "assessments",
    "learning_progress", "questions", "lessons", "topics", "subjects",
    "parents", "students", "users",
)


def schema_statements(dialect: str) -> list[str]:
    """DDL statements from schema.sql with comments stripped."""
    text = "\n".join(
        line for line in SCHEMA_FILE.read_text().splitlines()
        if not line.lstrip().startswith("--")
    )
    if dialect == "postgresql":
        text = text.replace(" REAL", " DOUBLE PRECISION")
    return [stmt.strip() for stmt in text.split(";") if stmt.strip()]


def upgrade() -> None:
    # IF NOT EXISTS throughout, so an existing database is left as is
    for statement in schema_statements(op.get_bind().dialect.name):
        op.execute(sa.text(statement))


def downgrade() -> None:
    for table in TABLES:
        op.execute(sa.text(f"DROP TABLE IF EXISTS {table}"))
