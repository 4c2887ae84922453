"""prompt store baseline

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-18 00:00:00

"""
from typing import Sequence, Union

from alembic import op

from infra.database.schema import get_db_schema_sql


# revision identifiers, used by Alembic.
revision: str = "0001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # init_raw_db と同じDDL (IF NOT EXISTS なので既存DBでも安全)
    for stmt in [s.strip() for s in get_db_schema_sql().split(';') if s.strip()]:
        op.execute(stmt)


def downgrade() -> None:
    for table in ("prompt_variables", "prompt_tags", "tags", "prompt_versions", "prompts", "schema_info"):
        op.execute(f"DROP TABLE IF EXISTS {table}")
    op.execute("DROP SEQUENCE IF EXISTS seq_tags_id")
