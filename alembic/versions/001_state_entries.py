"""State entries table for the versioned state store.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "state_entries",
        sa.Column("key", sa.String(512), primary_key=True),
        sa.Column("value", postgresql.JSONB(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.Float(), nullable=False),
        sa.Column("expires_at", sa.Float(), nullable=True),
        sa.Column("region", sa.String(64), nullable=False),
        sa.Column("provenance", postgresql.JSONB(), nullable=True),
    )
    op.create_index("ix_state_entries_expires_at", "state_entries", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_state_entries_expires_at", table_name="state_entries")
    op.drop_table("state_entries")
