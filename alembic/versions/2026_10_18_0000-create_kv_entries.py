"""Create kv_entries table backing the SQL key-value store.

Revision ID: 2026_10_18_0000
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_18_0000"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create kv_entries table."""
    op.create_table(
        "kv_entries",
        sa.Column("namespace", sa.String(64), nullable=False),
        sa.Column("key", sa.String(512), nullable=False),
        sa.Column("value", sa.LargeBinary(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("namespace", "key", name="pk_kv_entries"),
    )
    op.create_index("idx_kv_entries_updated_at", "kv_entries", ["updated_at"])
    op.create_index(
        "idx_kv_entries_key_prefix",
        "kv_entries",
        ["namespace", "key"],
        postgresql_ops={"key": "text_pattern_ops"},
    )


def downgrade() -> None:
    """Drop kv_entries table."""
    op.drop_index("idx_kv_entries_key_prefix", table_name="kv_entries")
    op.drop_index("idx_kv_entries_updated_at", table_name="kv_entries")
    op.drop_table("kv_entries")
