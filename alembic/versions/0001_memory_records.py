"""add memory_records

Revision ID: 0001_memory_records
Revises:
Create Date: 2026-10-19 10:12:40.118203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_memory_records'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "memory_records",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_index("ix_memory_records_expires_at", "memory_records", ["expires_at"])


def downgrade():
    op.drop_index("ix_memory_records_expires_at", table_name="memory_records")
    op.drop_table("memory_records")
