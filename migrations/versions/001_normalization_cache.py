"""Create normalization_cache table for component/substrate name mappings.

Revision ID: 001_normalization_cache
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "001_normalization_cache"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "normalization_cache",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("domain", sa.String(length=16), nullable=False),
        sa.Column("original_name", sa.String(length=255), nullable=False),
        sa.Column("normalized_name", sa.String(length=255), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_used", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("domain", "original_name", name="uq_normalization_cache_domain_name"),
    )
    op.create_index("ix_normalization_cache_domain", "normalization_cache", ["domain"])


def downgrade() -> None:
    op.drop_index("ix_normalization_cache_domain", table_name="normalization_cache")
    op.drop_table("normalization_cache")
