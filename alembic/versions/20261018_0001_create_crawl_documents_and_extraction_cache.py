"""create crawl_documents and extraction_cache_entries tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:30:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None

JSON_PAYLOAD = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "crawl_documents",
        sa.Column("kind", sa.String(length=32), nullable=False, comment="category, product, search, checkout, batch"),
        sa.Column(
            "document_key",
            sa.String(length=255),
            nullable=False,
            comment="Slug or identifier unique within the kind",
        ),
        sa.Column("payload", JSON_PAYLOAD, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("kind", "document_key"),
    )
    op.create_index(
        "ix_crawl_documents_kind_updated_at",
        "crawl_documents",
        ["kind", "updated_at"],
        unique=False,
    )

    op.create_table(
        "extraction_cache_entries",
        sa.Column(
            "cache_key",
            sa.String(length=64),
            nullable=False,
            comment="sha256 of chunk text, goal and model identity",
        ),
        sa.Column("goal", sa.String(length=500), nullable=False),
        sa.Column("model", sa.String(length=120), nullable=False),
        sa.Column("result", JSON_PAYLOAD, nullable=True),
        sa.Column("stored_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("cache_key"),
    )


def downgrade() -> None:
    op.drop_table("extraction_cache_entries")
    op.drop_index("ix_crawl_documents_kind_updated_at", table_name="crawl_documents")
    op.drop_table("crawl_documents")
