"""Audit chain head rows so appends can lock one row per chain.

Revision ID: 20261015_audit_chain_head
Revises: 20261001_initial_schema
Create Date: 2026-10-15
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261015_audit_chain_head"
down_revision = "20261001_initial_schema"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "audit_chain_head",
        sa.Column("chain_key", sa.String(length=32), primary_key=True),
        sa.Column("last_entry_id", sa.Integer(), nullable=True),
        sa.Column("last_hash", sa.String(length=64), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    # Existing chains resume from their newest entry.
    op.execute(
        """
        INSERT INTO audit_chain_head (chain_key, last_entry_id, last_hash, updated_at)
        SELECT CASE WHEN a.tenant_id IS NULL THEN 'system' ELSE 'tenant:' || CAST(a.tenant_id AS VARCHAR) END,
               a.id, a.entry_hash, CURRENT_TIMESTAMP
        FROM audit_log a
        WHERE a.id IN (SELECT MAX(id) FROM audit_log GROUP BY tenant_id)
        """
    )


def downgrade():
    op.drop_table("audit_chain_head")
