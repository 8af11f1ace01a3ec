"""Payment allocations: one payment may settle several invoices or bills.

Revision ID: 20261016_billing_payment_allocations
Revises: 20261015_audit_chain_head
Create Date: 2026-10-16
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261016_billing_payment_allocations"
down_revision = "20261015_audit_chain_head"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "payment_allocation",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payment.id"), nullable=False),
        sa.Column("document_type", sa.String(length=10), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.UniqueConstraint("payment_id", "document_id", name="uq_payment_allocation_document"),
        sa.CheckConstraint("amount > 0", name="ck_payment_allocation_positive"),
    )
    op.create_index("ix_payment_allocation_payment_id", "payment_allocation", ["payment_id"])
    op.create_index("ix_payment_allocation_document", "payment_allocation", ["document_type", "document_id"])

    op.execute(
        """
        INSERT INTO payment_allocation (payment_id, document_type, document_id, amount)
        SELECT id, document_type, document_id, amount FROM payment
        """
    )

    # Split payments have no single document.
    with op.batch_alter_table("payment") as batch_op:
        batch_op.alter_column("document_id", existing_type=sa.Integer(), nullable=True)


def downgrade():
    with op.batch_alter_table("payment") as batch_op:
        batch_op.alter_column("document_id", existing_type=sa.Integer(), nullable=False)
    op.drop_index("ix_payment_allocation_document", table_name="payment_allocation")
    op.drop_index("ix_payment_allocation_payment_id", table_name="payment_allocation")
    op.drop_table("payment_allocation")
