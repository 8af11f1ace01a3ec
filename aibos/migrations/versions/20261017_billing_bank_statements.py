"""Bank statement imports and statement transactions for matching.

Revision ID: 20261017_billing_bank_statements
Revises: 20261016_billing_payment_allocations
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261017_billing_bank_statements"
down_revision = "20261016_billing_payment_allocations"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "bank_statement_import",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id"), nullable=False),
        sa.Column("bank_account_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=False),
        sa.Column("bank_format", sa.String(length=32), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=True),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("imported_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duplicate_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.JSON(), nullable=False),
        sa.Column("warnings", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_bank_statement_import_company_id", "bank_statement_import", ["company_id"])

    op.create_table(
        "bank_transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id"), nullable=False),
        sa.Column("import_id", sa.Integer(), sa.ForeignKey("bank_statement_import.id"), nullable=False),
        sa.Column("bank_account_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=False),
        sa.Column("row_number", sa.Integer(), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("debit", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("credit", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("balance", sa.Numeric(18, 2), nullable=True),
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="unmatched"),
        sa.Column("match_confidence", sa.Numeric(5, 2), nullable=True),
        sa.Column("match_type", sa.String(length=10), nullable=True),
        sa.Column("match_id", sa.Integer(), nullable=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payment.id"), nullable=True),
        sa.Column("matched_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("matched_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("bank_account_id", "fingerprint", name="uq_bank_transaction_fingerprint"),
    )
    op.create_index("ix_bank_transaction_import_id", "bank_transaction", ["import_id"])
    op.create_index("ix_bank_transaction_company_status", "bank_transaction", ["company_id", "status"])


def downgrade():
    op.drop_index("ix_bank_transaction_company_status", table_name="bank_transaction")
    op.drop_index("ix_bank_transaction_import_id", table_name="bank_transaction")
    op.drop_table("bank_transaction")
    op.drop_index("ix_bank_statement_import_company_id", table_name="bank_statement_import")
    op.drop_table("bank_statement_import")
