"""Initial AIBOS schema: identity, tenancy, platform, FX, ledger, periods, billing.

Revision ID: 20261001_initial_schema
Revises:
Create Date: 2026-10-01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 2), nullable=False, server_default="0")


def upgrade():
    # ==================== Identity & tenancy ====================
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_user_email", "user", ["email"], unique=True)

    op.create_table(
        "tenant",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("feature_flags", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("slug", name="uq_tenant_slug"),
    )

    op.create_table(
        "company",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("base_currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("fiscal_year_end", sa.String(length=5), nullable=False, server_default="12-31"),
        sa.Column("policy_settings", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_company_tenant_code"),
    )
    op.create_index("ix_company_tenant", "company", ["tenant_id"])

    op.create_table(
        "membership",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id"), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("user_id", "tenant_id", "company_id", name="uq_membership_user_tenant_company"),
    )
    op.create_index("ix_membership_user_id", "membership", ["user_id"])
    op.create_index("ix_membership_tenant", "membership", ["tenant_id"])

    op.create_table(
        "session_token",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("jti", sa.String(length=64), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("jti", name="uq_session_token_jti"),
    )
    op.create_index("ix_session_token_user_id", "session_token", ["user_id"])

    op.create_table(
        "jwt_blocklist",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("jti", sa.String(length=64), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("jti", name="uq_jwt_blocklist_jti"),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("resource", sa.String(length=64), nullable=False),
        sa.Column("resource_id", sa.String(length=64), nullable=True),
        sa.Column("category", sa.String(length=32), nullable=False, server_default="data_modification"),
        sa.Column("severity", sa.String(length=16), nullable=False, server_default="low"),
        sa.Column("outcome", sa.String(length=16), nullable=False, server_default="success"),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("prev_hash", sa.String(length=64), nullable=False),
        sa.Column("entry_hash", sa.String(length=64), nullable=False),
        sa.UniqueConstraint("entry_hash", name="uq_audit_log_entry_hash"),
    )
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_tenant_created_at", "audit_log", ["tenant_id", "created_at"])
    op.create_index("ix_audit_log_tenant_resource", "audit_log", ["tenant_id", "resource", "resource_id"])

    # ==================== Platform ====================
    op.create_table(
        "event_record",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("outbox_id", sa.Integer(), nullable=True),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("outbox_id", name="uq_event_record_outbox_id"),
    )
    op.create_index("ix_event_record_event_type", "event_record", ["event_type"])
    op.create_index("ix_event_record_user_id", "event_record", ["user_id"])
    op.create_index("ix_event_record_created_at", "event_record", ["created_at"])
    op.create_index("ix_event_record_tenant_created_at", "event_record", ["tenant_id", "created_at"])
    op.create_index("ix_event_record_tenant_event_type", "event_record", ["tenant_id", "event_type"])

    op.create_table(
        "platform_outbox",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_platform_outbox_event_type", "platform_outbox", ["event_type"])
    op.create_index("ix_platform_outbox_status_available_at", "platform_outbox", ["status", "available_at"])
    op.create_index("ix_platform_outbox_tenant_created_at", "platform_outbox", ["tenant_id", "created_at"])

    op.create_table(
        "idempotency_key",
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), primary_key=True),
        sa.Column("key", sa.String(length=255), primary_key=True),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="processing"),
        sa.Column("response_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_idempotency_key_expires_at", "idempotency_key", ["expires_at"])

    # ==================== FX ====================
    op.create_table(
        "currency",
        sa.Column("code", sa.String(length=3), primary_key=True),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("symbol", sa.String(length=8), nullable=True),
        sa.Column("decimal_places", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "fx_rate",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=True),
        sa.Column("from_currency", sa.String(length=3), sa.ForeignKey("currency.code"), nullable=False),
        sa.Column("to_currency", sa.String(length=3), sa.ForeignKey("currency.code"), nullable=False),
        sa.Column("rate", sa.Numeric(18, 8), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("provider", sa.String(length=64), nullable=True),
        sa.Column("valid_from", sa.DateTime(), nullable=False),
        sa.Column("valid_to", sa.DateTime(), nullable=True),
        sa.Column("fetched_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.CheckConstraint("rate > 0", name="ck_fx_rate_positive"),
    )
    op.create_index("ix_fx_rate_pair_valid_from", "fx_rate", ["from_currency", "to_currency", "valid_from"])
    op.create_index("ix_fx_rate_tenant_pair", "fx_rate", ["tenant_id", "from_currency", "to_currency"])

    # ==================== Ledger ====================
    op.create_table(
        "account",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id"), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("normalized_name", sa.String(length=255), nullable=False),
        sa.Column("account_type", sa.String(length=16), nullable=False),
        sa.Column("account_subtype", sa.String(length=32), nullable=False),
        sa.Column("normal_balance", sa.String(length=8), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("allow_posting", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "code", name="uq_account_company_code"),
    )
    op.create_index("ix_account_tenant_company", "account", ["tenant_id", "company_id"])
    op.create_index("ix_account_company_type", "account", ["company_id", "account_type"])

    op.create_table(
        "journal",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id"), nullable=False),
        sa.Column("journal_number", sa.String(length=40), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="manual"),
        sa.Column("journal_date", sa.Date(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(18, 8), nullable=False, server_default="1"),
        sa.Column("rate_source", sa.String(length=16), nullable=True),
        _money("total_debit"),
        _money("total_credit"),
        _money("base_total_debit"),
        _money("base_total_credit"),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="draft"),
        sa.Column("auto_reverse", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reversal_of_id", sa.Integer(), sa.ForeignKey("journal.id"), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("posted_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("posted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "journal_number", name="uq_journal_company_number"),
    )
    op.create_index("ix_journal_tenant_company_date", "journal", ["tenant_id", "company_id", "journal_date"])
    op.create_index("ix_journal_company_status", "journal", ["company_id", "status"])

    op.create_table(
        "journal_line",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("journal_id", sa.Integer(), sa.ForeignKey("journal.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=False),
        _money("debit"),
        _money("credit"),
        _money("base_debit"),
        _money("base_credit"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.CheckConstraint("debit >= 0 AND credit >= 0", name="ck_journal_line_non_negative"),
    )
    op.create_index("ix_journal_line_journal_id", "journal_line", ["journal_id"])
    op.create_index("ix_journal_line_account", "journal_line", ["account_id"])

    # ==================== Periods ====================
    op.create_table(
        "fiscal_period",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id"), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("period_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="OPEN"),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.Column("closed_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("close_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "fiscal_year", "period_number", name="uq_fiscal_period_company_year_number"),
    )
    op.create_index("ix_fiscal_period_company_dates", "fiscal_period", ["company_id", "start_date", "end_date"])

    op.create_table(
        "period_lock",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("period_id", sa.Integer(), sa.ForeignKey("fiscal_period.id"), nullable=False),
        sa.Column("lock_type", sa.String(length=16), nullable=False),
        sa.Column("locked_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("released_at", sa.DateTime(), nullable=True),
        sa.Column("released_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
    )
    op.create_index("ix_period_lock_period_active", "period_lock", ["period_id", "is_active"])

    # ==================== Billing ====================
    def document_columns() -> list:
        return [
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=False),
            sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id"), nullable=False),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("exchange_rate", sa.Numeric(18, 8), nullable=True),
            _money("subtotal"),
            _money("tax_amount"),
            _money("total_amount"),
            _money("paid_amount"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("journal_id", sa.Integer(), sa.ForeignKey("journal.id"), nullable=True),
            sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
            *_timestamps(),
        ]

    def line_columns() -> list:
        return [
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("line_number", sa.Integer(), nullable=False),
            sa.Column("description", sa.String(length=512), nullable=False),
            sa.Column("quantity", sa.Numeric(18, 4), nullable=False, server_default="1"),
            sa.Column("unit_price", sa.Numeric(18, 4), nullable=False),
            sa.Column("line_amount", sa.Numeric(18, 2), nullable=False),
            sa.Column("tax_rate", sa.Numeric(9, 4), nullable=False, server_default="0"),
            _money("tax_amount"),
        ]

    op.create_table(
        "invoice",
        *document_columns(),
        sa.Column("invoice_number", sa.String(length=40), nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("receivable_account_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=False),
        sa.UniqueConstraint("company_id", "invoice_number", name="uq_invoice_company_number"),
    )
    op.create_index("ix_invoice_company_status", "invoice", ["company_id", "status"])

    op.create_table(
        "invoice_line",
        *line_columns(),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoice.id"), nullable=False),
        sa.Column("revenue_account_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=False),
    )
    op.create_index("ix_invoice_line_invoice_id", "invoice_line", ["invoice_id"])

    op.create_table(
        "bill",
        *document_columns(),
        sa.Column("bill_number", sa.String(length=40), nullable=False),
        sa.Column("bill_date", sa.Date(), nullable=False),
        sa.Column("supplier_name", sa.String(length=255), nullable=False),
        sa.Column("supplier_reference", sa.String(length=128), nullable=True),
        sa.Column("payable_account_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=False),
        sa.UniqueConstraint("company_id", "bill_number", name="uq_bill_company_number"),
    )
    op.create_index("ix_bill_company_status", "bill", ["company_id", "status"])

    op.create_table(
        "bill_line",
        *line_columns(),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bill.id"), nullable=False),
        sa.Column("expense_account_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=False),
    )
    op.create_index("ix_bill_line_bill_id", "bill_line", ["bill_id"])

    op.create_table(
        "payment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenant.id"), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id"), nullable=False),
        sa.Column("direction", sa.String(length=10), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("bank_account_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=False),
        sa.Column("document_type", sa.String(length=10), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("journal_id", sa.Integer(), sa.ForeignKey("journal.id"), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_payment_positive"),
    )
    op.create_index("ix_payment_document", "payment", ["document_type", "document_id"])


def downgrade():
    for table in (
        "payment",
        "bill_line",
        "bill",
        "invoice_line",
        "invoice",
        "period_lock",
        "fiscal_period",
        "journal_line",
        "journal",
        "account",
        "fx_rate",
        "currency",
        "idempotency_key",
        "platform_outbox",
        "event_record",
        "audit_log",
        "jwt_blocklist",
        "session_token",
        "membership",
        "company",
        "tenant",
        "user",
    ):
        op.drop_table(table)
