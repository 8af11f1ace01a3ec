"""Imported bank statements and their transactions."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.orm import Mapped, mapped_column, relationship

from aibos.extensions import db

TXN_UNMATCHED = "unmatched"
TXN_SUGGESTED = "suggested"
TXN_MATCHED = "matched"
TXN_STATUSES = (TXN_UNMATCHED, TXN_SUGGESTED, TXN_MATCHED)


class BankStatementImport(db.Model):
    __tablename__ = "bank_statement_import"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(db.ForeignKey("tenant.id"), nullable=False)
    company_id: Mapped[int] = mapped_column(db.ForeignKey("company.id"), nullable=False, index=True)
    bank_account_id: Mapped[int] = mapped_column(db.ForeignKey("account.id"), nullable=False)
    bank_format: Mapped[str] = mapped_column(db.String(32), nullable=False)
    filename: Mapped[str | None] = mapped_column(db.String(255))
    total_rows: Mapped[int] = mapped_column(nullable=False, default=0)
    imported_count: Mapped[int] = mapped_column(nullable=False, default=0)
    duplicate_count: Mapped[int] = mapped_column(nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(nullable=False, default=0)
    errors: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    warnings: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    created_by: Mapped[int] = mapped_column(db.ForeignKey("user.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)

    transactions: Mapped[list["BankTransaction"]] = relationship(
        "BankTransaction", back_populates="statement", order_by="BankTransaction.row_number"
    )


class BankTransaction(db.Model):
    """One statement row. ``debit`` is money leaving the account, ``credit`` money arriving."""

    __tablename__ = "bank_transaction"
    __table_args__ = (
        db.UniqueConstraint("bank_account_id", "fingerprint", name="uq_bank_transaction_fingerprint"),
        db.Index("ix_bank_transaction_company_status", "company_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(db.ForeignKey("tenant.id"), nullable=False)
    company_id: Mapped[int] = mapped_column(db.ForeignKey("company.id"), nullable=False)
    import_id: Mapped[int] = mapped_column(db.ForeignKey("bank_statement_import.id"), nullable=False, index=True)
    bank_account_id: Mapped[int] = mapped_column(db.ForeignKey("account.id"), nullable=False)
    row_number: Mapped[int] = mapped_column(nullable=False)
    transaction_date: Mapped[date] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(db.String(255), nullable=False)
    reference: Mapped[str | None] = mapped_column(db.String(128))
    debit: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    balance: Mapped[Decimal | None] = mapped_column(db.Numeric(18, 2), nullable=True)
    fingerprint: Mapped[str] = mapped_column(db.String(64), nullable=False)
    status: Mapped[str] = mapped_column(db.String(20), nullable=False, default=TXN_UNMATCHED)
    match_confidence: Mapped[Decimal | None] = mapped_column(db.Numeric(5, 2), nullable=True)
    match_type: Mapped[str | None] = mapped_column(db.String(10))
    match_id: Mapped[int | None] = mapped_column(nullable=True)
    payment_id: Mapped[int | None] = mapped_column(db.ForeignKey("payment.id"), nullable=True)
    matched_by: Mapped[int | None] = mapped_column(db.ForeignKey("user.id"), nullable=True)
    matched_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)

    statement: Mapped[BankStatementImport] = relationship("BankStatementImport", back_populates="transactions")

    @property
    def is_outgoing(self) -> bool:
        return Decimal(self.debit or 0) > 0

    @property
    def amount(self) -> Decimal:
        return Decimal(self.debit) if self.is_outgoing else Decimal(self.credit or 0)
