"""Chart of accounts and journal models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aibos.core.utils.errors import DomainError
from aibos.domains.ledger.constants import JOURNAL_DRAFT, LOCKED_STATUSES
from aibos.extensions import db


class Account(db.Model):
    __tablename__ = "account"
    __table_args__ = (
        db.UniqueConstraint("company_id", "code", name="uq_account_company_code"),
        db.Index("ix_account_tenant_company", "tenant_id", "company_id"),
        db.Index("ix_account_company_type", "company_id", "account_type"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(db.ForeignKey("tenant.id"), nullable=False)
    company_id: Mapped[int] = mapped_column(db.ForeignKey("company.id"), nullable=False)
    code: Mapped[str] = mapped_column(db.String(32), nullable=False)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(db.String(16), nullable=False)
    account_subtype: Mapped[str] = mapped_column(db.String(32), nullable=False)
    normal_balance: Mapped[str] = mapped_column(db.String(8), nullable=False)
    currency: Mapped[str | None] = mapped_column(db.String(3), nullable=True)
    parent_id: Mapped[int | None] = mapped_column(db.ForeignKey("account.id"), nullable=True)
    description: Mapped[str | None] = mapped_column(db.Text)
    is_active: Mapped[bool] = mapped_column(default=True)
    allow_posting: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    parent = relationship("Account", remote_side="Account.id")


class Journal(db.Model):
    __tablename__ = "journal"
    __table_args__ = (
        db.UniqueConstraint("company_id", "journal_number", name="uq_journal_company_number"),
        db.Index("ix_journal_tenant_company_date", "tenant_id", "company_id", "journal_date"),
        db.Index("ix_journal_company_status", "company_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(db.ForeignKey("tenant.id"), nullable=False)
    company_id: Mapped[int] = mapped_column(db.ForeignKey("company.id"), nullable=False)
    journal_number: Mapped[str] = mapped_column(db.String(40), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text)
    reference: Mapped[str | None] = mapped_column(db.String(128))
    source: Mapped[str] = mapped_column(db.String(32), nullable=False, default="manual")
    journal_date: Mapped[date] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(db.Numeric(18, 8), nullable=False, default=Decimal("1"))
    rate_source: Mapped[str | None] = mapped_column(db.String(16))
    total_debit: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    total_credit: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    base_total_debit: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    base_total_credit: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(db.String(24), nullable=False, default=JOURNAL_DRAFT)
    auto_reverse: Mapped[bool] = mapped_column(default=False)
    reversal_of_id: Mapped[int | None] = mapped_column(db.ForeignKey("journal.id"), nullable=True)
    created_by: Mapped[int] = mapped_column(db.ForeignKey("user.id"), nullable=False)
    approved_by: Mapped[int | None] = mapped_column(db.ForeignKey("user.id"), nullable=True)
    posted_by: Mapped[int | None] = mapped_column(db.ForeignKey("user.id"), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    lines: Mapped[list["JournalLine"]] = relationship(
        "JournalLine",
        back_populates="journal",
        cascade="all, delete-orphan",
        order_by="JournalLine.line_number",
    )
    reversal_of = relationship("Journal", remote_side="Journal.id")


class JournalLine(db.Model):
    __tablename__ = "journal_line"
    __table_args__ = (
        db.Index("ix_journal_line_account", "account_id"),
        db.CheckConstraint("debit >= 0 AND credit >= 0", name="ck_journal_line_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    journal_id: Mapped[int] = mapped_column(db.ForeignKey("journal.id"), nullable=False, index=True)
    line_number: Mapped[int] = mapped_column(nullable=False)
    account_id: Mapped[int] = mapped_column(db.ForeignKey("account.id"), nullable=False)
    debit: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    base_debit: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    base_credit: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    description: Mapped[str | None] = mapped_column(db.Text)
    reference: Mapped[str | None] = mapped_column(db.String(128))

    journal: Mapped[Journal] = relationship("Journal", back_populates="lines")
    account: Mapped[Account] = relationship("Account")


# Fields of a posted journal that may still change (status moves to reversed).
_MUTABLE_AFTER_POSTING = {"status", "updated_at"}


@event.listens_for(Journal, "before_update")
def _guard_posted_journal(mapper, connection, target: Journal) -> None:
    state = inspect(target)
    status_history = state.attrs.status.history
    previous_status = status_history.deleted[0] if status_history.deleted else target.status
    if previous_status not in LOCKED_STATUSES:
        return
    for attr in state.attrs:
        if attr.key in _MUTABLE_AFTER_POSTING or attr.key in ("lines", "reversal_of"):
            continue
        if attr.history.has_changes():
            raise DomainError("journal_not_editable", f"Posted journal field '{attr.key}' cannot change")


@event.listens_for(JournalLine, "before_update")
@event.listens_for(JournalLine, "before_delete")
def _guard_posted_lines(mapper, connection, target: JournalLine) -> None:
    journal = target.journal
    if journal is not None and journal.status in LOCKED_STATUSES:
        raise DomainError("journal_not_editable", "Lines of a posted journal cannot change")
