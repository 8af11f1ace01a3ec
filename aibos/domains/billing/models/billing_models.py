"""Invoice, bill and payment models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.orm import Mapped, mapped_column, relationship

from aibos.extensions import db

DOC_DRAFT = "draft"
DOC_POSTED = "posted"
DOC_PARTIALLY_PAID = "partially_paid"
DOC_PAID = "paid"
DOC_VOID = "void"
DOCUMENT_STATUSES = (DOC_DRAFT, DOC_POSTED, DOC_PARTIALLY_PAID, DOC_PAID, DOC_VOID)
PAYABLE_STATUSES = frozenset({DOC_POSTED, DOC_PARTIALLY_PAID})

DIRECTION_RECEIVED = "received"
DIRECTION_MADE = "made"

DOCUMENT_INVOICE = "invoice"
DOCUMENT_BILL = "bill"


class DocumentMixin:
    """Columns shared by invoices and bills."""

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(db.ForeignKey("tenant.id"), nullable=False)
    company_id: Mapped[int] = mapped_column(db.ForeignKey("company.id"), nullable=False)
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False)
    exchange_rate: Mapped[Decimal | None] = mapped_column(db.Numeric(18, 8), nullable=True)
    subtotal: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(db.String(20), nullable=False, default=DOC_DRAFT)
    notes: Mapped[str | None] = mapped_column(db.Text)
    journal_id: Mapped[int | None] = mapped_column(db.ForeignKey("journal.id"), nullable=True)
    created_by: Mapped[int] = mapped_column(db.ForeignKey("user.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def outstanding(self) -> Decimal:
        return Decimal(self.total_amount or 0) - Decimal(self.paid_amount or 0)


class LineMixin:
    id: Mapped[int] = mapped_column(primary_key=True)
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(db.String(512), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(db.Numeric(18, 4), nullable=False, default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(db.Numeric(18, 4), nullable=False)
    line_amount: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(db.Numeric(9, 4), nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))


class Invoice(DocumentMixin, db.Model):
    __tablename__ = "invoice"
    __table_args__ = (
        db.UniqueConstraint("company_id", "invoice_number", name="uq_invoice_company_number"),
        db.Index("ix_invoice_company_status", "company_id", "status"),
    )

    invoice_number: Mapped[str] = mapped_column(db.String(40), nullable=False)
    invoice_date: Mapped[date] = mapped_column(nullable=False)
    customer_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    receivable_account_id: Mapped[int] = mapped_column(db.ForeignKey("account.id"), nullable=False)

    lines: Mapped[list["InvoiceLine"]] = relationship(
        "InvoiceLine", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoiceLine.line_number"
    )

    @property
    def document_number(self) -> str:
        return self.invoice_number

    @property
    def document_date(self) -> date:
        return self.invoice_date


class InvoiceLine(LineMixin, db.Model):
    __tablename__ = "invoice_line"

    invoice_id: Mapped[int] = mapped_column(db.ForeignKey("invoice.id"), nullable=False, index=True)
    revenue_account_id: Mapped[int] = mapped_column(db.ForeignKey("account.id"), nullable=False)

    invoice: Mapped[Invoice] = relationship("Invoice", back_populates="lines")

    @property
    def account_id(self) -> int:
        return self.revenue_account_id


class Bill(DocumentMixin, db.Model):
    __tablename__ = "bill"
    __table_args__ = (
        db.UniqueConstraint("company_id", "bill_number", name="uq_bill_company_number"),
        db.Index("ix_bill_company_status", "company_id", "status"),
    )

    bill_number: Mapped[str] = mapped_column(db.String(40), nullable=False)
    bill_date: Mapped[date] = mapped_column(nullable=False)
    supplier_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    supplier_reference: Mapped[str | None] = mapped_column(db.String(128))
    payable_account_id: Mapped[int] = mapped_column(db.ForeignKey("account.id"), nullable=False)

    lines: Mapped[list["BillLine"]] = relationship(
        "BillLine", back_populates="bill", cascade="all, delete-orphan", order_by="BillLine.line_number"
    )

    @property
    def document_number(self) -> str:
        return self.bill_number

    @property
    def document_date(self) -> date:
        return self.bill_date


class BillLine(LineMixin, db.Model):
    __tablename__ = "bill_line"

    bill_id: Mapped[int] = mapped_column(db.ForeignKey("bill.id"), nullable=False, index=True)
    expense_account_id: Mapped[int] = mapped_column(db.ForeignKey("account.id"), nullable=False)

    bill: Mapped[Bill] = relationship("Bill", back_populates="lines")

    @property
    def account_id(self) -> int:
        return self.expense_account_id


class Payment(db.Model):
    __tablename__ = "payment"
    __table_args__ = (
        db.Index("ix_payment_document", "document_type", "document_id"),
        db.CheckConstraint("amount > 0", name="ck_payment_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(db.ForeignKey("tenant.id"), nullable=False)
    company_id: Mapped[int] = mapped_column(db.ForeignKey("company.id"), nullable=False)
    direction: Mapped[str] = mapped_column(db.String(10), nullable=False)
    payment_date: Mapped[date] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False)
    bank_account_id: Mapped[int] = mapped_column(db.ForeignKey("account.id"), nullable=False)
    document_type: Mapped[str] = mapped_column(db.String(10), nullable=False)
    document_id: Mapped[int | None] = mapped_column(nullable=True)
    reference: Mapped[str | None] = mapped_column(db.String(128))
    journal_id: Mapped[int | None] = mapped_column(db.ForeignKey("journal.id"), nullable=True)
    created_by: Mapped[int] = mapped_column(db.ForeignKey("user.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)

    allocations: Mapped[list["PaymentAllocation"]] = relationship(
        "PaymentAllocation", back_populates="payment", cascade="all, delete-orphan", order_by="PaymentAllocation.id"
    )


class PaymentAllocation(db.Model):
    """Share of a payment applied to one invoice or bill.

    Single-document payments carry one allocation and keep ``Payment.document_id``;
    split payments leave it empty.
    """

    __tablename__ = "payment_allocation"
    __table_args__ = (
        db.UniqueConstraint("payment_id", "document_id", name="uq_payment_allocation_document"),
        db.Index("ix_payment_allocation_document", "document_type", "document_id"),
        db.CheckConstraint("amount > 0", name="ck_payment_allocation_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    payment_id: Mapped[int] = mapped_column(db.ForeignKey("payment.id"), nullable=False, index=True)
    document_type: Mapped[str] = mapped_column(db.String(10), nullable=False)
    document_id: Mapped[int] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(db.Numeric(18, 2), nullable=False)

    payment: Mapped[Payment] = relationship("Payment", back_populates="allocations")
