"""Pydantic schemas for invoices, bills and payments."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _LineInput(BaseModel):
    description: Optional[str] = Field(default=None, max_length=512)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal = Field(ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class InvoiceLineInput(_LineInput):
    revenue_account_id: int


class BillLineInput(_LineInput):
    expense_account_id: int


class _DocumentInput(BaseModel):
    due_date: Optional[date] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class InvoiceCreateRequest(_DocumentInput):
    customer_name: str = Field(min_length=1, max_length=255)
    invoice_number: Optional[str] = Field(default=None, max_length=40)
    invoice_date: Optional[date] = None
    receivable_account_id: Optional[int] = None
    lines: List[InvoiceLineInput] = Field(min_length=1, max_length=99)


class BillCreateRequest(_DocumentInput):
    supplier_name: str = Field(min_length=1, max_length=255)
    supplier_reference: Optional[str] = Field(default=None, max_length=128)
    bill_number: Optional[str] = Field(default=None, max_length=40)
    bill_date: Optional[date] = None
    payable_account_id: Optional[int] = None
    lines: List[BillLineInput] = Field(min_length=1, max_length=99)


class VoidRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=512)


class PaymentAllocationInput(BaseModel):
    document_id: int
    amount: Decimal


class PaymentCreateRequest(BaseModel):
    direction: Literal["received", "made"]
    document_id: Optional[int] = None
    amount: Optional[Decimal] = None
    bank_account_id: int
    payment_date: Optional[date] = None
    reference: Optional[str] = Field(default=None, max_length=128)
    allocations: Optional[List[PaymentAllocationInput]] = Field(default=None, max_length=50)


class DocumentLineResponse(BaseModel):
    id: int
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    account_id: int

    model_config = ConfigDict(from_attributes=True)


class _DocumentResponse(BaseModel):
    id: int
    company_id: int
    due_date: Optional[date] = None
    currency: str
    exchange_rate: Optional[Decimal] = None
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    outstanding: Decimal
    status: str
    notes: Optional[str] = None
    journal_id: Optional[int] = None
    created_at: datetime
    lines: List[DocumentLineResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class InvoiceResponse(_DocumentResponse):
    invoice_number: str
    invoice_date: date
    customer_name: str
    receivable_account_id: int


class BillResponse(_DocumentResponse):
    bill_number: str
    bill_date: date
    supplier_name: str
    supplier_reference: Optional[str] = None
    payable_account_id: int


class PaymentAllocationResponse(BaseModel):
    document_type: str
    document_id: int
    amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class PaymentResponse(BaseModel):
    id: int
    direction: str
    payment_date: date
    amount: Decimal
    currency: str
    bank_account_id: int
    document_type: str
    document_id: Optional[int] = None
    reference: Optional[str] = None
    journal_id: Optional[int] = None
    created_at: datetime
    allocations: List[PaymentAllocationResponse] = []

    model_config = ConfigDict(from_attributes=True)


def serialize_invoice(invoice) -> dict:
    return InvoiceResponse.model_validate(invoice).model_dump(mode="json")


def serialize_bill(bill) -> dict:
    return BillResponse.model_validate(bill).model_dump(mode="json")


def serialize_payment(payment) -> dict:
    return PaymentResponse.model_validate(payment).model_dump(mode="json")


# ==================== Bank statements ====================


class BankStatementImportRequest(BaseModel):
    bank_account_id: int
    content: str = Field(min_length=1, max_length=2_000_000)
    bank_format: Optional[str] = Field(default=None, max_length=32)
    filename: Optional[str] = Field(default=None, max_length=255)
    skip_rows: int = Field(default=0, ge=0, le=20)


class BankMatchRequest(BaseModel):
    auto_match_threshold: float = Field(default=90.0, ge=0, le=100)
    suggest_threshold: float = Field(default=70.0, ge=0, le=100)
    date_tolerance_days: int = Field(default=7, ge=1, le=60)


class BankConfirmRequest(BaseModel):
    match_type: Optional[Literal["invoice", "bill", "payment"]] = None
    match_id: Optional[int] = None


class BankStatementImportResponse(BaseModel):
    id: int
    bank_account_id: int
    bank_format: str
    filename: Optional[str] = None
    total_rows: int
    imported_count: int
    duplicate_count: int
    error_count: int
    errors: List[dict]
    warnings: List[dict]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


def serialize_statement(statement) -> dict:
    return BankStatementImportResponse.model_validate(statement).model_dump(mode="json")
