"""Fiscal period and period lock models."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy.orm import Mapped, mapped_column, relationship

from aibos.extensions import db

PERIOD_OPEN = "OPEN"
PERIOD_CLOSED = "CLOSED"
PERIOD_LOCKED = "LOCKED"
PERIOD_STATUSES = (PERIOD_OPEN, PERIOD_CLOSED, PERIOD_LOCKED)

LOCK_POSTING = "POSTING"
LOCK_REPORTING = "REPORTING"
LOCK_FULL = "FULL"
LOCK_TYPES = (LOCK_POSTING, LOCK_REPORTING, LOCK_FULL)
# Lock types that stop new journals landing in the period.
POSTING_LOCK_TYPES = frozenset({LOCK_POSTING, LOCK_FULL})


class FiscalPeriod(db.Model):
    __tablename__ = "fiscal_period"
    __table_args__ = (
        db.UniqueConstraint(
            "company_id", "fiscal_year", "period_number", name="uq_fiscal_period_company_year_number"
        ),
        db.Index("ix_fiscal_period_company_dates", "company_id", "start_date", "end_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(db.ForeignKey("tenant.id"), nullable=False)
    company_id: Mapped[int] = mapped_column(db.ForeignKey("company.id"), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(nullable=False)
    period_number: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(db.String(64), nullable=False)
    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(db.String(16), nullable=False, default=PERIOD_OPEN)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_by: Mapped[int | None] = mapped_column(db.ForeignKey("user.id"), nullable=True)
    close_reason: Mapped[str | None] = mapped_column(db.Text)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    locks: Mapped[list["PeriodLock"]] = relationship(
        "PeriodLock", back_populates="period", cascade="all, delete-orphan"
    )

    def active_locks(self) -> list["PeriodLock"]:
        return [lock for lock in self.locks if lock.is_active]

    def contains(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date


class PeriodLock(db.Model):
    __tablename__ = "period_lock"
    __table_args__ = (db.Index("ix_period_lock_period_active", "period_id", "is_active"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    period_id: Mapped[int] = mapped_column(db.ForeignKey("fiscal_period.id"), nullable=False)
    lock_type: Mapped[str] = mapped_column(db.String(16), nullable=False)
    locked_by: Mapped[int] = mapped_column(db.ForeignKey("user.id"), nullable=False)
    reason: Mapped[str | None] = mapped_column(db.Text)
    is_active: Mapped[bool] = mapped_column(default=True)
    locked_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    released_by: Mapped[int | None] = mapped_column(db.ForeignKey("user.id"), nullable=True)

    period: Mapped[FiscalPeriod] = relationship("FiscalPeriod", back_populates="locks")
