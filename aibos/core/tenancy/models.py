"""Tenant, company and membership models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship

from aibos.core.users.models import TimestampMixin
from aibos.extensions import db


class Tenant(db.Model, TimestampMixin):
    """Isolation boundary; every business row carries a tenant_id."""

    __tablename__ = "tenant"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    slug: Mapped[str] = mapped_column(db.String(64), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True)
    feature_flags: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)

    companies: Mapped[list["Company"]] = relationship(
        "Company", back_populates="tenant", cascade="all, delete-orphan"
    )


class Company(db.Model, TimestampMixin):
    __tablename__ = "company"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_company_tenant_code"),
        db.Index("ix_company_tenant", "tenant_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(db.ForeignKey("tenant.id"), nullable=False)
    code: Mapped[str] = mapped_column(db.String(32), nullable=False)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    base_currency: Mapped[str] = mapped_column(db.String(3), nullable=False, default="USD")
    fiscal_year_end: Mapped[str] = mapped_column(db.String(5), nullable=False, default="12-31")
    policy_settings: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(default=True)

    tenant: Mapped[Tenant] = relationship("Tenant", back_populates="companies")

    @property
    def approval_threshold(self) -> Optional[Decimal]:
        """Base-currency total at or above which posting needs approval."""
        raw = (self.policy_settings or {}).get("approval_threshold")
        return Decimal(str(raw)) if raw is not None else None

    @approval_threshold.setter
    def approval_threshold(self, value: Optional[Decimal]) -> None:
        settings = dict(self.policy_settings or {})
        settings["approval_threshold"] = str(value) if value is not None else None
        self.policy_settings = settings


class Membership(db.Model):
    """A user's role in a tenant, optionally narrowed to one company."""

    __tablename__ = "membership"
    __table_args__ = (
        db.UniqueConstraint("user_id", "tenant_id", "company_id", name="uq_membership_user_tenant_company"),
        db.Index("ix_membership_tenant", "tenant_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(db.ForeignKey("user.id"), nullable=False, index=True)
    tenant_id: Mapped[int] = mapped_column(db.ForeignKey("tenant.id"), nullable=False)
    company_id: Mapped[int | None] = mapped_column(db.ForeignKey("company.id"), nullable=True)
    role: Mapped[str] = mapped_column(db.String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)

    user = relationship("User", back_populates="memberships")
    tenant: Mapped[Tenant] = relationship("Tenant")
    company: Mapped[Company | None] = relationship("Company")
