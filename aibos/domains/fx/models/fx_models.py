"""Currency and exchange-rate models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Mapped, mapped_column

from aibos.extensions import db


class Currency(db.Model):
    __tablename__ = "currency"

    code: Mapped[str] = mapped_column(db.String(3), primary_key=True)
    name: Mapped[str] = mapped_column(db.String(64), nullable=False)
    symbol: Mapped[str | None] = mapped_column(db.String(8))
    decimal_places: Mapped[int] = mapped_column(default=2)
    is_active: Mapped[bool] = mapped_column(default=True)


class FxRate(db.Model):
    """Rate quoted as 1 ``from_currency`` = ``rate`` ``to_currency``.

    Provider rows are global (tenant_id NULL); manual rows belong to a tenant.
    The open row for a pair has ``valid_to`` NULL.
    """

    __tablename__ = "fx_rate"
    __table_args__ = (
        db.Index("ix_fx_rate_pair_valid_from", "from_currency", "to_currency", "valid_from"),
        db.Index("ix_fx_rate_tenant_pair", "tenant_id", "from_currency", "to_currency"),
        db.CheckConstraint("rate > 0", name="ck_fx_rate_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int | None] = mapped_column(db.ForeignKey("tenant.id"), nullable=True)
    from_currency: Mapped[str] = mapped_column(db.String(3), db.ForeignKey("currency.code"), nullable=False)
    to_currency: Mapped[str] = mapped_column(db.String(3), db.ForeignKey("currency.code"), nullable=False)
    rate: Mapped[Decimal] = mapped_column(db.Numeric(18, 8), nullable=False)
    source: Mapped[str] = mapped_column(db.String(16), nullable=False)
    provider: Mapped[str | None] = mapped_column(db.String(64))
    valid_from: Mapped[datetime] = mapped_column(nullable=False)
    valid_to: Mapped[datetime | None] = mapped_column(nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    created_by: Mapped[int | None] = mapped_column(db.ForeignKey("user.id"), nullable=True)
