"""Idempotency key records."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from aibos.extensions import db


class IdempotencyKey(db.Model):
    __tablename__ = "idempotency_key"
    __table_args__ = (db.Index("ix_idempotency_key_expires_at", "expires_at"),)

    tenant_id: Mapped[int] = mapped_column(db.ForeignKey("tenant.id"), primary_key=True)
    key: Mapped[str] = mapped_column(db.String(255), primary_key=True)
    request_hash: Mapped[str] = mapped_column(db.String(64), nullable=False)
    status: Mapped[str] = mapped_column(db.String(16), nullable=False, default="processing")
    response_code: Mapped[int | None] = mapped_column(nullable=True)
    response_body: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
