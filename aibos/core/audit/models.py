"""Append-only audit log."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from aibos.extensions import db


class AuditLog(db.Model):
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_tenant_created_at", "tenant_id", "created_at"),
        db.Index("ix_audit_log_tenant_resource", "tenant_id", "resource", "resource_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int | None] = mapped_column(db.ForeignKey("tenant.id"), nullable=True)
    user_id: Mapped[int | None] = mapped_column(db.ForeignKey("user.id"), nullable=True)
    action: Mapped[str] = mapped_column(db.String(128), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(db.String(64), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(db.String(64))
    category: Mapped[str] = mapped_column(db.String(32), nullable=False, default="data_modification")
    severity: Mapped[str] = mapped_column(db.String(16), nullable=False, default="low")
    outcome: Mapped[str] = mapped_column(db.String(16), nullable=False, default="success")
    details: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    ip_address: Mapped[str | None] = mapped_column(db.String(64))
    user_agent: Mapped[str | None] = mapped_column(db.String(255))
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    prev_hash: Mapped[str] = mapped_column(db.String(64), nullable=False)
    entry_hash: Mapped[str] = mapped_column(db.String(64), nullable=False, unique=True)


class AuditChainHead(db.Model):
    """Latest hash of one audit chain; writers lock this row to append."""

    __tablename__ = "audit_chain_head"

    chain_key: Mapped[str] = mapped_column(db.String(32), primary_key=True)
    last_entry_id: Mapped[int | None] = mapped_column(nullable=True)
    last_hash: Mapped[str] = mapped_column(db.String(64), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)
