"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, MySQL 8+, SQLite.

Key design decisions:
  - JSON type instead of PostgreSQL-specific JSONB for the job payload.
  - String primary keys (uuid hex) — no database-specific sequences.
  - contacts and tenant_messaging_settings belong to the surrounding
    application; they are mapped here only for the columns this
    pipeline reads.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Text, Index, JSON,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ──────────────────────────────────────────────────────────────
#  Message jobs — the dispatch queue
# ──────────────────────────────────────────────────────────────

class MessageJobRow(Base):
    __tablename__ = "message_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contact_id: Mapped[str] = mapped_column(String(64), nullable=False)
    channel: Mapped[str] = mapped_column(String(32), default="whatsapp")
    type: Mapped[str] = mapped_column(String(32), default="welcome")
    status: Mapped[str] = mapped_column(String(16), default="PENDING")

    payload: Mapped[Any] = mapped_column(JSON, default=dict)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_message_jobs_due", "status", "scheduled_at"),
        Index("ix_message_jobs_tenant", "tenant_id", "created_at"),
    )


# ──────────────────────────────────────────────────────────────
#  Contacts (external)
# ──────────────────────────────────────────────────────────────

class ContactRow(Base):
    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(256), default="")
    phone_e164: Mapped[str] = mapped_column(String(64), default="")
    opt_in_whatsapp: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_contacts_tenant_created", "tenant_id", "created_at"),
    )


# ──────────────────────────────────────────────────────────────
#  Tenant messaging settings (external)
# ──────────────────────────────────────────────────────────────

class TenantSettingsRow(Base):
    __tablename__ = "tenant_messaging_settings"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_link: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    template_name: Mapped[str] = mapped_column(String(128), default="welcome_ccm")
    messaging_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
