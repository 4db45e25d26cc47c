"""
SQLAlchemy ORM models for users, OAuth connections, invoices, scheduled
reminders and email-provider configuration.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    user_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    display_name = Column(String(128))
    password_hash = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=_now)


class Connection(Base):
    """Stored OAuth credential set for one (user, provider) pair."""

    __tablename__ = "oauth_connections"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_connection_user_provider"),)

    connection_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    account_id = Column(String(256))
    account_email = Column(String(255))
    account_name = Column(String(255))
    datacenter = Column(String(32))
    provider_meta = Column(JSON, default=dict)
    last_synced_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)


class Invoice(Base):
    __tablename__ = "invoices"
    # ownership is deliberately not part of the key, see core.invoice_sync
    __table_args__ = (
        UniqueConstraint("external_id", "integration_source", name="uq_invoice_external"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    external_id = Column(String(128), nullable=False)
    integration_source = Column(String(32), nullable=False)
    invoice_number = Column(String(128))
    client_name = Column(String(255))
    client_email = Column(String(255))
    amount = Column(Float, nullable=False, default=0.0)
    currency = Column(String(8))
    due_date = Column(Date, nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    payment_date = Column(Date)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)

    reminders = relationship(
        "ScheduledReminder", back_populates="invoice", cascade="all, delete-orphan"
    )


class ScheduledReminder(Base):
    __tablename__ = "scheduled_reminders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    schedule_type = Column(String(16), nullable=False, default="standard")
    days_overdue = Column(Integer, nullable=False)
    template_id = Column(String(64))
    template_snapshot = Column(JSON, nullable=False)
    recipient_emails = Column(JSON, nullable=False, default=list)
    scheduled_date = Column(Date, nullable=False, index=True)
    bulk_group_id = Column(String(64))
    is_sent = Column(Boolean, nullable=False, default=False)
    sent_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)

    invoice = relationship("Invoice", back_populates="reminders")


class EmailProviderConfig(Base):
    __tablename__ = "email_providers"
    __table_args__ = (
        UniqueConstraint("user_id", "provider_name", name="uq_email_provider_user"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    provider_name = Column(String(32), nullable=False)
    api_key = Column(Text, nullable=False)
    from_email = Column(String(255))
    from_name = Column(String(255))
    provider_type = Column(String(16), nullable=False, default="api")
    smtp_host = Column(String(255))
    smtp_port = Column(Integer)
    smtp_secure = Column(Boolean, default=False)
    smtp_username = Column(String(255))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)
