"""
Pydantic schemas for the invoice-reminder backend.

Request bodies accept the camelCase keys the web client sends as well as
snake_case; responses are dumped with camelCase aliases.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ═══════════════════════════════════════════════════════════════════════════════
# OAuth
# ═══════════════════════════════════════════════════════════════════════════════


class OAuthTokens(BaseModel):
    """Token set returned by a connector — values are already encrypted."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None


class ProviderAccount(BaseModel):
    """Identity/account metadata reported by a provider after connect."""

    account_id: Optional[str] = None
    account_email: Optional[str] = None
    account_name: Optional[str] = None
    datacenter: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class CompleteOAuthRequest(CamelModel):
    code: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)


# ═══════════════════════════════════════════════════════════════════════════════
# Invoice sync
# ═══════════════════════════════════════════════════════════════════════════════


class SyncResult(CamelModel):
    success: bool = True
    synced_count: int = 0
    updated_count: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    debug: Dict[str, Any] = Field(default_factory=dict)


class InvoiceOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    invoice_number: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    amount: float
    currency: Optional[str] = None
    due_date: date
    status: str
    payment_date: Optional[date] = None
    external_id: str
    integration_source: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Reminders
# ═══════════════════════════════════════════════════════════════════════════════


class TemplateSnapshot(CamelModel):
    """
    Frozen copy of a template taken when a reminder is scheduled.

    Later edits to the live template never reach reminders that already
    hold a snapshot.  Unknown keys from the editor are kept verbatim.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    id: str
    name: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None


class ScheduleSpec(CamelModel):
    days_overdue: int = Field(..., alias="day")
    enabled: bool = True
    template: Optional[TemplateSnapshot] = None
    is_custom: bool = False


class CreateRemindersRequest(CamelModel):
    invoice_id: int
    schedules: List[ScheduleSpec]
    recipient_emails: List[str]
    bulk_group_id: Optional[str] = None


class ReminderPatch(CamelModel):
    scheduled_date: Optional[date] = None
    recipient_emails: Optional[List[str]] = None
    days_overdue: Optional[int] = None


class ReminderOut(CamelModel):
    id: int
    invoice_id: int
    invoice_number: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    amount: Optional[float] = None
    schedule_type: str
    days_overdue: int
    scheduled_date: date
    recipient_emails: List[str]
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    bulk_group_id: Optional[str] = None
    is_sent: bool = False
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Email providers
# ═══════════════════════════════════════════════════════════════════════════════


class EmailProviderRequest(CamelModel):
    provider_name: str
    api_key: str = ""
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    provider_type: Literal["api", "oauth", "smtp"] = "api"
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = None
    smtp_secure: bool = False
    smtp_username: Optional[str] = None


class UpdateSenderRequest(CamelModel):
    provider_name: str
    from_email: str
