"""
Reminder scheduler (data level).

Turns reminder schedules into ``scheduled_reminders`` rows with a concrete
send date.  Nothing here sends mail: an external dispatcher reads
``due_reminders`` and calls ``mark_reminder_sent``.
"""

from __future__ import annotations

import logging
import re
from collections import OrderedDict
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.helpers import utcnow
from database.models import Invoice, ScheduledReminder
from utils.exceptions import NotFound, ValidationError
from utils.schemas import ReminderOut, ReminderPatch, ScheduleSpec, TemplateSnapshot

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_NOT_FOUND = "Reminder not found"


def scheduled_date_for(due_date: date, days_overdue: int) -> date:
    """Calendar-day offset from the invoice due date."""
    return due_date + timedelta(days=days_overdue)


def validate_recipients(emails: Optional[Sequence[str]]) -> List[str]:
    cleaned = [e.strip() for e in (emails or []) if e and e.strip()]
    if not cleaned:
        raise ValidationError("At least one recipient email is required", field="recipientEmails")
    for email in cleaned:
        if not _EMAIL_RE.match(email):
            raise ValidationError(f"Invalid email address: {email}", field="recipientEmails")
    return cleaned


def schedule_type_for(spec: ScheduleSpec, bulk_group_id: Optional[str]) -> str:
    if bulk_group_id:
        return "bulk"
    return "custom" if spec.is_custom else "standard"


async def _owned_invoice(session: AsyncSession, user_id: str, invoice_id: int) -> Invoice:
    result = await session.execute(
        select(Invoice).where(Invoice.id == invoice_id, Invoice.user_id == str(user_id))
    )
    invoice = result.scalar_one_or_none()
    if invoice is None:
        raise NotFound("Invoice not found")
    return invoice


async def _owned_reminder(
    session: AsyncSession, user_id: str, reminder_id: int
) -> ScheduledReminder:
    # one message for "absent" and "not yours"
    result = await session.execute(
        select(ScheduledReminder).where(
            ScheduledReminder.id == reminder_id,
            ScheduledReminder.user_id == str(user_id),
        )
    )
    reminder = result.scalar_one_or_none()
    if reminder is None:
        raise NotFound(_NOT_FOUND)
    return reminder


async def create_reminders(
    session: AsyncSession,
    user_id: str,
    invoice_id: int,
    schedules: Sequence[ScheduleSpec],
    recipient_emails: Sequence[str],
    bulk_group_id: Optional[str] = None,
) -> List[ScheduledReminder]:
    """
    Materialize one reminder per enabled schedule that carries a template.

    ``scheduled_date`` is fixed here from the invoice's current due date and
    is not recomputed if that due date changes later.
    """
    if not schedules:
        raise ValidationError("At least one schedule is required", field="schedules")
    recipients = validate_recipients(recipient_emails)
    invoice = await _owned_invoice(session, user_id, invoice_id)

    created: List[ScheduledReminder] = []
    for spec in schedules:
        if not spec.enabled or spec.template is None:
            continue
        snapshot: TemplateSnapshot = spec.template
        reminder = ScheduledReminder(
            user_id=str(user_id),
            invoice_id=invoice.id,
            schedule_type=schedule_type_for(spec, bulk_group_id),
            days_overdue=spec.days_overdue,
            template_id=snapshot.id,
            template_snapshot=snapshot.model_dump(mode="json"),
            recipient_emails=list(recipients),
            scheduled_date=scheduled_date_for(invoice.due_date, spec.days_overdue),
            bulk_group_id=bulk_group_id,
        )
        session.add(reminder)
        created.append(reminder)

    if not created:
        raise ValidationError(
            "No enabled schedule with a template was provided", field="schedules"
        )
    await session.flush()
    logger.info(
        "Scheduled %d reminders for invoice %s (user %s%s)",
        len(created),
        invoice.id,
        user_id,
        f", bulk group {bulk_group_id}" if bulk_group_id else "",
    )
    return created


def snapshot_of(reminder: ScheduledReminder) -> TemplateSnapshot:
    return TemplateSnapshot.model_validate(reminder.template_snapshot)


def to_out(reminder: ScheduledReminder, invoice: Optional[Invoice] = None) -> ReminderOut:
    return ReminderOut(
        id=reminder.id,
        invoice_id=reminder.invoice_id,
        invoice_number=invoice.invoice_number if invoice else None,
        client_name=invoice.client_name if invoice else None,
        client_email=invoice.client_email if invoice else None,
        amount=invoice.amount if invoice else None,
        schedule_type=reminder.schedule_type or "standard",
        days_overdue=reminder.days_overdue,
        scheduled_date=reminder.scheduled_date,
        recipient_emails=list(reminder.recipient_emails or []),
        template_id=reminder.template_id,
        template_name=(reminder.template_snapshot or {}).get("name"),
        bulk_group_id=reminder.bulk_group_id,
        is_sent=bool(reminder.is_sent),
        sent_at=reminder.sent_at,
        created_at=reminder.created_at,
    )


async def list_reminders(
    session: AsyncSession, user_id: str, *, include_sent: bool = False
) -> List[ReminderOut]:
    query = (
        select(ScheduledReminder, Invoice)
        .join(Invoice, ScheduledReminder.invoice_id == Invoice.id)
        .where(ScheduledReminder.user_id == str(user_id))
        .order_by(ScheduledReminder.scheduled_date.asc(), ScheduledReminder.id.asc())
    )
    if not include_sent:
        query = query.where(ScheduledReminder.is_sent.is_(False))
    rows = (await session.execute(query)).all()
    return [to_out(reminder, invoice) for reminder, invoice in rows]


async def update_reminder(
    session: AsyncSession, user_id: str, reminder_id: int, patch: ReminderPatch
) -> ScheduledReminder:
    """Partial update; fields left unset keep their stored values."""
    reminder = await _owned_reminder(session, user_id, reminder_id)
    changes = patch.model_dump(exclude_unset=True, exclude_none=True)

    if "recipient_emails" in changes:
        reminder.recipient_emails = validate_recipients(changes["recipient_emails"])
    if "scheduled_date" in changes:
        reminder.scheduled_date = changes["scheduled_date"]
    if "days_overdue" in changes:
        reminder.days_overdue = changes["days_overdue"]

    if changes:
        reminder.updated_at = utcnow()
        await session.flush()
    return reminder


async def delete_reminder(session: AsyncSession, user_id: str, reminder_id: int) -> None:
    reminder = await _owned_reminder(session, user_id, reminder_id)
    await session.delete(reminder)
    await session.flush()
    logger.info("Deleted reminder %s for user %s", reminder_id, user_id)


def group_bulk_reminders(reminders: Iterable[ReminderOut]) -> Dict[str, Any]:
    """
    Split reminders into bulk groups (by ``bulk_group_id``, first-seen
    order) and single reminders.  Display only; groups are not stored.
    """
    groups: "OrderedDict[str, List[ReminderOut]]" = OrderedDict()
    singles: List[ReminderOut] = []
    for reminder in reminders:
        if reminder.bulk_group_id:
            groups.setdefault(reminder.bulk_group_id, []).append(reminder)
        else:
            singles.append(reminder)
    return {
        "groups": [
            {
                "bulk_group_id": group_id,
                "invoice_ids": sorted({r.invoice_id for r in members}),
                "next_scheduled_date": min(r.scheduled_date for r in members),
                "reminders": members,
            }
            for group_id, members in groups.items()
        ],
        "singles": singles,
    }


async def due_reminders(session: AsyncSession, on_date: date) -> List[ScheduledReminder]:
    """Unsent reminders scheduled on or before ``on_date``, oldest first."""
    result = await session.execute(
        select(ScheduledReminder)
        .where(
            ScheduledReminder.is_sent.is_(False),
            ScheduledReminder.scheduled_date <= on_date,
        )
        .order_by(ScheduledReminder.scheduled_date.asc(), ScheduledReminder.id.asc())
    )
    return list(result.scalars().all())


async def mark_reminder_sent(session: AsyncSession, reminder_id: int) -> ScheduledReminder:
    reminder = await session.get(ScheduledReminder, reminder_id)
    if reminder is None:
        raise NotFound(_NOT_FOUND)
    reminder.is_sent = True
    reminder.sent_at = utcnow()
    reminder.updated_at = reminder.sent_at
    await session.flush()
    return reminder
