"""
REST API routes — invoices and scheduled reminders.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user_id
from core.invoice_sync import list_invoices
from core.reminders import (
    create_reminders,
    delete_reminder,
    group_bulk_reminders,
    list_reminders,
    update_reminder,
)
from utils.schemas import CreateRemindersRequest, InvoiceOut, ReminderPatch

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/invoices")
async def get_invoices(
    source: str = Query("paypal"),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Invoices synced from ``source`` for the current user."""
    invoices = await list_invoices(session, user_id, source)
    await session.commit()
    return {
        "invoices": [InvoiceOut.model_validate(i).model_dump(by_alias=True) for i in invoices],
    }


@router.post("/reminders/scheduled")
async def post_reminders(
    req: CreateRemindersRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Schedule reminders for one invoice (one per enabled schedule)."""
    created = await create_reminders(
        session,
        user_id,
        req.invoice_id,
        req.schedules,
        req.recipient_emails,
        bulk_group_id=req.bulk_group_id,
    )
    await session.commit()
    return {
        "success": True,
        "created": len(created),
        "reminders": [
            {
                "id": r.id,
                "scheduleType": r.schedule_type,
                "daysOverdue": r.days_overdue,
                "scheduledDate": r.scheduled_date.isoformat(),
            }
            for r in created
        ],
    }


@router.get("/reminders/scheduled")
async def get_reminders(
    include_sent: bool = Query(False, alias="includeSent"),
    grouped: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    reminders = await list_reminders(session, user_id, include_sent=include_sent)
    payload: Dict[str, Any] = {"reminders": [r.model_dump(by_alias=True) for r in reminders]}
    if grouped:
        groups = group_bulk_reminders(reminders)
        payload["bulkGroups"] = [
            {
                "bulkGroupId": g["bulk_group_id"],
                "invoiceIds": g["invoice_ids"],
                "nextScheduledDate": g["next_scheduled_date"].isoformat(),
                "reminderIds": [r.id for r in g["reminders"]],
            }
            for g in groups["groups"]
        ]
    return payload


@router.put("/reminders/scheduled/{reminder_id}")
async def put_reminder(
    reminder_id: int,
    patch: ReminderPatch,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    await update_reminder(session, user_id, reminder_id, patch)
    await session.commit()
    return {"success": True}


@router.delete("/reminders/scheduled/{reminder_id}")
async def remove_reminder(
    reminder_id: int,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    await delete_reminder(session, user_id, reminder_id)
    await session.commit()
    return {"success": True}
