"""
Email provider configuration routes.

Route prefix: /api/v1/email-providers
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user_id
from core.email_providers import deactivate_provider, provider_status, save_provider, update_sender
from utils.schemas import EmailProviderRequest, UpdateSenderRequest

router = APIRouter(tags=["email-providers"])


@router.get("/status")
async def get_status(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    return {"providers": await provider_status(session, user_id)}


@router.post("")
async def post_provider(
    req: EmailProviderRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    await save_provider(session, user_id, req)
    await session.commit()
    return {"success": True}


@router.post("/update-sender")
async def post_update_sender(
    req: UpdateSenderRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    await update_sender(session, user_id, req.provider_name, req.from_email)
    await session.commit()
    return {"success": True}


@router.delete("/{provider}")
async def delete_provider(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    await deactivate_provider(session, user_id, provider)
    await session.commit()
    return {"success": True}
