"""
Email provider configuration — API-key and SMTP app-password providers.

Secrets go through the token cipher before they are stored.  Removing a
provider only flips ``is_active``; the row stays for a later re-enable.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.encryption import encrypt_token
from database.helpers import upsert_statement, utcnow
from database.models import EmailProviderConfig
from utils.exceptions import NotFound, ValidationError
from utils.schemas import EmailProviderRequest

logger = logging.getLogger(__name__)

API_PROVIDERS = ("sendgrid", "mailchimp", "sendinblue", "postmark")
SMTP_PROVIDERS = ("gmail", "outlook", "yahoo", "icloud")

# well-known SMTP endpoints for app-password providers
SMTP_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "gmail": {"smtp_host": "smtp.gmail.com", "smtp_port": 587, "smtp_secure": False},
    "outlook": {"smtp_host": "smtp-mail.outlook.com", "smtp_port": 587, "smtp_secure": False},
    "yahoo": {"smtp_host": "smtp.mail.yahoo.com", "smtp_port": 465, "smtp_secure": True},
    "icloud": {"smtp_host": "smtp.mail.me.com", "smtp_port": 587, "smtp_secure": False},
}

BUILTIN_SENDER = {"configured": True, "fromEmail": "noreply@timely.app", "fromName": "Timely"}


async def save_provider(
    session: AsyncSession, user_id: str, req: EmailProviderRequest
) -> EmailProviderConfig:
    """Create or re-activate the config for ``(user_id, provider_name)``."""
    name = req.provider_name.strip().lower()
    if not name or not req.api_key:
        raise ValidationError("Provider name and credentials are required", field="apiKey")
    if name not in API_PROVIDERS + SMTP_PROVIDERS:
        raise ValidationError("Invalid provider", field="providerName")

    values: Dict[str, Any] = {
        "api_key": encrypt_token(req.api_key),
        "from_email": req.from_email or None,
        "from_name": req.from_name or None,
        "provider_type": req.provider_type,
        "smtp_host": req.smtp_host or None,
        "smtp_port": req.smtp_port,
        "smtp_secure": bool(req.smtp_secure),
        "smtp_username": req.smtp_username or None,
        "is_active": True,
        "updated_at": utcnow(),
    }
    if name in SMTP_PROVIDERS:
        if not req.from_email:
            raise ValidationError(
                "Email address is required for personal email providers", field="fromEmail"
            )
        values["provider_type"] = "smtp"
        for key, default in SMTP_DEFAULTS[name].items():
            if values[key] is None:
                values[key] = default
        values["smtp_username"] = values["smtp_username"] or req.from_email

    stmt = upsert_statement(
        session,
        EmailProviderConfig,
        {"user_id": str(user_id), "provider_name": name, "created_at": utcnow(), **values},
        conflict_columns=("user_id", "provider_name"),
        update_columns=values.keys(),
    )
    await session.execute(stmt)
    logger.info("Saved %s email provider for user %s", name, user_id)
    return await _get_provider(session, user_id, name, active_only=False)


async def _get_provider(
    session: AsyncSession, user_id: str, name: str, *, active_only: bool = True
) -> EmailProviderConfig:
    query = select(EmailProviderConfig).where(
        EmailProviderConfig.user_id == str(user_id),
        EmailProviderConfig.provider_name == name.strip().lower(),
    )
    if active_only:
        query = query.where(EmailProviderConfig.is_active.is_(True))
    provider = (
        await session.execute(query.execution_options(populate_existing=True))
    ).scalar_one_or_none()
    if provider is None:
        raise NotFound("Provider not found")
    return provider


async def deactivate_provider(session: AsyncSession, user_id: str, name: str) -> bool:
    """Soft delete; False when the user never configured ``name``."""
    try:
        provider = await _get_provider(session, user_id, name, active_only=False)
    except NotFound:
        return False
    provider.is_active = False
    provider.updated_at = utcnow()
    await session.flush()
    return True


async def update_sender(
    session: AsyncSession, user_id: str, name: str, from_email: str
) -> EmailProviderConfig:
    if not name or not from_email:
        raise ValidationError("Provider name and sender email are required", field="fromEmail")
    provider = await _get_provider(session, user_id, name)
    provider.from_email = from_email
    provider.updated_at = utcnow()
    await session.flush()
    return provider


async def provider_status(session: AsyncSession, user_id: str) -> Dict[str, Dict[str, Any]]:
    """Every known provider with its configured flag and sender identity."""
    status: Dict[str, Dict[str, Any]] = {"mocha": dict(BUILTIN_SENDER)}
    for name in API_PROVIDERS + SMTP_PROVIDERS:
        status[name] = {"configured": False}

    result = await session.execute(
        select(EmailProviderConfig).where(
            EmailProviderConfig.user_id == str(user_id),
            EmailProviderConfig.is_active.is_(True),
        )
    )
    for provider in result.scalars().all():
        if provider.provider_name in status:
            status[provider.provider_name] = {
                "configured": True,
                "fromEmail": provider.from_email,
                "fromName": provider.from_name,
                "providerType": provider.provider_type or "api",
            }
    return status
