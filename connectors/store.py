"""
Connection store — persistent (user, provider) → encrypted credentials.

Tokens arrive here already encrypted; this module never sees plaintext.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.models import Connection
from database.helpers import upsert_statement, utcnow
from utils.schemas import OAuthTokens

logger = logging.getLogger(__name__)

_UPSERTABLE = {
    "access_token",
    "refresh_token",
    "account_id",
    "account_email",
    "account_name",
    "datacenter",
    "provider_meta",
    "last_synced_at",
}


async def get_connection(
    session: AsyncSession, user_id: str, provider: str
) -> Optional[Connection]:
    result = await session.execute(
        select(Connection)
        .where(Connection.user_id == str(user_id), Connection.provider == provider)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert_connection(
    session: AsyncSession, user_id: str, provider: str, **fields: Any
) -> Connection:
    """
    Insert or update the connection for ``(user_id, provider)``.

    Only the given fields are written on update; ``created_at`` and any
    omitted column (e.g. a refresh token the provider did not re-issue)
    keep their stored values.
    """
    unknown = set(fields) - _UPSERTABLE
    if unknown:
        raise TypeError(f"Unknown connection fields: {sorted(unknown)}")
    if "access_token" not in fields:
        raise TypeError("access_token is required")

    now = utcnow()
    values: Dict[str, Any] = {
        "connection_id": uuid.uuid4(),
        "user_id": str(user_id),
        "provider": provider,
        "created_at": now,
        "updated_at": now,
        **fields,
    }
    stmt = upsert_statement(
        session,
        Connection,
        values,
        conflict_columns=("user_id", "provider"),
        update_columns=[*fields, "updated_at"],
    )
    await session.execute(stmt)
    conn = await get_connection(session, user_id, provider)
    logger.info("Stored %s connection for user %s", provider, user_id)
    return conn


async def delete_connection(session: AsyncSession, user_id: str, provider: str) -> bool:
    result = await session.execute(
        delete(Connection).where(
            Connection.user_id == str(user_id), Connection.provider == provider
        )
    )
    return result.rowcount > 0


async def adopt_connection(
    session: AsyncSession, user_id: str, provider: str
) -> Optional[Connection]:
    """
    Reassign any existing ``provider`` connection to ``user_id``.

    Single-operator deployments only: the reassignment is a conditional
    update on the previous owner so two concurrent adopters cannot both win.
    """
    result = await session.execute(
        select(Connection)
        .where(Connection.provider == provider)
        .order_by(Connection.updated_at.desc())
        .limit(1)
    )
    candidate = result.scalar_one_or_none()
    if candidate is None:
        return None
    if candidate.user_id == str(user_id):
        return candidate

    previous_owner = candidate.user_id
    outcome = await session.execute(
        update(Connection)
        .where(
            Connection.connection_id == candidate.connection_id,
            Connection.user_id == previous_owner,
        )
        .values(user_id=str(user_id), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if outcome.rowcount:
        logger.info(
            "Adopted %s connection from user %s to user %s", provider, previous_owner, user_id
        )
    return await get_connection(session, user_id, provider)


async def update_tokens(
    session: AsyncSession, connection: Connection, tokens: OAuthTokens
) -> Connection:
    """Persist a refreshed token set on an existing connection."""
    connection.access_token = tokens.access_token
    if tokens.refresh_token:
        connection.refresh_token = tokens.refresh_token
    connection.updated_at = utcnow()
    await session.flush()
    return connection


async def mark_synced(session: AsyncSession, connection: Connection) -> None:
    connection.last_synced_at = utcnow()
    await session.flush()


def summarize(connection: Connection) -> Dict[str, Any]:
    """Token-free view of a connection."""
    return {
        "connection_id": str(connection.connection_id),
        "provider": connection.provider,
        "account_id": connection.account_id,
        "account_email": connection.account_email,
        "account_name": connection.account_name,
        "datacenter": connection.datacenter,
        "has_refresh_token": bool(connection.refresh_token),
        "last_synced_at": connection.last_synced_at.isoformat() if connection.last_synced_at else None,
        "connected_at": connection.created_at.isoformat() if connection.created_at else None,
        "updated_at": connection.updated_at.isoformat() if connection.updated_at else None,
    }


async def list_connections(session: AsyncSession, user_id: str) -> List[Dict[str, Any]]:
    """Return all connections for a user (no tokens exposed)."""
    result = await session.execute(
        select(Connection).where(Connection.user_id == str(user_id))
    )
    return [summarize(c) for c in result.scalars().all()]
