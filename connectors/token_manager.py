"""
Token manager — connect / use / refresh / disconnect per-user OAuth tokens.

This is the single interface routes and the sync engine use to turn a
stored connection into authorized provider calls:

  • ``begin_oauth``    → auth URL with a nonce-backed ``state``
  • ``complete_oauth`` → code exchange, metadata lookup, upsert
  • ``call_with_token`` → run a provider call, refreshing once on 401
  • ``disconnect``     → best-effort revocation, then delete
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from connectors.base import BaseConnector
from connectors.encryption import decrypt_token
from connectors.models import Connection
from connectors.registry import ConnectorRegistry
from connectors.state import consume_state, create_state
from connectors.store import (
    adopt_connection,
    delete_connection,
    get_connection,
    summarize,
    update_tokens,
    upsert_connection,
)
from utils.exceptions import (
    ConfigurationError,
    DecryptionError,
    NotFound,
    ProviderAPIError,
    ProviderTimeout,
    TokenExchangeError,
    TokenExpired,
)
from utils.schemas import ProviderAccount

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_connector(provider: str) -> BaseConnector:
    """Resolve a configured connector or raise."""
    registry = ConnectorRegistry()
    connector = registry.get(provider)
    if connector is not None:
        return connector
    if provider in {p["provider"] for p in registry.list_providers()}:
        raise ConfigurationError(f"{provider} OAuth is not configured")
    raise NotFound(f"Provider '{provider}' not found")


def begin_oauth(user_id: str, provider: str) -> Dict[str, str]:
    """Issue a state for ``user_id`` and build the provider's auth URL."""
    connector = get_connector(provider)
    state = create_state(user_id)
    return {
        "auth_url": connector.get_auth_url(state),
        "redirect_uri": connector.redirect_uri(),
        "provider": provider,
    }


async def complete_oauth(
    session: AsyncSession,
    provider: str,
    code: str,
    state: str,
) -> Tuple[str, Connection]:
    """
    Finish the OAuth dance: verify ``state``, exchange ``code``, look up
    the account and store the connection.

    Returns ``(user_id, connection)``.
    """
    connector = get_connector(provider)
    user_id = consume_state(state)

    tokens = await connector.exchange_code_for_tokens(code)
    try:
        account = await connector.fetch_account_metadata(decrypt_token(tokens.access_token))
    except (TokenExpired, ProviderAPIError) as exc:
        if connector.metadata_required:
            raise
        logger.warning(
            "%s account lookup failed, connecting without identity: %s",
            connector.display_name,
            exc.message,
        )
        account = ProviderAccount(meta={"balance": None})

    fields: Dict[str, Any] = {
        "access_token": tokens.access_token,
        "account_id": account.account_id,
        "account_email": account.account_email,
        "account_name": account.account_name,
        "datacenter": account.datacenter,
        "provider_meta": account.meta,
    }
    # keep the stored refresh token when the provider did not issue a new one
    if tokens.refresh_token:
        fields["refresh_token"] = tokens.refresh_token

    conn = await upsert_connection(session, user_id, provider, **fields)
    logger.info(
        "OAuth connected: user=%s provider=%s account=%s",
        user_id,
        provider,
        account.account_email or account.account_id,
    )
    return user_id, conn


async def call_with_token(
    session: AsyncSession,
    connection: Connection,
    connector: BaseConnector,
    operation: Callable[[str], Awaitable[T]],
) -> T:
    """
    Run ``operation(access_token)`` with the connection's decrypted token.

    On ``TokenExpired`` the token is refreshed exactly once (when the
    provider supports it and a refresh token is stored), persisted, and the
    call retried.  On ``ProviderTimeout`` the call is retried once with the
    same token.  Anything else propagates; the connection is never removed
    here.
    """
    access_token = decrypt_token(connection.access_token)
    refreshed = False
    retried_timeout = False

    while True:
        try:
            return await operation(access_token)
        except TokenExpired:
            if refreshed or not connector.supports_refresh or not connection.refresh_token:
                logger.warning(
                    "%s rejected token for user %s and no refresh is possible",
                    connector.display_name,
                    connection.user_id,
                )
                raise
            refreshed = True
            logger.info(
                "%s access token expired for user %s, refreshing",
                connector.display_name,
                connection.user_id,
            )
            tokens = await connector.refresh_access_token(connection.refresh_token)
            await update_tokens(session, connection, tokens)
            access_token = decrypt_token(tokens.access_token)
        except ProviderTimeout:
            if retried_timeout:
                raise
            retried_timeout = True
            logger.warning("%s call timed out, retrying once", connector.display_name)


async def connection_status(
    session: AsyncSession, user_id: str, provider: str
) -> Dict[str, Any]:
    """
    Connection summary for the settings page.

    PayPal additionally adopts an orphaned connection (single-operator
    deployments) and reports the live account id and balance; failures of
    that lookup are logged and reported as nulls.
    """
    conn = await get_connection(session, user_id, provider)
    if conn is None and provider == "paypal":
        conn = await adopt_connection(session, user_id, provider)
    if conn is None:
        return {"connected": False, "provider": provider}

    status: Dict[str, Any] = {"connected": True, **summarize(conn)}
    if provider == "paypal":
        status["account_id"] = conn.account_id
        status["balance"] = None
        connector = ConnectorRegistry().get(provider)
        if connector is not None:
            try:
                account = await call_with_token(
                    session, conn, connector, connector.fetch_account_metadata
                )
                status["account_id"] = account.account_id or conn.account_id
                status["balance"] = account.meta.get("balance")
            except (ProviderAPIError, TokenExpired, TokenExchangeError, DecryptionError) as exc:
                logger.error("Failed to fetch PayPal account info: %s", exc)
    return status


async def disconnect(session: AsyncSession, user_id: str, provider: str) -> bool:
    """
    Revoke (best effort) and delete a connection.
    Returns True if deleted, False if not found.
    """
    conn = await get_connection(session, user_id, provider)
    if conn is None:
        return False

    connector: Optional[BaseConnector] = ConnectorRegistry().get(provider)
    if connector is not None:
        try:
            await connector.revoke_token(decrypt_token(conn.access_token))
        except DecryptionError as exc:
            logger.warning("Could not decrypt %s token for revocation: %s", provider, exc)

    deleted = await delete_connection(session, user_id, provider)
    logger.info("Disconnected %s for user %s", provider, user_id)
    return deleted
