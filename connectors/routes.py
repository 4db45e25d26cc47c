"""
Integration API routes — OAuth auth-url / complete / callback, status,
disconnect and invoice sync per provider.

Route prefix: /api/v1/integrations
"""

from __future__ import annotations

import html
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user_id
from config.settings import config
from connectors.registry import ConnectorRegistry
from connectors.store import list_connections, summarize
from connectors.token_manager import begin_oauth, complete_oauth, connection_status, disconnect
from core.invoice_sync import sync_invoices
from utils.exceptions import AppError
from utils.schemas import CompleteOAuthRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["integrations"])

# where the browser lands after the provider redirect, per provider
_SETTINGS_PAGES = {"paypal": "/settings/integrations"}
_DEFAULT_SETTINGS_PAGE = "/settings/email-providers"


def _settings_url(provider: str, **params: str) -> str:
    page = _SETTINGS_PAGES.get(provider, _DEFAULT_SETTINGS_PAGE)
    query = "&".join(f"{k}={v}" for k, v in params.items())
    return f"{config.frontend_url}{page}" + (f"?{query}" if query else "")


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers() -> List[Dict[str, Any]]:
    """
    List all available connector providers and their configuration status.
    No auth required — used by frontend to show available connectors.
    """
    return ConnectorRegistry().list_providers()


@router.get("/connections")
async def get_connections(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> List[Dict[str, Any]]:
    """List all OAuth connections for the authenticated user."""
    return await list_connections(session, user_id)


@router.get("/{provider}/auth-url")
async def get_auth_url(
    provider: str,
    user_id: str = Depends(get_current_user_id),
) -> Dict[str, str]:
    """
    Get the OAuth authorization URL for a provider.

    Frontend should redirect the browser (or open a popup) to this URL.
    """
    issued = begin_oauth(user_id, provider)
    return {
        "authUrl": issued["auth_url"],
        "redirectUri": issued["redirect_uri"],
        "provider": provider,
    }


@router.post("/{provider}/complete")
async def complete(
    provider: str,
    req: CompleteOAuthRequest,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """
    Finish OAuth from the web client.  No bearer token: the verified
    ``state`` identifies the user.
    """
    _, conn = await complete_oauth(session, provider, req.code, req.state)
    await session.commit()
    return {"success": True, "provider": provider, "connection": summarize(conn)}


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
) -> HTMLResponse:
    """
    OAuth callback — the provider redirects here after consent.

    Exchanges the auth code for tokens, stores them, and returns a small
    HTML page that forwards the browser to the settings screen.
    """
    if error:
        logger.error("%s authorization failed: %s", provider, error)
        return _callback_html(False, f"Authorization failed: {error}", provider)
    if not code or not state:
        return _callback_html(False, "Missing authorization parameters", provider)

    try:
        _, conn = await complete_oauth(session, provider, code, state)
    except AppError as exc:
        logger.error("OAuth callback failed for %s: %s", provider, exc.message)
        return _callback_html(False, f"Connection failed: {exc.message}", provider)

    await session.commit()
    label = conn.account_email or conn.account_name or provider
    return _callback_html(True, f"Connected as {label}", provider)


@router.get("/{provider}/status")
async def get_status(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Connection state for the settings page (no tokens)."""
    status = await connection_status(session, user_id, provider)
    await session.commit()
    return status


@router.post("/{provider}/disconnect")
async def post_disconnect(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Delete the stored connection (best-effort revocation first)."""
    deleted = await disconnect(session, user_id, provider)
    await session.commit()
    return {"success": True, "disconnected": deleted, "provider": provider}


@router.post("/{provider}/sync")
async def post_sync(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Pull invoices from the provider and reconcile them locally."""
    result = await sync_invoices(session, user_id, provider)
    await session.commit()
    return result.model_dump(by_alias=True)


# ── Callback HTML template ─────────────────────────────────────────────


def _callback_html(success: bool, message: str, provider: str) -> HTMLResponse:
    """
    Small HTML page shown after the provider redirect.
    Notifies an opener window (popup flow) and forwards to settings.
    """
    target = _settings_url(provider, **({"connected": provider} if success else {"error": provider}))
    status_text = "Connected!" if success else "Connection Error"
    color = "#16a34a" if success else "#dc2626"
    safe_message = html.escape(message)
    event = json.dumps(
        {"type": "oauth-callback", "provider": provider, "success": success, "message": message}
    ).replace("</", "<\\/")

    content = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{html.escape(provider)} {status_text}</title>
    <meta http-equiv="refresh" content="2;url={html.escape(target)}">
    <style>
        body {{
            font-family: system-ui, sans-serif; background: #f9fafb;
            display: flex; align-items: center; justify-content: center;
            min-height: 100vh; margin: 0;
        }}
        .card {{ text-align: center; padding: 2rem; }}
        h2 {{ color: {color}; }}
        .redirect {{ color: #6b7280; font-size: 0.875rem; }}
    </style>
</head>
<body>
    <div class="card">
        <h2>{status_text}</h2>
        <p>{safe_message}</p>
        <p class="redirect">Redirecting… <a href="{html.escape(target)}">Click here</a> if not redirected.</p>
    </div>
    <script>
        if (window.opener) {{
            window.opener.postMessage({event}, window.location.origin);
        }}
        setTimeout(() => window.location.href = {json.dumps(target)}, 1500);
    </script>
</body>
</html>"""
    return HTMLResponse(content=content, status_code=200)
