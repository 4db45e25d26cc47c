"""
GmailConnector — OAuth2 web flow for Gmail.

Uses Google's OAuth2 to get per-user Gmail access without the user
sharing any credentials with the application.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

import httpx

from config.settings import config
from connectors.base import BaseConnector
from utils.exceptions import TokenRefreshError
from utils.schemas import ProviderAccount

logger = logging.getLogger(__name__)

# Google OAuth2 endpoints
_GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
_GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class GmailConnector(BaseConnector):
    """OAuth2 connector for Gmail."""

    @property
    def provider_name(self) -> str:
        return "gmail"

    @property
    def display_name(self) -> str:
        return "Gmail"

    @property
    def scopes(self) -> List[str]:
        return [
            "https://www.googleapis.com/auth/gmail.compose",
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/userinfo.email",
            "https://www.googleapis.com/auth/userinfo.profile",
        ]

    def is_configured(self) -> bool:
        return bool(config.google_client_id and config.google_client_secret)

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": config.google_client_id,
            "redirect_uri": self.redirect_uri(),
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",       # gets refresh_token
            "prompt": "consent",            # force consent to always get refresh_token
            "state": state,
        }
        return f"{_GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def _request_tokens(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        return await self._post_token_endpoint(
            _GOOGLE_TOKEN_URL,
            {
                "code": code,
                "client_id": config.google_client_id,
                "client_secret": config.google_client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
        )

    async def _request_refresh(self, refresh_token: str) -> Dict[str, Any]:
        return await self._post_token_endpoint(
            _GOOGLE_TOKEN_URL,
            {
                "client_id": config.google_client_id,
                "client_secret": config.google_client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            error_cls=TokenRefreshError,
        )

    async def fetch_account_metadata(self, access_token: str) -> ProviderAccount:
        info = await self._api_request("GET", _GOOGLE_USERINFO_URL, access_token)
        email = info.get("email")
        return ProviderAccount(
            account_id=info.get("id") or email,
            account_email=email,
            account_name=info.get("name") or email,
            meta={"picture": info.get("picture")},
        )

    async def revoke_token(self, access_token: str) -> bool:
        """Revoke the token at Google."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    _GOOGLE_REVOKE_URL,
                    params={"token": access_token},
                )
                return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("Gmail token revocation failed: %s", exc)
            return False
