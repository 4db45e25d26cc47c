"""
BaseConnector — abstract interface for all OAuth2 connectors.

Every provider (PayPal, Mailchimp, Gmail) subclasses this and implements
the token request, the metadata call and (where the provider supports it)
the refresh request.  Encryption of returned tokens, error classification
of HTTP responses and the HTTP client itself are shared here.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type

import httpx

from config.settings import config
from connectors.encryption import decrypt_token, encrypt_token
from utils.exceptions import (
    ProviderAPIError,
    ProviderTimeout,
    TokenExchangeError,
    TokenExpired,
    TokenRefreshError,
)
from utils.schemas import OAuthTokens, ProviderAccount

logger = logging.getLogger(__name__)


def _payload(resp: httpx.Response) -> Any:
    """Best-effort decode of a provider response body."""
    try:
        return resp.json()
    except ValueError:
        return resp.text


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    supports_refresh: bool = True
    supports_invoice_sync: bool = False
    # a failed metadata call at connect time aborts the connect
    metadata_required: bool = True

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'paypal', 'mailchimp', 'gmail'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable: 'PayPal', 'Mailchimp', 'Gmail'."""
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """OAuth scopes required by this connector."""
        ...

    # ── OAuth flow ──────────────────────────────────────────────────────

    def redirect_uri(self) -> str:
        return config.oauth_redirect_uri(self.provider_name)

    @abstractmethod
    def get_auth_url(self, state: str) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        state : str
            Opaque state string (encodes user_id + nonce).
        """
        ...

    async def exchange_code_for_tokens(
        self, code: str, redirect_uri: Optional[str] = None
    ) -> OAuthTokens:
        """
        Exchange the authorization code for tokens.

        The returned ``OAuthTokens`` already hold ciphertext, ready to be
        stored.  Raises ``TokenExchangeError`` on any failure.
        """
        data = await self._request_tokens(code, redirect_uri or self.redirect_uri())
        logger.info("%s authorization code exchanged", self.display_name)
        return self._seal(data)

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        """
        Refresh an expired access token.

        ``refresh_token`` is the stored ciphertext; the result is encrypted
        too.  Raises ``TokenRefreshError`` on failure.
        """
        if not self.supports_refresh:
            raise TokenRefreshError(
                self.provider_name, f"{self.display_name} tokens cannot be refreshed"
            )
        data = await self._request_refresh(decrypt_token(refresh_token))
        logger.info("%s access token refreshed", self.display_name)
        return self._seal(data)

    @abstractmethod
    async def fetch_account_metadata(self, access_token: str) -> ProviderAccount:
        """Identity/account lookup with a plaintext access token."""
        ...

    async def revoke_token(self, access_token: str) -> bool:
        """
        Revoke the token at the provider (optional).
        Returns True on success, False if provider doesn't support revocation.
        """
        return False

    async def fetch_invoices(self, access_token: str) -> List[Dict[str, Any]]:
        raise NotImplementedError(f"{self.display_name} does not provide invoices")

    @abstractmethod
    async def _request_tokens(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        ...

    async def _request_refresh(self, refresh_token: str) -> Dict[str, Any]:
        raise NotImplementedError

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """
        Return True if this connector has all required config
        (client IDs, secrets).
        """
        return True

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=config.http_timeout_seconds, transport=self._transport)

    @staticmethod
    def _seal(data: Dict[str, Any]) -> OAuthTokens:
        refresh = data.get("refresh_token")
        return OAuthTokens(
            access_token=encrypt_token(data["access_token"]),
            refresh_token=encrypt_token(refresh) if refresh else None,
            expires_in=data.get("expires_in"),
            scope=data.get("scope"),
        )

    async def _post_token_endpoint(
        self,
        url: str,
        data: Dict[str, str],
        *,
        auth: Optional[httpx.Auth] = None,
        error_cls: Type[TokenExchangeError] = TokenExchangeError,
    ) -> Dict[str, Any]:
        """POST a form to a token endpoint and return the decoded JSON."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    url, data=data, auth=auth, headers={"Accept": "application/json"}
                )
        except httpx.HTTPError as exc:
            logger.error("%s token endpoint unreachable: %s", self.display_name, exc)
            raise error_cls(
                self.provider_name, f"{self.display_name} token endpoint unreachable: {exc}"
            ) from exc

        payload = _payload(resp)
        if resp.is_error or not isinstance(payload, dict) or not payload.get("access_token"):
            logger.error(
                "%s token endpoint rejected request: %s %s",
                self.display_name,
                resp.status_code,
                payload,
            )
            raise error_cls(
                self.provider_name,
                f"{self.display_name} token exchange failed: {resp.status_code} {resp.reason_phrase}",
                payload=payload,
            )
        return payload

    async def _api_request(
        self,
        method: str,
        url: str,
        access_token: str,
        *,
        auth_scheme: str = "Bearer",
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Call a provider API with a plaintext access token.

        401 → ``TokenExpired``; timeout → ``ProviderTimeout``; any other
        failure → ``ProviderAPIError`` carrying the raw body.
        """
        headers = {
            "Authorization": f"{auth_scheme} {access_token}",
            "Accept": "application/json",
        }
        try:
            async with self._client() as client:
                resp = await client.request(method, url, headers=headers, params=params)
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(self.provider_name, url) from exc
        except httpx.HTTPError as exc:
            raise ProviderAPIError(
                self.provider_name, f"{self.display_name} request failed: {exc}"
            ) from exc

        payload = _payload(resp)
        if resp.status_code == 401:
            raise TokenExpired(self.provider_name, payload=payload)
        if resp.is_error:
            raise ProviderAPIError(
                self.provider_name,
                f"{self.display_name} API error: {resp.status_code} {resp.reason_phrase} - {resp.text}",
                status=resp.status_code,
                payload=payload,
            )
        return payload
