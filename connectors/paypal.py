"""
PayPalConnector — OAuth2 ("Log in with PayPal") plus invoice listing.

Sandbox vs live is chosen by ``PAYPAL_ENVIRONMENT``; when that is unset the
client id decides: sandbox REST apps issued by the developer dashboard
start with ``A``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config.settings import config
from connectors.base import BaseConnector
from utils.exceptions import ProviderAPIError, TokenExpired, TokenRefreshError
from utils.schemas import ProviderAccount

logger = logging.getLogger(__name__)

_SANDBOX_API = "https://api-m.sandbox.paypal.com"
_LIVE_API = "https://api-m.paypal.com"
_SANDBOX_WEB = "https://www.sandbox.paypal.com"
_LIVE_WEB = "https://www.paypal.com"

_INVOICE_PAGE_SIZE = 100


def is_sandbox(client_id: str, environment: Optional[str] = None) -> bool:
    if environment:
        return environment.lower() == "sandbox"
    return client_id.startswith("A")


class PayPalConnector(BaseConnector):
    """OAuth2 connector for PayPal (identity, balance, invoicing)."""

    supports_invoice_sync = True
    metadata_required = False

    @property
    def provider_name(self) -> str:
        return "paypal"

    @property
    def display_name(self) -> str:
        return "PayPal"

    @property
    def scopes(self) -> List[str]:
        return ["openid", "profile", "email", "https://uri.paypal.com/services/invoicing"]

    def is_configured(self) -> bool:
        return bool(config.paypal_client_id and config.paypal_client_secret)

    @property
    def sandbox(self) -> bool:
        return is_sandbox(config.paypal_client_id, config.paypal_environment)

    @property
    def api_base(self) -> str:
        return _SANDBOX_API if self.sandbox else _LIVE_API

    def get_auth_url(self, state: str) -> str:
        params = {
            "flowEntry": "static",
            "client_id": config.paypal_client_id,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "redirect_uri": self.redirect_uri(),
            "state": state,
        }
        web = _SANDBOX_WEB if self.sandbox else _LIVE_WEB
        return f"{web}/signin/authorize?{urlencode(params)}"

    def _client_auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(config.paypal_client_id, config.paypal_client_secret)

    async def _request_tokens(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        return await self._post_token_endpoint(
            f"{self.api_base}/v1/oauth2/token",
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            auth=self._client_auth(),
        )

    async def _request_refresh(self, refresh_token: str) -> Dict[str, Any]:
        return await self._post_token_endpoint(
            f"{self.api_base}/v1/oauth2/token",
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            auth=self._client_auth(),
            error_cls=TokenRefreshError,
        )

    async def fetch_user_info(self, access_token: str) -> Dict[str, Any]:
        return await self._api_request(
            "GET",
            f"{self.api_base}/v1/identity/openid-userinfo",
            access_token,
            params={"schema": "openid"},
        )

    async def fetch_balance(self, access_token: str) -> Optional[Dict[str, str]]:
        """Primary balance, or None — the reporting API is often absent in sandbox."""
        try:
            data = await self._api_request(
                "GET", f"{self.api_base}/v1/reporting/balances", access_token
            )
        except (TokenExpired, ProviderAPIError) as exc:
            logger.info("PayPal balance unavailable (normal in sandbox): %s", exc.message)
            return None

        balances = data.get("balances") if isinstance(data, dict) else None
        if not balances:
            return None
        primary = balances[0]
        return {
            "currency": primary.get("currency"),
            "value": (primary.get("available_balance") or {}).get("value") or "0.00",
        }

    async def fetch_account_metadata(self, access_token: str) -> ProviderAccount:
        """
        Userinfo + balance.  Neither is required to connect: a failing
        userinfo call leaves the identity fields null, a failing balance
        call leaves ``meta["balance"]`` null.
        """
        try:
            info = await self.fetch_user_info(access_token)
        except TokenExpired:
            raise
        except ProviderAPIError as exc:
            logger.warning("Could not fetch PayPal user info: %s", exc.message)
            info = {}

        name = info.get("name")
        if not name and (info.get("given_name") or info.get("family_name")):
            name = f"{info.get('given_name', '')} {info.get('family_name', '')}".strip()

        return ProviderAccount(
            account_id=info.get("payer_id") or info.get("user_id"),
            account_email=info.get("email"),
            account_name=name,
            meta={"balance": await self.fetch_balance(access_token)},
        )

    async def fetch_invoices(self, access_token: str) -> List[Dict[str, Any]]:
        """All invoices visible to the account, in API order."""
        invoices: List[Dict[str, Any]] = []
        page = 1
        while True:
            data = await self._api_request(
                "GET",
                f"{self.api_base}/v2/invoicing/invoices",
                access_token,
                params={"page": page, "page_size": _INVOICE_PAGE_SIZE, "total_required": "true"},
            )
            if not isinstance(data, dict):
                raise ProviderAPIError(
                    self.provider_name,
                    "PayPal invoice listing returned an unexpected body",
                    payload=data,
                )
            items = data.get("items") or []
            invoices.extend(items)
            total_pages = data.get("total_pages") or 1
            if page >= total_pages or not items:
                break
            page += 1
        logger.info("Fetched %d invoices from PayPal", len(invoices))
        return invoices
