"""
MailchimpConnector — OAuth2 web flow for Mailchimp.

Mailchimp access tokens do not expire and there is no refresh grant.  Every
account lives on a datacenter (``dc``) returned by the metadata endpoint;
all subsequent API calls go to ``https://<dc>.api.mailchimp.com/3.0``.
"""

from __future__ import annotations

from typing import Any, Dict, List
from urllib.parse import urlencode

from config.settings import config
from connectors.base import BaseConnector
from utils.exceptions import ProviderAPIError
from utils.schemas import ProviderAccount

_MAILCHIMP_AUTH_URL = "https://login.mailchimp.com/oauth2/authorize"
_MAILCHIMP_TOKEN_URL = "https://login.mailchimp.com/oauth2/token"
_MAILCHIMP_METADATA_URL = "https://login.mailchimp.com/oauth2/metadata"


def api_base(datacenter: str) -> str:
    return f"https://{datacenter}.api.mailchimp.com/3.0"


class MailchimpConnector(BaseConnector):
    """OAuth2 connector for Mailchimp."""

    supports_refresh = False

    @property
    def provider_name(self) -> str:
        return "mailchimp"

    @property
    def display_name(self) -> str:
        return "Mailchimp"

    @property
    def scopes(self) -> List[str]:
        # Mailchimp grants full account access; there are no scopes to request
        return []

    def is_configured(self) -> bool:
        return bool(config.mailchimp_client_id and config.mailchimp_client_secret)

    def get_auth_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": config.mailchimp_client_id,
            "redirect_uri": self.redirect_uri(),
            "state": state,
        }
        return f"{_MAILCHIMP_AUTH_URL}?{urlencode(params)}"

    async def _request_tokens(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        return await self._post_token_endpoint(
            _MAILCHIMP_TOKEN_URL,
            {
                "grant_type": "authorization_code",
                "client_id": config.mailchimp_client_id,
                "client_secret": config.mailchimp_client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )

    async def fetch_account_metadata(self, access_token: str) -> ProviderAccount:
        """The datacenter is mandatory, so a failed metadata call fails the connect."""
        data = await self._api_request(
            "GET", _MAILCHIMP_METADATA_URL, access_token, auth_scheme="OAuth"
        )
        if not isinstance(data, dict) or not data.get("dc"):
            raise ProviderAPIError(
                self.provider_name, "Mailchimp metadata did not include a datacenter", payload=data
            )
        login = data.get("login") or {}
        return ProviderAccount(
            account_id=str(data["user_id"]) if data.get("user_id") is not None else None,
            account_email=login.get("login_email"),
            account_name=data.get("accountname"),
            datacenter=data["dc"],
            meta={"api_endpoint": data.get("api_endpoint") or api_base(data["dc"])},
        )
