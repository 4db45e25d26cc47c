"""
Tests for the provider connectors against mocked HTTP.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from connectors.encryption import decrypt_token, encrypt_token
from connectors.gmail import GmailConnector
from connectors.mailchimp import MailchimpConnector
from connectors.paypal import PayPalConnector, is_sandbox
from connectors.registry import ConnectorRegistry
from utils.exceptions import (
    ProviderAPIError,
    ProviderTimeout,
    TokenExchangeError,
    TokenExpired,
    TokenRefreshError,
)


class TestPayPalEnvironment:
    def test_client_id_heuristic(self):
        assert is_sandbox("AZabc") is True
        assert is_sandbox("Bxyz") is False

    def test_explicit_environment_wins(self):
        assert is_sandbox("AZabc", "live") is False
        assert is_sandbox("Bxyz", "sandbox") is True

    def test_auth_url(self):
        url = PayPalConnector().get_auth_url("STATE123")
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.netloc == "www.sandbox.paypal.com"
        assert parsed.path == "/signin/authorize"
        assert query["state"] == ["STATE123"]
        assert query["flowEntry"] == ["static"]
        assert "https://uri.paypal.com/services/invoicing" in query["scope"][0]
        assert query["redirect_uri"][0].endswith("/api/v1/integrations/paypal/callback")


class TestPayPalTokens:
    @pytest.mark.asyncio
    async def test_exchange_returns_encrypted_tokens(self, provider_mock):
        provider_mock.on(
            "POST",
            "/v1/oauth2/token",
            httpx.Response(200, json={"access_token": "pp-access", "refresh_token": "pp-refresh", "expires_in": 32400}),
        )
        tokens = await PayPalConnector(transport=provider_mock.transport).exchange_code_for_tokens("CODE")

        assert tokens.access_token != "pp-access"
        assert decrypt_token(tokens.access_token) == "pp-access"
        assert decrypt_token(tokens.refresh_token) == "pp-refresh"
        assert tokens.expires_in == 32400

        request = provider_mock.calls[0]
        assert request.headers["Authorization"].startswith("Basic ")
        assert b"grant_type=authorization_code" in request.content

    @pytest.mark.asyncio
    async def test_exchange_failure_carries_payload(self, provider_mock):
        provider_mock.on(
            "POST",
            "/v1/oauth2/token",
            httpx.Response(400, json={"error": "invalid_grant"}),
        )
        with pytest.raises(TokenExchangeError) as info:
            await PayPalConnector(transport=provider_mock.transport).exchange_code_for_tokens("BAD")
        assert info.value.payload == {"error": "invalid_grant"}

    @pytest.mark.asyncio
    async def test_refresh_decrypts_and_reseals(self, provider_mock):
        provider_mock.on(
            "POST",
            "/v1/oauth2/token",
            httpx.Response(200, json={"access_token": "new-access"}),
        )
        tokens = await PayPalConnector(transport=provider_mock.transport).refresh_access_token(
            encrypt_token("old-refresh")
        )
        assert decrypt_token(tokens.access_token) == "new-access"
        assert tokens.refresh_token is None
        assert b"refresh_token=old-refresh" in provider_mock.calls[0].content

    @pytest.mark.asyncio
    async def test_refresh_failure_is_refresh_error(self, provider_mock):
        provider_mock.on("POST", "/v1/oauth2/token", httpx.Response(401, json={"error": "invalid_client"}))
        with pytest.raises(TokenRefreshError):
            await PayPalConnector(transport=provider_mock.transport).refresh_access_token(
                encrypt_token("old-refresh")
            )


class TestPayPalAccount:
    @pytest.mark.asyncio
    async def test_metadata_with_balance(self, provider_mock):
        provider_mock.on(
            "GET",
            "/v1/identity/openid-userinfo",
            httpx.Response(200, json={"payer_id": "PAYER1", "email": "owner@example.com", "name": "Owner"}),
        ).on(
            "GET",
            "/v1/reporting/balances",
            httpx.Response(200, json={"balances": [{"currency": "USD", "available_balance": {"value": "12.50"}}]}),
        )
        account = await PayPalConnector(transport=provider_mock.transport).fetch_account_metadata("tok")
        assert account.account_id == "PAYER1"
        assert account.account_email == "owner@example.com"
        assert account.meta["balance"] == {"currency": "USD", "value": "12.50"}

    @pytest.mark.asyncio
    async def test_balance_unavailable_is_tolerated(self, provider_mock):
        provider_mock.on(
            "GET",
            "/v1/identity/openid-userinfo",
            httpx.Response(200, json={"user_id": "https://paypal/u/1", "given_name": "Ada", "family_name": "L"}),
        )
        account = await PayPalConnector(transport=provider_mock.transport).fetch_account_metadata("tok")
        assert account.account_id == "https://paypal/u/1"
        assert account.account_name == "Ada L"
        assert account.meta["balance"] is None

    @pytest.mark.asyncio
    async def test_expired_token_propagates(self, provider_mock):
        provider_mock.on("GET", "/v1/identity/openid-userinfo", httpx.Response(401, json={}))
        with pytest.raises(TokenExpired):
            await PayPalConnector(transport=provider_mock.transport).fetch_account_metadata("tok")

    @pytest.mark.asyncio
    async def test_invoice_pagination(self, provider_mock):
        def invoices(request):
            page = int(request.url.params["page"])
            return httpx.Response(
                200, json={"items": [{"id": f"INV-{page}"}], "total_pages": 2}
            )

        provider_mock.on("GET", "/v2/invoicing/invoices", invoices)
        items = await PayPalConnector(transport=provider_mock.transport).fetch_invoices("tok")
        assert [i["id"] for i in items] == ["INV-1", "INV-2"]

    @pytest.mark.asyncio
    async def test_timeout_is_classified(self, provider_mock):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        provider_mock.on("GET", "/v2/invoicing/invoices", slow)
        with pytest.raises(ProviderTimeout):
            await PayPalConnector(transport=provider_mock.transport).fetch_invoices("tok")

    @pytest.mark.asyncio
    async def test_server_error_keeps_body(self, provider_mock):
        provider_mock.on("GET", "/v2/invoicing/invoices", httpx.Response(500, json={"name": "INTERNAL"}))
        with pytest.raises(ProviderAPIError) as info:
            await PayPalConnector(transport=provider_mock.transport).fetch_invoices("tok")
        assert info.value.status == 500
        assert info.value.payload == {"name": "INTERNAL"}


class TestMailchimp:
    @pytest.mark.asyncio
    async def test_metadata_uses_oauth_scheme(self, provider_mock):
        provider_mock.on(
            "GET",
            "/oauth2/metadata",
            httpx.Response(
                200,
                json={
                    "dc": "us6",
                    "user_id": 42,
                    "accountname": "Acme",
                    "login": {"login_email": "ops@acme.test"},
                    "api_endpoint": "https://us6.api.mailchimp.com",
                },
            ),
        )
        account = await MailchimpConnector(transport=provider_mock.transport).fetch_account_metadata("tok")
        assert provider_mock.calls[0].headers["Authorization"] == "OAuth tok"
        assert account.datacenter == "us6"
        assert account.account_id == "42"
        assert account.account_email == "ops@acme.test"

    @pytest.mark.asyncio
    async def test_missing_datacenter_fails(self, provider_mock):
        provider_mock.on("GET", "/oauth2/metadata", httpx.Response(200, json={"accountname": "Acme"}))
        with pytest.raises(ProviderAPIError):
            await MailchimpConnector(transport=provider_mock.transport).fetch_account_metadata("tok")

    @pytest.mark.asyncio
    async def test_no_refresh(self):
        with pytest.raises(TokenRefreshError):
            await MailchimpConnector().refresh_access_token(encrypt_token("x"))


class TestGmail:
    def test_auth_url_requests_offline_access(self):
        query = parse_qs(urlparse(GmailConnector().get_auth_url("S")).query)
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]

    @pytest.mark.asyncio
    async def test_metadata_name_defaults_to_email(self, provider_mock):
        provider_mock.on(
            "GET", "/oauth2/v2/userinfo", httpx.Response(200, json={"id": "g-1", "email": "me@gmail.com"})
        )
        account = await GmailConnector(transport=provider_mock.transport).fetch_account_metadata("tok")
        assert account.account_name == "me@gmail.com"


class TestConnectorRegistry:
    def test_discover_registers_configured(self):
        registry = ConnectorRegistry()
        registry.discover()
        assert set(registry.list_configured()) == {"paypal", "mailchimp", "gmail"}

    def test_list_providers_flags(self):
        providers = {p["provider"]: p for p in ConnectorRegistry().list_providers()}
        assert providers["paypal"]["supports_invoice_sync"] is True
        assert providers["mailchimp"]["supports_refresh"] is False
