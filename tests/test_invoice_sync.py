"""
Tests for the invoice sync engine.
"""

from datetime import date

import httpx
import pytest
from sqlalchemy import func, select

from connectors.encryption import encrypt_token
from connectors.mailchimp import MailchimpConnector
from connectors.paypal import PayPalConnector
from connectors.registry import ConnectorRegistry
from connectors.store import get_connection, upsert_connection
from core.invoice_sync import list_invoices, map_status, parse_paypal_invoice, sync_invoices
from database.models import Invoice
from utils.exceptions import ProviderNotConnected, SyncFailed, ValidationError


def _paypal_invoice(invoice_id, *, status="SENT", value="100.00", due="2025-01-10", email="client@example.com"):
    return {
        "id": invoice_id,
        "status": status,
        "detail": {"invoice_number": f"N-{invoice_id}", "payment_term": {"due_date": due}},
        "primary_recipients": [
            {
                "billing_info": {
                    "name": {"given_name": "Grace", "surname": "Hopper"},
                    "email_address": email,
                }
            }
        ],
        "amount": {"currency_code": "USD", "value": value},
    }


def _serve(provider_mock, invoices):
    provider_mock.on(
        "GET",
        "/v2/invoicing/invoices",
        lambda r: httpx.Response(200, json={"items": invoices, "total_pages": 1}),
    )
    ConnectorRegistry().register(PayPalConnector(transport=provider_mock.transport))


async def _connect(session, user_id="user-1"):
    return await upsert_connection(session, user_id, "paypal", access_token=encrypt_token("tok"))


async def _count(session):
    return await session.scalar(select(func.count()).select_from(Invoice))


class TestParsing:
    def test_status_mapping(self):
        assert map_status("PAID") == "paid"
        assert map_status("MARKED_AS_PAID") == "paid"
        assert map_status("SENT") == "pending"
        assert map_status(None) == "pending"

    def test_fields(self):
        fields = parse_paypal_invoice(_paypal_invoice("INV-1"))
        assert fields["client_name"] == "Grace Hopper"
        assert fields["amount"] == 100.0
        assert fields["due_date"] == date(2025, 1, 10)
        assert fields["invoice_number"] == "N-INV-1"

    def test_due_date_falls_back_to_invoice_date(self):
        raw = _paypal_invoice("INV-1")
        raw["detail"] = {"invoice_date": "2025-02-01"}
        assert parse_paypal_invoice(raw)["due_date"] == date(2025, 2, 1)

    def test_missing_recipient(self):
        raw = _paypal_invoice("INV-1")
        raw["primary_recipients"] = []
        fields = parse_paypal_invoice(raw)
        assert fields["client_name"] == "Unknown Client"
        assert fields["client_email"] is None

    def test_payment_date_from_transactions(self):
        raw = _paypal_invoice("INV-1", status="PAID")
        raw["payments"] = {"transactions": [{"payment_date": "2025-01-12"}]}
        assert parse_paypal_invoice(raw)["payment_date"] == date(2025, 1, 12)


class TestSyncInvoices:
    @pytest.mark.asyncio
    async def test_first_sync_creates(self, session, provider_mock):
        _serve(provider_mock, [_paypal_invoice("INV-1"), _paypal_invoice("INV-2")])
        await _connect(session)

        result = await sync_invoices(session, "user-1")

        assert result.success is True
        assert result.synced_count == 2
        assert result.updated_count == 0
        assert result.debug["total_fetched"] == 2
        assert await _count(session) == 2
        conn = await get_connection(session, "user-1", "paypal")
        assert conn.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, session, provider_mock):
        _serve(provider_mock, [_paypal_invoice("INV-1"), _paypal_invoice("INV-2")])
        await _connect(session)

        await sync_invoices(session, "user-1")
        before = {
            i.external_id: i.updated_at for i in (await session.execute(select(Invoice))).scalars()
        }
        again = await sync_invoices(session, "user-1")

        assert again.synced_count == 0
        assert again.updated_count == 0
        assert await _count(session) == 2
        after = {
            i.external_id: i.updated_at for i in (await session.execute(select(Invoice))).scalars()
        }
        assert after == before

    @pytest.mark.asyncio
    async def test_status_change_is_updated(self, session, provider_mock):
        invoices = [_paypal_invoice("INV-1")]
        _serve(provider_mock, invoices)
        await _connect(session)
        await sync_invoices(session, "user-1")

        invoices[0] = _paypal_invoice("INV-1", status="PAID")
        result = await sync_invoices(session, "user-1")

        assert result.updated_count == 1
        stored = (await session.execute(select(Invoice))).scalar_one()
        assert stored.status == "paid"

    @pytest.mark.asyncio
    async def test_bad_invoice_does_not_abort_batch(self, session, provider_mock):
        _serve(
            provider_mock,
            [
                _paypal_invoice("INV-1"),
                _paypal_invoice("INV-2"),
                _paypal_invoice("INV-3", value="not-a-number"),
                _paypal_invoice("INV-4"),
                _paypal_invoice("INV-5"),
            ],
        )
        await _connect(session)

        result = await sync_invoices(session, "user-1")

        assert result.debug["total_fetched"] == 5
        assert result.synced_count == 4
        assert len(result.errors) == 1
        assert result.errors[0]["external_id"] == "INV-3"
        assert await _count(session) == 4

    @pytest.mark.asyncio
    async def test_invoices_of_other_user_are_adopted(self, session, provider_mock):
        _serve(provider_mock, [_paypal_invoice("INV-1", status="PAID")])
        session.add(
            Invoice(
                user_id="old-user",
                external_id="INV-1",
                integration_source="paypal",
                amount=100.0,
                due_date=date(2025, 1, 10),
                status="pending",
            )
        )
        await session.flush()
        await _connect(session, "user-1")

        result = await sync_invoices(session, "user-1")

        assert result.synced_count == 0
        assert result.updated_count == 1
        assert await _count(session) == 1
        stored = (await session.execute(select(Invoice))).scalar_one()
        assert stored.user_id == "user-1"
        # adoption only reassigns ownership
        assert stored.status == "pending"

    @pytest.mark.asyncio
    async def test_connection_of_other_user_is_adopted(self, session, provider_mock):
        _serve(provider_mock, [_paypal_invoice("INV-1")])
        await _connect(session, "old-user")

        result = await sync_invoices(session, "user-1")

        assert result.synced_count == 1
        assert await get_connection(session, "user-1", "paypal") is not None
        assert await get_connection(session, "old-user", "paypal") is None

    @pytest.mark.asyncio
    async def test_not_connected(self, session, provider_mock):
        _serve(provider_mock, [])
        with pytest.raises(ProviderNotConnected):
            await sync_invoices(session, "user-1")

    @pytest.mark.asyncio
    async def test_fetch_failure_writes_nothing(self, session, provider_mock):
        provider_mock.on(
            "GET", "/v2/invoicing/invoices", lambda r: httpx.Response(500, json={"name": "INTERNAL_SERVER_ERROR"})
        )
        ConnectorRegistry().register(PayPalConnector(transport=provider_mock.transport))
        await _connect(session)

        with pytest.raises(SyncFailed):
            await sync_invoices(session, "user-1")
        assert await _count(session) == 0
        conn = await get_connection(session, "user-1", "paypal")
        assert conn.last_synced_at is None

    @pytest.mark.asyncio
    async def test_non_json_listing_is_a_sync_failure(self, session, provider_mock):
        provider_mock.on("GET", "/v2/invoicing/invoices", httpx.Response(200, text="<html>maintenance</html>"))
        ConnectorRegistry().register(PayPalConnector(transport=provider_mock.transport))
        await _connect(session)

        with pytest.raises(SyncFailed):
            await sync_invoices(session, "user-1")
        assert await _count(session) == 0

    @pytest.mark.asyncio
    async def test_provider_without_invoices(self, session):
        ConnectorRegistry().register(MailchimpConnector())
        with pytest.raises(ValidationError):
            await sync_invoices(session, "user-1", "mailchimp")


class TestListInvoices:
    @pytest.mark.asyncio
    async def test_orphaned_invoices_adopted_on_read(self, session):
        session.add(
            Invoice(
                user_id="old-user",
                external_id="INV-9",
                integration_source="paypal",
                amount=5.0,
                due_date=date(2025, 3, 1),
            )
        )
        await session.flush()

        invoices = await list_invoices(session, "user-1", "paypal")

        assert [i.external_id for i in invoices] == ["INV-9"]
        assert invoices[0].user_id == "user-1"

    @pytest.mark.asyncio
    async def test_own_invoices_only(self, session):
        session.add_all(
            [
                Invoice(user_id="user-1", external_id="A", integration_source="paypal", amount=1.0, due_date=date(2025, 1, 1)),
                Invoice(user_id="user-2", external_id="B", integration_source="paypal", amount=2.0, due_date=date(2025, 1, 1)),
            ]
        )
        await session.flush()
        invoices = await list_invoices(session, "user-1", "paypal")
        assert [i.external_id for i in invoices] == ["A"]
