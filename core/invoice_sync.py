"""
Invoice sync engine — pull invoices from a provider and reconcile them
into the local ``invoices`` table.

Ownership note: invoices are keyed by ``(external_id, integration_source)``
only.  The product runs one operator per deployment, so an invoice (or a
connection) found under another user id is *adopted* by whoever syncs or
reads it.  This is not multi-tenant safe; see DESIGN.md.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.store import adopt_connection, get_connection, mark_synced
from connectors.token_manager import call_with_token, get_connector
from database.helpers import utcnow
from database.models import Invoice
from utils.exceptions import (
    DecryptionError,
    ProviderAPIError,
    ProviderNotConnected,
    SyncFailed,
    TokenExchangeError,
    TokenExpired,
    ValidationError,
)
from utils.schemas import SyncResult

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"PAID", "MARKED_AS_PAID"})


def map_status(external_status: Optional[str]) -> str:
    return "paid" if (external_status or "").upper() in PAID_STATUSES else "pending"


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value[:10])


def parse_paypal_invoice(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map a PayPal v2 invoice onto ``Invoice`` columns (minus ownership)."""
    external_id = raw.get("id")
    if not external_id:
        raise ValueError("invoice has no id")

    detail = raw.get("detail") or {}
    recipients = raw.get("primary_recipients") or []
    billing = (recipients[0].get("billing_info") or {}) if recipients else {}
    name = billing.get("name") or {}
    client_name = f"{name.get('given_name') or ''} {name.get('surname') or ''}".strip()

    money = raw.get("amount") or raw.get("due_amount") or {}
    payment_term = detail.get("payment_term") or {}
    due = (
        _parse_date(raw.get("due_date"))
        or _parse_date(payment_term.get("due_date"))
        or _parse_date(raw.get("invoice_date"))
        or _parse_date(detail.get("invoice_date"))
        or date.today()
    )
    payments = raw.get("payments") or {}
    paid_on = None
    if payments.get("transactions"):
        paid_on = _parse_date(payments["transactions"][-1].get("payment_date"))

    return {
        "external_id": external_id,
        "invoice_number": detail.get("invoice_number") or external_id,
        "client_name": client_name or "Unknown Client",
        "client_email": billing.get("email_address"),
        "amount": float(money.get("value") or "0"),
        "currency": money.get("currency_code") or detail.get("currency_code"),
        "due_date": due,
        "status": map_status(raw.get("status")),
        "payment_date": paid_on,
    }


async def _find_invoice(
    session: AsyncSession, external_id: str, source: str
) -> Optional[Invoice]:
    result = await session.execute(
        select(Invoice).where(
            Invoice.external_id == external_id,
            Invoice.integration_source == source,
        )
    )
    return result.scalar_one_or_none()


async def reconcile_invoice(
    session: AsyncSession, user_id: str, source: str, raw: Dict[str, Any]
) -> str:
    """
    Merge one external invoice.  Returns the outcome:
    ``created`` | ``adopted`` | ``updated`` | ``unchanged`` | ``conflict``.
    """
    fields = parse_paypal_invoice(raw)
    existing = await _find_invoice(session, fields["external_id"], source)

    if existing is None:
        session.add(Invoice(user_id=user_id, integration_source=source, **fields))
        await session.flush()
        return "created"

    if existing.user_id != user_id:
        previous_owner = existing.user_id
        result = await session.execute(
            update(Invoice)
            .where(Invoice.id == existing.id, Invoice.user_id == previous_owner)
            .values(user_id=user_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return "conflict"
        await session.refresh(existing)
        logger.info(
            "Adopted invoice %s from user %s to user %s",
            fields["external_id"],
            previous_owner,
            user_id,
        )
        return "adopted"

    changed = False
    for column in ("status", "amount"):
        if getattr(existing, column) != fields[column]:
            setattr(existing, column, fields[column])
            changed = True
    if fields["payment_date"] and existing.payment_date != fields["payment_date"]:
        existing.payment_date = fields["payment_date"]
        changed = True
    if not changed:
        return "unchanged"
    existing.updated_at = utcnow()
    await session.flush()
    return "updated"


async def sync_invoices(
    session: AsyncSession, user_id: str, provider: str = "paypal"
) -> SyncResult:
    """
    Fetch every invoice from ``provider`` and reconcile it for ``user_id``.

    A fetch failure (after the one-shot refresh/timeout retry) raises
    ``SyncFailed`` before any invoice row is touched.  Failures on a single
    invoice are rolled back to a savepoint, recorded in ``errors`` and
    skipped.
    """
    user_id = str(user_id)
    connector = get_connector(provider)
    if not connector.supports_invoice_sync:
        raise ValidationError(f"{connector.display_name} does not provide invoices", field="provider")

    conn = await get_connection(session, user_id, provider)
    if conn is None:
        logger.info("No %s connection for user %s, looking for one to adopt", provider, user_id)
        conn = await adopt_connection(session, user_id, provider)
    if conn is None or not conn.access_token:
        raise ProviderNotConnected(connector.display_name)

    try:
        external = await call_with_token(session, conn, connector, connector.fetch_invoices)
    except (ProviderAPIError, TokenExpired, TokenExchangeError, DecryptionError) as exc:
        logger.error("%s invoice fetch failed for user %s: %s", provider, user_id, exc.message)
        raise SyncFailed(
            f"Failed to sync {connector.display_name} invoices: {exc.message}",
            detail=getattr(exc, "payload", None),
        ) from exc

    result = SyncResult()
    outcomes: List[Dict[str, Any]] = []
    for raw in external:
        external_id = raw.get("id") if isinstance(raw, dict) else None
        try:
            async with session.begin_nested():
                outcome = await reconcile_invoice(session, user_id, provider, raw)
        except Exception as exc:
            logger.exception("Error processing %s invoice %s", provider, external_id)
            result.errors.append({"external_id": external_id, "error": str(exc)})
            outcomes.append({"external_id": external_id, "outcome": "error"})
            continue

        if outcome == "created":
            result.synced_count += 1
        elif outcome in ("adopted", "updated"):
            result.updated_count += 1
        elif outcome == "conflict":
            logger.warning("Invoice %s changed owner concurrently, skipped", external_id)
        outcomes.append({"external_id": external_id, "outcome": outcome})

    await mark_synced(session, conn)

    logger.info(
        "%s sync completed for user %s: %d new, %d updated, %d errors",
        provider,
        user_id,
        result.synced_count,
        result.updated_count,
        len(result.errors),
    )
    result.debug = {
        "current_user_id": user_id,
        "total_fetched": len(external),
        "invoice_ids": [inv.get("id") for inv in external if isinstance(inv, dict)],
        "invoice_summaries": [
            {
                "id": inv.get("id"),
                "status": inv.get("status"),
                "invoice_number": (inv.get("detail") or {}).get("invoice_number"),
                "amount": (inv.get("amount") or {}).get("value"),
            }
            for inv in external[:5]
            if isinstance(inv, dict)
        ],
        "outcomes": outcomes,
    }
    return result


async def list_invoices(session: AsyncSession, user_id: str, source: str) -> List[Invoice]:
    """
    The user's invoices for ``source``, newest first.

    When the user owns none but the source has invoices, all of them are
    adopted to the user first.
    """
    user_id = str(user_id)
    query = (
        select(Invoice)
        .where(Invoice.user_id == user_id, Invoice.integration_source == source)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
    )
    invoices = list((await session.execute(query)).scalars().all())
    if invoices:
        return invoices

    orphaned = await session.scalar(
        select(func.count()).select_from(Invoice).where(Invoice.integration_source == source)
    )
    if not orphaned:
        return []

    logger.info("Adopting %d orphaned %s invoices to user %s", orphaned, source, user_id)
    await session.execute(
        update(Invoice)
        .where(Invoice.integration_source == source)
        .values(user_id=user_id, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return list((await session.execute(query.execution_options(populate_existing=True))).scalars().all())
