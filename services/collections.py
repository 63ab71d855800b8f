"""
UPI collection requests: creation, status resolution and webhooks.

Requests are idempotent by client reference id. SUCCESS, FAILED and REJECTED
are terminal: once stored they are answered from the database and never
overwritten.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from errors import ConflictError, NotFoundError, ProviderError, ProviderUnavailable, StateError, ValidationError
from models import CollectionTransaction, LoanApplication, RepaymentScheduleEntry
from providers import Providers
from providers.payments import extract_collection_fields
from services import reconciliation
from services.applications import get_application
from services.permissions import Actor, require
from utils.case import normalize_provider_payload
from utils.clock import utcnow
from utils.identifiers import new_client_reference_id, new_id
from utils.money import money, parse_amount

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"SUCCESS", "FAILED", "REJECTED"}


@dataclass
class CollectionStatus:
    transaction: CollectionTransaction
    status: str
    source: str  # database / provider
    reconciled: bool = False


def _canonical_status(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    status = str(raw).strip().upper()
    if status in {"SUCCESSFUL", "COMPLETED", "PAID"}:
        return "SUCCESS"
    if status in {"FAILURE", "DECLINED"}:
        return "FAILED"
    if status in {"EXPIRED", "TIMEOUT"}:
        return "EXPIRED"
    return status


async def _by_reference(session: AsyncSession, client_reference_id: str) -> Optional[CollectionTransaction]:
    result = await session.execute(
        select(CollectionTransaction).where(CollectionTransaction.client_reference_id == client_reference_id)
    )
    return result.scalar_one_or_none()


def _replay(existing: CollectionTransaction, app: LoanApplication) -> CollectionTransaction:
    """A known reference is only replayable by the application that created it."""
    if existing.org_id != app.org_id or existing.application_id != app.id:
        logger.warning(
            "Client reference %s reused by application %s; it belongs to another application",
            existing.client_reference_id, app.id,
        )
        raise ConflictError(
            "client_reference_id is already in use", details={"client_reference_id": existing.client_reference_id}
        )
    return existing


async def create_upi_collection(
    session: AsyncSession,
    providers: Providers,
    actor: Actor,
    application_id: str,
    *,
    amount: Decimal,
    payer_name: str,
    payer_mobile: str,
    payer_email: Optional[str] = None,
    schedule_id: Optional[str] = None,
    client_reference_id: Optional[str] = None,
) -> tuple[CollectionTransaction, bool]:
    """Return (transaction, created). Replays of a known reference return the stored row."""
    require(actor, "collect_payments")
    amount = money(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    if not payer_mobile:
        raise ValidationError("Payer mobile number is required")
    max_length = settings.client_reference_max_length
    if client_reference_id and len(client_reference_id) > max_length:
        raise ValidationError(f"client_reference_id must be at most {max_length} characters")

    app = await get_application(session, actor.org_id, application_id)
    if schedule_id:
        entry = await session.get(RepaymentScheduleEntry, schedule_id)
        if entry is None or entry.application_id != app.id:
            raise NotFoundError("Repayment schedule entry not found", details={"schedule_id": schedule_id})
        if entry.status == "paid":
            raise StateError("Installment is already paid", details={"schedule_id": schedule_id})

    reference = client_reference_id or new_client_reference_id(schedule_id, max_length)
    existing = await _by_reference(session, reference)
    if existing is not None:
        logger.info("Collection %s already exists; returning stored transaction", reference)
        return _replay(existing, app), False

    outcome = await providers.collection.initiate(
        client_reference_id=reference,
        customer_unique_id=app.application_number,
        amount=amount,
        payer_name=payer_name,
        payer_mobile=payer_mobile,
        payer_email=payer_email,
        expiry_minutes=settings.upi_collection_expiry_minutes,
        remarks=f"EMI payment {app.application_number}",
    )
    if outcome.data.get("duplicate"):
        stored = await _by_reference(session, reference)
        if stored is None:
            raise ProviderError(
                "Collection gateway reports a duplicate request with no stored transaction",
                details={"client_reference_id": reference},
            )
        return _replay(stored, app), False
    if not outcome.success:
        raise ProviderError(outcome.message or "Failed to create collection request", details={"provider": "collection"})

    now = utcnow()
    txn = CollectionTransaction(
        id=new_id("upi"),
        application_id=app.id,
        org_id=app.org_id,
        schedule_id=schedule_id,
        client_reference_id=reference,
        provider_transaction_id=outcome.data.get("transaction_id"),
        provider_reference_id=outcome.reference,
        request_amount=amount,
        status="PENDING",
        payment_link=outcome.data.get("payment_link"),
        payee_vpa=outcome.data.get("payee_vpa"),
        payer_name=payer_name,
        payer_mobile=payer_mobile,
        payer_email=payer_email,
        expires_at=now + timedelta(minutes=settings.upi_collection_expiry_minutes),
        request_payload=outcome.data.get("request"),
        response_payload=outcome.data.get("response"),
        created_by=actor.user_id,
    )
    try:
        async with session.begin_nested():
            session.add(txn)
            await session.flush()
    except IntegrityError:
        # A concurrent request stored the same reference first
        stored = await _by_reference(session, reference)
        if stored is None:
            raise
        logger.info("Collection %s stored by a concurrent request; returning it", reference)
        return _replay(stored, app), False
    logger.info("UPI collection %s created for %s", reference, amount)
    return txn, True


async def _apply_event(session: AsyncSession, txn: CollectionTransaction, fields: dict[str, Any], source: str) -> bool:
    """Persist a non-terminal -> new status change; reconcile when it is a SUCCESS."""
    status = _canonical_status(fields.get("transaction_status"))
    if not status or status == txn.status:
        return False
    txn.status = status
    txn.status_description = fields.get("status_description") or txn.status_description
    if fields.get("transaction_id"):
        txn.provider_transaction_id = str(fields["transaction_id"])
    if fields.get("utr"):
        txn.utr = str(fields["utr"])
    if fields.get("payer_vpa"):
        txn.payer_vpa = fields["payer_vpa"]
    amount = parse_amount(fields.get("amount"))
    if amount is not None:
        txn.transaction_amount = amount

    reconciled = False
    if status == "SUCCESS" and txn.schedule_id:
        result = await reconciliation.apply_success(
            session,
            event_key=reconciliation.collection_event_key(txn.provider_transaction_id, txn.client_reference_id),
            org_id=txn.org_id,
            schedule_id=txn.schedule_id,
            confirmed_amount=txn.transaction_amount,
            requested_amount=txn.request_amount,
            reference=txn.utr or txn.client_reference_id,
            method="upi",
            source=source,
        )
        reconciled = result.applied
    await session.flush()
    return reconciled


async def resolve_collection_status(
    session: AsyncSession,
    providers: Providers,
    actor: Actor,
    client_reference_id: str,
) -> CollectionStatus:
    txn = await _by_reference(session, client_reference_id)
    if txn is None or txn.org_id != actor.org_id:
        raise NotFoundError("Collection transaction not found", details={"client_reference_id": client_reference_id})
    if txn.status in TERMINAL_STATUSES:
        return CollectionStatus(txn, txn.status, "database")

    try:
        outcome = await providers.collection.enquire(client_reference_id)
    except ProviderUnavailable as e:
        logger.warning("Status enquiry for %s failed, answering from database: %s", client_reference_id, e.message)
        return CollectionStatus(txn, txn.status, "database")
    if not outcome.success:
        logger.warning("Status enquiry for %s rejected, answering from database: %s", client_reference_id, outcome.message)
        return CollectionStatus(txn, txn.status, "database")

    reconciled = await _apply_event(session, txn, outcome.data, "status_enquiry")
    return CollectionStatus(txn, txn.status, "provider", reconciled)


async def apply_collection_webhook(session: AsyncSession, payload: dict[str, Any]) -> dict[str, Any]:
    data = normalize_provider_payload(payload)
    fields = extract_collection_fields(data)
    reference = fields.get("client_reference_id")
    if not reference:
        raise ValidationError("client_reference_id is required")
    txn = await _by_reference(session, str(reference))
    if txn is None:
        logger.warning("Collection webhook for unknown reference %s", reference)
        return {"matched": False, "client_reference_id": reference}

    if txn.status in TERMINAL_STATUSES:
        logger.info(
            "Collection webhook for %s ignored; already %s (late status %s)",
            reference, txn.status, fields.get("transaction_status"),
        )
        return {"matched": True, "client_reference_id": reference, "status": txn.status, "changed": False}

    txn.webhook_payload = payload
    previous = txn.status
    reconciled = await _apply_event(session, txn, fields, "collection_webhook")
    await session.flush()
    return {
        "matched": True,
        "client_reference_id": reference,
        "status": txn.status,
        "changed": txn.status != previous,
        "reconciled": reconciled,
    }


async def list_collections(session: AsyncSession, org_id: str, application_id: str) -> list[CollectionTransaction]:
    await get_application(session, org_id, application_id)
    result = await session.execute(
        select(CollectionTransaction)
        .where(CollectionTransaction.application_id == application_id)
        .order_by(CollectionTransaction.created_at.desc())
    )
    return list(result.scalars().all())


async def expire_stale_collections(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Mark PENDING requests past expires_at as EXPIRED. EXPIRED is not terminal:
    a late SUCCESS from the gateway still applies.
    """
    now = now or utcnow()
    result = await session.execute(
        update(CollectionTransaction)
        .where(CollectionTransaction.status == "PENDING", CollectionTransaction.expires_at < now)
        .values(status="EXPIRED", status_description="Payment window elapsed")
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount:
        logger.info("Expired %d stale UPI collection requests", result.rowcount)
    return result.rowcount or 0
