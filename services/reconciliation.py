"""
Applies confirmed payments to the repayment schedule.

Every provider event is applied at most once: its key is recorded in
ProcessedEvent inside the same transaction as the Payment insert and the
schedule update, so a replay finds the key and does nothing, and a concurrent
duplicate loses on the primary key and rolls back entirely.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError
from models import Payment, ProcessedEvent, RepaymentScheduleEntry
from utils.clock import today
from utils.identifiers import new_id, new_reference
from utils.money import money, parse_amount

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    applied: bool
    event_key: str
    payment_id: Optional[str] = None
    schedule_status: Optional[str] = None
    amount: Optional[Decimal] = None


def collection_event_key(provider_transaction_id: Optional[str], client_reference_id: str) -> str:
    return f"collection:{provider_transaction_id or client_reference_id}"


def nach_event_key(debit_reference: str) -> str:
    return f"nach:{debit_reference}"


def schedule_status(amount_paid: Decimal, total_emi: Decimal) -> str:
    if amount_paid >= total_emi:
        return "paid"
    if amount_paid > 0:
        return "partially_paid"
    return "pending"


def split_amount(amount: Decimal, principal_amount: Decimal, total_emi: Decimal) -> tuple[Decimal, Decimal]:
    """Split a payment into (principal, interest) using the row's own ratio."""
    if not total_emi:
        return amount, money(0)
    principal = money(amount * Decimal(principal_amount) / Decimal(total_emi))
    return principal, money(amount - principal)


async def is_processed(session: AsyncSession, event_key: str) -> bool:
    result = await session.execute(select(ProcessedEvent.event_key).where(ProcessedEvent.event_key == event_key))
    return result.scalar_one_or_none() is not None


async def apply_success(
    session: AsyncSession,
    *,
    event_key: str,
    org_id: str,
    schedule_id: str,
    confirmed_amount: Any,
    requested_amount: Any,
    reference: Optional[str],
    method: str,
    source: str,
) -> ReconciliationResult:
    """Record a Payment and advance the schedule row, once per event_key."""
    if await is_processed(session, event_key):
        logger.info("Event %s already applied; skipping", event_key)
        return ReconciliationResult(applied=False, event_key=event_key)

    row = await session.get(RepaymentScheduleEntry, schedule_id)
    if row is None or row.org_id != org_id:
        raise NotFoundError("Repayment schedule entry not found", details={"schedule_id": schedule_id})

    session.add(ProcessedEvent(event_key=event_key, org_id=org_id, source=source))

    amount = parse_amount(confirmed_amount)
    if amount is None or amount <= 0:
        amount = money(requested_amount)
    principal, interest = split_amount(amount, row.principal_amount, row.total_emi)

    payment = Payment(
        id=new_id("pay"),
        application_id=row.application_id,
        schedule_id=row.id,
        org_id=org_id,
        payment_number=new_reference("PAY"),
        payment_date=today(),
        payment_amount=amount,
        principal_paid=principal,
        interest_paid=interest,
        payment_method=method,
        transaction_reference=reference,
        notes=f"Auto-reconciled from {source}",
    )
    session.add(payment)

    row.amount_paid = money(money(row.amount_paid) + amount)
    row.principal_paid = money(money(row.principal_paid) + principal)
    row.interest_paid = money(money(row.interest_paid) + interest)
    row.status = schedule_status(row.amount_paid, money(row.total_emi))
    if row.status == "paid":
        row.payment_date = today()
        excess = row.amount_paid - money(row.total_emi)
        if excess > 0:
            logger.warning(
                "Overpayment of %s on schedule %s (EMI %s) via %s",
                excess, row.id, row.emi_number, event_key,
            )

    await session.flush()
    logger.info("Applied %s to schedule %s: %s -> %s", event_key, row.id, amount, row.status)
    return ReconciliationResult(
        applied=True,
        event_key=event_key,
        payment_id=payment.id,
        schedule_status=row.status,
        amount=amount,
    )
