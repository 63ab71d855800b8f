"""
NACH mandates and bank-side callbacks.

Mandate registration, status updates, cancellation and debits, plus the bank
webhook that completes NACH debits (reconciled into the schedule) and
disbursement transfers (which move the application to disbursed).
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import (
    DuplicateMandate,
    MandateLimitExceeded,
    NotFoundError,
    ProviderError,
    StateError,
    ValidationError,
)
from models import LoanApplication, Mandate, PaymentTransaction, RepaymentScheduleEntry
from providers import Providers
from providers.payments import map_bank_status, map_mandate_status
from services import reconciliation
from services.applications import get_application, mark_disbursed
from services.permissions import Actor, require
from services.verification import normalize_ifsc
from utils.case import coalesce, normalize_provider_payload
from utils.clock import today
from utils.identifiers import new_id, new_reference
from utils.money import money

logger = logging.getLogger(__name__)

FREQUENCIES = {"daily", "weekly", "monthly", "quarterly", "as_presented"}
LIVE_STATUSES = {"pending", "submitted", "active"}
TERMINAL_BANK_STATUSES = {"success", "failed"}


async def _get_mandate(session: AsyncSession, org_id: str, mandate_id: str) -> Mandate:
    mandate = await session.get(Mandate, mandate_id)
    if mandate is None or mandate.org_id != org_id:
        raise NotFoundError("Mandate not found", details={"mandate_id": mandate_id})
    return mandate


async def list_mandates(session: AsyncSession, org_id: str, application_id: str) -> list[Mandate]:
    await get_application(session, org_id, application_id)
    result = await session.execute(
        select(Mandate).where(Mandate.application_id == application_id).order_by(Mandate.created_at.desc())
    )
    return list(result.scalars().all())


async def register_mandate(
    session: AsyncSession,
    providers: Providers,
    actor: Actor,
    application_id: str,
    *,
    account_number: str,
    ifsc_code: str,
    account_holder_name: str,
    max_amount: Decimal,
    frequency: str,
    start_date: date,
    end_date: Optional[date] = None,
    bank_name: Optional[str] = None,
) -> Mandate:
    require(actor, "manage_mandates")
    missing = [
        name for name, value in (
            ("account_number", account_number),
            ("ifsc_code", ifsc_code),
            ("account_holder_name", account_holder_name),
            ("start_date", start_date),
        ) if not value
    ]
    if missing:
        raise ValidationError("Missing required mandate fields", details={"missing": missing})
    if max_amount is None or money(max_amount) <= 0:
        raise ValidationError("max_amount must be greater than zero")
    frequency = (frequency or "").lower()
    if frequency not in FREQUENCIES:
        raise ValidationError(f"Unknown frequency '{frequency}'", details={"allowed": sorted(FREQUENCIES)})
    if end_date and end_date <= start_date:
        raise ValidationError("end_date must be after start_date")

    app = await get_application(session, actor.org_id, application_id)
    existing = await session.execute(
        select(Mandate).where(Mandate.application_id == app.id, Mandate.status.in_(LIVE_STATUSES)).limit(1)
    )
    current = existing.scalar_one_or_none()
    if current is not None:
        raise DuplicateMandate(
            "An active or pending mandate already exists for this application",
            details={"mandate_id": current.id, "status": current.status},
        )

    ifsc = normalize_ifsc(ifsc_code)
    reference = new_reference("MND")
    mandate = Mandate(
        id=new_id("mnd"),
        application_id=app.id,
        org_id=app.org_id,
        mandate_reference=reference,
        provider_mandate_id=reference,
        status="pending",
        max_amount=money(max_amount),
        frequency=frequency,
        start_date=start_date,
        end_date=end_date,
        account_number=account_number,
        ifsc_code=ifsc,
        account_holder_name=account_holder_name,
        bank_name=bank_name,
        created_by=actor.user_id,
    )
    mandate.request_payload = {
        "mandate_id": reference,
        "ifsc_code": ifsc,
        "max_amount": str(mandate.max_amount),
        "frequency": frequency,
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat() if end_date else None,
    }
    session.add(mandate)
    session.add(
        PaymentTransaction(
            id=new_id("btx"),
            application_id=app.id,
            org_id=app.org_id,
            mandate_id=mandate.id,
            transaction_type="mandate_register",
            payment_mode="NACH",
            reference_id=reference,
            amount=mandate.max_amount,
            status="processing",
            request_payload=mandate.request_payload,
            initiated_by=actor.user_id,
        )
    )

    outcome = await providers.nach.register_mandate(
        mandate_reference=reference,
        account_number=account_number,
        ifsc_code=ifsc,
        account_holder_name=account_holder_name,
        max_amount=mandate.max_amount,
        frequency=frequency,
        start_date=start_date,
        end_date=end_date,
        purpose=f"Loan repayment {app.application_number}",
    )
    if not outcome.success:
        raise ProviderError(outcome.message or "Mandate registration was rejected", details={"provider": "nach"})

    mandate.status = "submitted"
    mandate.provider_mandate_id = outcome.reference or reference
    mandate.registration_url = outcome.data.get("registration_url")
    mandate.response_payload = {"status": outcome.status, "message": outcome.message, **outcome.data}
    await session.flush()
    logger.info("Mandate %s submitted for application %s", mandate.id, app.id)
    return mandate


def _apply_status(mandate: Mandate, provider_status: Optional[str], umrn: Optional[str], reason: Optional[str]) -> None:
    status = map_mandate_status(provider_status)
    if mandate.status in {"rejected", "cancelled"} and status != mandate.status:
        logger.warning("Ignoring %s for mandate %s already %s", provider_status, mandate.id, mandate.status)
        return
    if mandate.status == "active" and status not in {"active", "rejected", "cancelled"}:
        logger.info("Ignoring non-terminal status %s for active mandate %s", provider_status, mandate.id)
        return
    mandate.status = status
    if status == "active" and umrn:
        mandate.umrn = umrn
    if status == "rejected":
        mandate.rejection_reason = reason


async def apply_mandate_status(session: AsyncSession, payload: dict[str, Any]) -> Optional[Mandate]:
    """Webhook/poll update keyed by our mandate reference or the provider's id; None when unmatched."""
    data = normalize_provider_payload(payload)
    mandate_id = coalesce(data, "mandate_id", "provider_mandate_id", "mandate_reference", "reference_id")
    if not mandate_id:
        raise ValidationError("mandate_id is required")
    result = await session.execute(
        select(Mandate).where(
            or_(Mandate.provider_mandate_id == str(mandate_id), Mandate.mandate_reference == str(mandate_id))
        )
    )
    mandate = result.scalars().first()
    if mandate is None:
        logger.warning("Mandate webhook for unknown mandate %s", mandate_id)
        return None
    _apply_status(
        mandate,
        coalesce(data, "status", "mandate_status"),
        coalesce(data, "umrn"),
        coalesce(data, "rejection_reason", "reason", "message"),
    )
    mandate.response_payload = payload
    result = await session.execute(
        select(PaymentTransaction).where(
            PaymentTransaction.mandate_id == mandate.id,
            PaymentTransaction.transaction_type == "mandate_register",
            PaymentTransaction.status == "processing",
        )
    )
    registration = result.scalars().first()
    if registration is not None and mandate.status in {"active", "rejected"}:
        registration.status = "success" if mandate.status == "active" else "failed"
        registration.callback_payload = payload
    await session.flush()
    return mandate


async def cancel_mandate(session: AsyncSession, actor: Actor, mandate_id: str, reason: Optional[str] = None) -> Mandate:
    require(actor, "manage_mandates")
    mandate = await _get_mandate(session, actor.org_id, mandate_id)
    if mandate.status in {"rejected", "cancelled"}:
        raise StateError(f"Mandate is already {mandate.status}", details={"status": mandate.status})
    mandate.status = "cancelled"
    mandate.rejection_reason = reason
    await session.flush()
    logger.info("Mandate %s cancelled by %s", mandate.id, actor.user_id)
    return mandate


async def debit_mandate(
    session: AsyncSession,
    providers: Providers,
    actor: Actor,
    mandate_id: str,
    amount: Decimal,
    schedule_id: Optional[str] = None,
    debit_date: Optional[date] = None,
) -> PaymentTransaction:
    require(actor, "collect_payments")
    mandate = await _get_mandate(session, actor.org_id, mandate_id)
    if mandate.status != "active":
        raise StateError("Mandate is not active", details={"mandate_id": mandate.id, "status": mandate.status})
    amount = money(amount)
    if amount <= 0:
        raise ValidationError("Debit amount must be greater than zero")
    if amount > money(mandate.max_amount):
        raise MandateLimitExceeded(
            "Debit amount exceeds the mandate limit",
            details={"mandate_id": mandate.id, "max_amount": str(mandate.max_amount), "amount": str(amount)},
        )

    entry = None
    if schedule_id:
        entry = await session.get(RepaymentScheduleEntry, schedule_id)
        if entry is None or entry.application_id != mandate.application_id:
            raise NotFoundError("Repayment schedule entry not found", details={"schedule_id": schedule_id})
        if entry.status == "paid":
            raise StateError("Installment is already paid", details={"schedule_id": schedule_id})

    reference = new_reference("NACH")
    debit_on = debit_date or today()
    outcome = await providers.nach.debit(
        reference_id=reference,
        umrn=mandate.umrn,
        amount=amount,
        debit_date=debit_on,
        remarks=f"EMI {entry.emi_number}" if entry else "Loan repayment",
    )
    if not outcome.success:
        raise ProviderError(outcome.message or "Debit was rejected by the bank", details={"provider": "nach"})

    txn = PaymentTransaction(
        id=new_id("btx"),
        application_id=mandate.application_id,
        org_id=mandate.org_id,
        mandate_id=mandate.id,
        schedule_id=entry.id if entry else None,
        transaction_type="mandate_debit",
        payment_mode="NACH",
        reference_id=reference,
        amount=amount,
        status="scheduled",
        request_payload={"umrn": mandate.umrn, "amount": str(amount), "debit_date": debit_on.isoformat()},
        response_payload={"status": outcome.status, "message": outcome.message, **outcome.data},
        initiated_by=actor.user_id,
    )
    session.add(txn)
    if entry is not None:
        entry.nach_debit_reference = reference
        entry.nach_debit_status = "scheduled"
    await session.flush()
    logger.info("NACH debit %s of %s scheduled on mandate %s", reference, amount, mandate.id)
    return txn


async def apply_bank_webhook(session: AsyncSession, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Bank callback for a PaymentTransaction, matched by reference id.

    Successful mandate debits are reconciled into the schedule; successful
    disbursements move the application to disbursed. Terminal transactions
    are not changed again.
    """
    data = normalize_provider_payload(payload)
    reference = coalesce(data, "reference_id", "transaction_reference", "client_reference_id")
    if not reference:
        raise ValidationError("reference_id is required")
    result = await session.execute(select(PaymentTransaction).where(PaymentTransaction.reference_id == str(reference)))
    txn = result.scalar_one_or_none()
    if txn is None:
        logger.warning("Bank webhook for unknown reference %s", reference)
        return {"matched": False, "reference_id": reference}

    if txn.transaction_type == "mandate_register":
        data["mandate_reference"] = txn.reference_id
        data.pop("mandate_id", None)
        data.pop("provider_mandate_id", None)
        mandate = await apply_mandate_status(session, data)
        if mandate is None:
            return {"matched": False, "reference_id": reference}
        return {"matched": True, "reference_id": reference, "status": mandate.status}

    status = map_bank_status(coalesce(data, "status", "transaction_status"))
    if txn.status in TERMINAL_BANK_STATUSES:
        logger.info("Bank webhook replay for %s (already %s)", reference, txn.status)
        return {"matched": True, "reference_id": reference, "status": txn.status, "replay": True}

    utr = coalesce(data, "utr_number", "utr", "rrn")
    txn.status = status
    txn.callback_payload = payload
    if utr:
        txn.utr_number = str(utr)
    if status == "failed":
        txn.failure_reason = coalesce(data, "failure_reason", "reason", "message")

    response: dict[str, Any] = {"matched": True, "reference_id": reference, "status": status}
    if txn.transaction_type == "mandate_debit" and txn.schedule_id:
        entry = await session.get(RepaymentScheduleEntry, txn.schedule_id)
        if entry is not None and entry.nach_debit_reference == txn.reference_id:
            entry.nach_debit_status = status
        if status == "success":
            applied = await reconciliation.apply_success(
                session,
                event_key=reconciliation.nach_event_key(txn.reference_id),
                org_id=txn.org_id,
                schedule_id=txn.schedule_id,
                confirmed_amount=coalesce(data, "amount", "transaction_amount"),
                requested_amount=txn.amount,
                reference=txn.utr_number or txn.reference_id,
                method="nach",
                source="bank_webhook",
            )
            response["reconciled"] = applied.applied
    elif txn.transaction_type == "disbursement" and status == "success":
        app = await session.get(LoanApplication, txn.application_id)
        if app.current_stage == "sanctioned":
            await mark_disbursed(session, app, txn.amount, txn.utr_number or txn.reference_id, actor_id=None)
        else:
            logger.warning("Disbursement %s confirmed but application %s is %s", reference, app.id, app.current_stage)
        response["application_stage"] = app.current_stage
    await session.flush()
    return response
