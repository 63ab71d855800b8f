from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError, StateError, ValidationError
from models import LoanApplication, RepaymentScheduleEntry
from utils.clock import today as utc_today
from utils.identifiers import new_id
from utils.money import money

logger = logging.getLogger(__name__)


def build_installments(
    principal: Decimal,
    daily_rate_percent: Decimal,
    tenure_days: int,
    start: date,
    installments: int = 1,
) -> list[dict]:
    """
    Daily flat interest: total interest = principal x rate/100 x tenure_days.
    Principal and interest are split evenly; the last installment absorbs rounding.
    """
    principal = money(principal)
    total_interest = money(principal * Decimal(daily_rate_percent) / Decimal(100) * tenure_days)
    principal_each = money(principal / installments)
    interest_each = money(total_interest / installments)
    step = tenure_days / installments

    rows = []
    for n in range(1, installments + 1):
        if n == installments:
            p = principal - principal_each * (installments - 1)
            i = total_interest - interest_each * (installments - 1)
            due = start + timedelta(days=tenure_days)
        else:
            p, i = principal_each, interest_each
            due = start + timedelta(days=round(step * n))
        rows.append({
            "emi_number": n,
            "due_date": due,
            "principal_amount": money(p),
            "interest_amount": money(i),
            "total_emi": money(p + i),
        })
    return rows


async def generate_schedule(
    session: AsyncSession,
    app: LoanApplication,
    disbursement_date: Optional[date] = None,
    installments: int = 1,
) -> list[RepaymentScheduleEntry]:
    if app.current_stage not in {"sanctioned", "disbursed"}:
        raise StateError("Schedules are generated for sanctioned or disbursed loans", details={"current_stage": app.current_stage})
    if installments < 1:
        raise ValidationError("installments must be at least 1")
    if not app.tenure_days or app.interest_rate is None:
        raise ValidationError("Application needs tenure_days and interest_rate before a schedule can be generated")
    principal = app.disbursed_amount or app.approved_amount
    if not principal:
        raise ValidationError("Application has no approved or disbursed amount")

    existing = await session.execute(
        select(RepaymentScheduleEntry.id).where(RepaymentScheduleEntry.application_id == app.id).limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Repayment schedule already exists", details={"application_id": app.id})

    start = disbursement_date or utc_today()
    entries = []
    for row in build_installments(principal, app.interest_rate, app.tenure_days, start, installments):
        entry = RepaymentScheduleEntry(
            id=new_id("emi"),
            application_id=app.id,
            org_id=app.org_id,
            amount_paid=money(0),
            principal_paid=money(0),
            interest_paid=money(0),
            status="pending",
            **row,
        )
        session.add(entry)
        entries.append(entry)
    await session.flush()
    logger.info("Generated %d installment(s) for application %s", len(entries), app.id)
    return entries


async def list_schedule(session: AsyncSession, application_id: str) -> list[RepaymentScheduleEntry]:
    result = await session.execute(
        select(RepaymentScheduleEntry)
        .where(RepaymentScheduleEntry.application_id == application_id)
        .order_by(RepaymentScheduleEntry.emi_number)
    )
    return list(result.scalars().all())


def effective_status(entry: RepaymentScheduleEntry, on: Optional[date] = None) -> str:
    """Stored status, with unpaid past-due rows reported as overdue."""
    on = on or utc_today()
    if entry.status in {"pending", "partially_paid"} and entry.due_date < on:
        return "overdue"
    return entry.status


async def mark_overdue(session: AsyncSession, on: Optional[date] = None, org_id: Optional[str] = None) -> int:
    on = on or utc_today()
    query = update(RepaymentScheduleEntry).where(
        RepaymentScheduleEntry.status == "pending", RepaymentScheduleEntry.due_date < on
    )
    if org_id:
        query = query.where(RepaymentScheduleEntry.org_id == org_id)
    result = await session.execute(query.values(status="overdue"))
    if result.rowcount:
        logger.info("Marked %d schedule entries overdue", result.rowcount)
    return result.rowcount or 0


async def all_paid(session: AsyncSession, application_id: str) -> bool:
    entries = await list_schedule(session, application_id)
    return bool(entries) and all(e.status == "paid" for e in entries)
