"""
Loan application lifecycle: creation, stage transitions, approval decisions,
disbursement, closure, repeat loans, assignment and cancellation.

Every stage change goes through ``_move`` so the derived status and the
StageEvent history stay consistent with ``current_stage``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from errors import NotFoundError, ProviderError, StateError, ValidationError
from models import Applicant, ApprovalDecision, LoanApplication, PaymentTransaction, StageEvent
from providers import Providers
from schemas.application import ApplicationCreate
from services import stages
from services.permissions import Actor, require
from services.schedule import all_paid
from utils.clock import utcnow
from utils.identifiers import application_number_prefix, new_application_number, new_id, new_reference
from utils.money import money

logger = logging.getLogger(__name__)

# Applicant columns that identify the row rather than the person
_APPLICANT_SKIP_COLUMNS = {"id", "application_id", "created_at", "updated_at"}


@dataclass
class AssignResult:
    application: LoanApplication
    changed: bool


async def get_application(session: AsyncSession, org_id: str, application_id: str) -> LoanApplication:
    """Load an application within the caller's organization; other orgs see 404."""
    result = await session.execute(
        select(LoanApplication)
        .options(selectinload(LoanApplication.applicants))
        .where(LoanApplication.id == application_id, LoanApplication.org_id == org_id)
    )
    app = result.scalar_one_or_none()
    if app is None:
        raise NotFoundError("Application not found", details={"application_id": application_id})
    return app


async def list_applications(
    session: AsyncSession,
    org_id: str,
    stage: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> list[LoanApplication]:
    query = select(LoanApplication).where(LoanApplication.org_id == org_id)
    if stage:
        query = query.where(LoanApplication.current_stage == stage)
    if assigned_to:
        query = query.where(LoanApplication.assigned_to == assigned_to)
    result = await session.execute(query.order_by(LoanApplication.updated_at.desc()))
    return list(result.scalars().all())


async def list_stage_events(session: AsyncSession, application_id: str) -> list[StageEvent]:
    result = await session.execute(
        select(StageEvent).where(StageEvent.application_id == application_id).order_by(StageEvent.created_at)
    )
    return list(result.scalars().all())


def _move(session: AsyncSession, app: LoanApplication, to_stage: str, actor_id: Optional[str], note: Optional[str] = None) -> None:
    session.add(
        StageEvent(
            id=new_id("stg"),
            application_id=app.id,
            org_id=app.org_id,
            from_stage=app.current_stage,
            to_stage=to_stage,
            created_at=utcnow(),
            actor_id=actor_id,
            note=note,
        )
    )
    logger.info("Application %s: %s -> %s", app.id, app.current_stage, to_stage)
    app.current_stage = to_stage
    app.status = stages.status_for_stage(to_stage)
    app.updated_at = utcnow()


async def _next_application_number(session: AsyncSession, org_id: str) -> str:
    """One past the highest number in the org's monthly series."""
    prefix = application_number_prefix()
    result = await session.execute(
        select(func.max(LoanApplication.application_number)).where(
            LoanApplication.org_id == org_id,
            LoanApplication.application_number.like(f"{prefix}%"),
        )
    )
    latest = result.scalar_one_or_none()
    sequence = int(latest[len(prefix):]) if latest and latest[len(prefix):].isdigit() else 0
    return new_application_number(sequence + 1)


async def create_application(session: AsyncSession, actor: Actor, body: ApplicationCreate) -> LoanApplication:
    require(actor, "create_application")
    now = utcnow()
    app = LoanApplication(
        id=new_id("app"),
        org_id=actor.org_id,
        application_number=await _next_application_number(session, actor.org_id),
        contact_id=body.contact_id,
        current_stage=stages.LEAD,
        status=stages.status_for_stage(stages.LEAD),
        source=body.source,
        requested_amount=money(body.requested_amount) if body.requested_amount is not None else None,
        tenure_days=body.tenure_days,
        interest_rate=body.interest_rate,
        assigned_to=body.assigned_to,
        created_at=now,
        updated_at=now,
    )
    applicants = body.applicants
    if applicants and not any(a.is_primary for a in applicants):
        applicants[0].is_primary = True
    app.applicants = [
        Applicant(id=new_id("apl"), org_id=actor.org_id, **a.model_dump(by_alias=False))
        for a in applicants
    ]
    session.add(app)
    session.add(
        StageEvent(
            id=new_id("stg"),
            application_id=app.id,
            org_id=app.org_id,
            from_stage=None,
            to_stage=stages.LEAD,
            created_at=utcnow(),
            actor_id=actor.user_id,
            note="created",
        )
    )
    await session.flush()
    logger.info("Created application %s (%s)", app.application_number, app.id)
    return app


async def transition(
    session: AsyncSession,
    actor: Actor,
    application_id: str,
    to_stage: str,
    note: Optional[str] = None,
) -> LoanApplication:
    """Move one step along the forward path; guarded stages have their own operations."""
    require(actor, "edit_application")
    app = await get_application(session, actor.org_id, application_id)
    stages.check_transition(app.current_stage, to_stage)
    if to_stage in stages.GUARDED_TARGETS:
        raise StateError(
            f"'{to_stage}' can only be entered through its dedicated operation",
            details={"current_stage": app.current_stage, "requested_stage": to_stage},
        )

    if app.current_stage == stages.VERIFICATION:
        # verification imports get_application from this module
        from services.verification import missing_verifications

        missing = await missing_verifications(session, app.id)
        if missing:
            raise StateError(
                "Required verifications are not complete",
                details={"current_stage": app.current_stage, "missing_verifications": missing},
            )
    if to_stage == stages.APPROVAL and not app.requested_amount:
        raise ValidationError("Requested amount is required before approval")

    _move(session, app, to_stage, actor.user_id, note)
    await session.flush()
    return app


async def decide(
    session: AsyncSession,
    actor: Actor,
    application_id: str,
    action: str,
    approved_amount: Optional[Decimal] = None,
    comments: Optional[str] = None,
    reason: Optional[str] = None,
) -> LoanApplication:
    app = await get_application(session, actor.org_id, application_id)

    if action == "approve":
        require(actor, "approve_loans")
        if app.current_stage != stages.APPROVAL:
            raise StateError(
                "Only applications in approval can be approved",
                details={"current_stage": app.current_stage},
            )
        if approved_amount is None or money(approved_amount) <= 0:
            raise ValidationError("Approved amount must be greater than zero")
        app.approved_amount = money(approved_amount)
        app.approved_by = actor.user_id
        app.sanctioned_at = utcnow()
        decision, target, note = "approved", stages.SANCTIONED, comments
    elif action == "reject":
        require(actor, "reject_loans")
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        stages.check_transition(app.current_stage, stages.REJECTED)
        app.rejection_reason = reason.strip()
        decision, target, note = "rejected", stages.REJECTED, reason.strip()
    else:
        raise ValidationError(f"Unknown decision '{action}'", details={"allowed": ["approve", "reject"]})

    session.add(
        ApprovalDecision(
            id=new_id("apr"),
            application_id=app.id,
            org_id=app.org_id,
            approver_id=actor.user_id,
            approver_role=actor.role,
            decision=decision,
            approved_amount=app.approved_amount if decision == "approved" else None,
            comments=comments if decision == "approved" else reason.strip(),
        )
    )
    _move(session, app, target, actor.user_id, note)
    await session.flush()
    return app


async def initiate_disbursement(
    session: AsyncSession,
    providers: Providers,
    actor: Actor,
    application_id: str,
    account_number: str,
    ifsc_code: str,
    beneficiary_name: str,
    amount: Optional[Decimal] = None,
) -> PaymentTransaction:
    require(actor, "initiate_disbursement")
    app = await get_application(session, actor.org_id, application_id)
    if app.current_stage != stages.SANCTIONED:
        raise StateError("Only sanctioned applications can be disbursed", details={"current_stage": app.current_stage})
    amount = money(amount if amount is not None else app.approved_amount)
    _check_disbursement_amount(app, amount)

    from services.verification import normalize_ifsc

    ifsc = normalize_ifsc(ifsc_code)
    reference = new_reference("DSB")
    request_payload = {
        "account_number": account_number,
        "ifsc_code": ifsc,
        "beneficiary_name": beneficiary_name,
        "amount": str(amount),
    }
    outcome = await providers.nach.transfer(
        reference_id=reference,
        amount=amount,
        account_number=account_number,
        ifsc_code=ifsc,
        beneficiary_name=beneficiary_name,
    )
    if not outcome.success:
        raise ProviderError(outcome.message or "Disbursement was rejected by the bank", details={"reference_id": reference})

    txn = PaymentTransaction(
        id=new_id("btx"),
        application_id=app.id,
        org_id=app.org_id,
        transaction_type="disbursement",
        payment_mode="IMPS",
        reference_id=reference,
        amount=amount,
        status="processing",
        utr_number=outcome.data.get("utr"),
        request_payload=request_payload,
        response_payload={"status": outcome.status, "message": outcome.message},
        initiated_by=actor.user_id,
    )
    session.add(txn)
    await session.flush()
    logger.info("Disbursement %s of %s initiated for application %s", reference, amount, app.id)
    return txn


def _check_disbursement_amount(app: LoanApplication, amount: Decimal) -> None:
    if amount <= 0:
        raise ValidationError("Disbursement amount must be greater than zero")
    if app.approved_amount is None or amount > money(app.approved_amount):
        raise ValidationError(
            "Disbursement amount cannot exceed the approved amount",
            details={"approved_amount": str(app.approved_amount) if app.approved_amount is not None else None},
        )


async def mark_disbursed(
    session: AsyncSession,
    app: LoanApplication,
    amount: Decimal,
    utr: str,
    actor_id: Optional[str],
) -> LoanApplication:
    """Move a sanctioned application to disbursed; shared by the API and the bank webhook."""
    if app.current_stage != stages.SANCTIONED:
        raise StateError("Only sanctioned applications can be disbursed", details={"current_stage": app.current_stage})
    amount = money(amount)
    _check_disbursement_amount(app, amount)
    if not utr or not utr.strip():
        raise ValidationError("UTR is required to record a disbursement")
    app.disbursed_amount = amount
    app.disbursement_utr = utr.strip()
    app.disbursed_at = utcnow()
    _move(session, app, stages.DISBURSED, actor_id, f"UTR {app.disbursement_utr}")
    await session.flush()
    return app


async def record_disbursement(
    session: AsyncSession,
    actor: Actor,
    application_id: str,
    amount: Decimal,
    utr: str,
) -> LoanApplication:
    require(actor, "update_disbursement_status")
    app = await get_application(session, actor.org_id, application_id)
    return await mark_disbursed(session, app, amount, utr, actor.user_id)


async def close_application(session: AsyncSession, actor: Actor, application_id: str) -> LoanApplication:
    require(actor, "update_disbursement_status")
    app = await get_application(session, actor.org_id, application_id)
    stages.check_transition(app.current_stage, stages.CLOSED)

    if not await all_paid(session, app.id):
        raise StateError("All installments must be paid before closing", details={"current_stage": app.current_stage})
    app.closed_at = utcnow()
    _move(session, app, stages.CLOSED, actor.user_id)
    await session.flush()
    return app


async def create_repeat_loan(
    session: AsyncSession,
    actor: Actor,
    parent_id: str,
    requested_amount: Decimal,
    tenure_days: int,
    interest_rate: Optional[Decimal] = None,
) -> LoanApplication:
    require(actor, "create_application")
    parent = await get_application(session, actor.org_id, parent_id)
    if parent.current_stage not in {stages.DISBURSED, stages.CLOSED}:
        raise StateError(
            "Repeat loans require a disbursed or closed parent application",
            details={"current_stage": parent.current_stage},
        )
    if money(requested_amount) <= 0 or tenure_days <= 0:
        raise ValidationError("Requested amount and tenure must be positive")

    now = utcnow()
    app = LoanApplication(
        id=new_id("app"),
        org_id=parent.org_id,
        application_number=await _next_application_number(session, parent.org_id),
        contact_id=parent.contact_id,
        current_stage=stages.ASSESSMENT,
        status=stages.status_for_stage(stages.ASSESSMENT),
        source="repeat_loan",
        requested_amount=money(requested_amount),
        tenure_days=tenure_days,
        interest_rate=interest_rate if interest_rate is not None else parent.interest_rate,
        assigned_to=parent.assigned_to,
        parent_application_id=parent.id,
        created_at=now,
        updated_at=now,
    )
    columns = [c.name for c in Applicant.__table__.columns if c.name not in _APPLICANT_SKIP_COLUMNS]
    app.applicants = [
        Applicant(id=new_id("apl"), **{name: getattr(src, name) for name in columns})
        for src in parent.applicants
    ]
    session.add(app)
    session.add(
        StageEvent(
            id=new_id("stg"),
            application_id=app.id,
            org_id=app.org_id,
            from_stage=None,
            to_stage=stages.ASSESSMENT,
            created_at=utcnow(),
            actor_id=actor.user_id,
            note=f"repeat loan of {parent.application_number}",
        )
    )
    await session.flush()
    logger.info("Repeat loan %s created from %s", app.id, parent.id)
    return app


async def assign(session: AsyncSession, actor: Actor, application_id: str, assignee: str) -> AssignResult:
    require(actor, "assign_applications")
    app = await get_application(session, actor.org_id, application_id)
    if app.assigned_to == assignee:
        return AssignResult(application=app, changed=False)
    app.assigned_to = assignee
    app.updated_at = utcnow()
    await session.flush()
    return AssignResult(application=app, changed=True)


async def cancel(session: AsyncSession, actor: Actor, application_id: str, reason: str) -> LoanApplication:
    require(actor, "edit_application")
    if not reason or not reason.strip():
        raise ValidationError("Cancellation reason is required")
    app = await get_application(session, actor.org_id, application_id)
    stages.check_transition(app.current_stage, stages.CANCELLED)
    app.cancellation_reason = reason.strip()
    _move(session, app, stages.CANCELLED, actor.user_id, reason.strip())
    await session.flush()
    return app
