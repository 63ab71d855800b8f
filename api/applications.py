from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_actor, get_provider_clients
from api.serializers import (
    application_to_response,
    bank_transaction_to_response,
    schedule_to_response,
    stage_event_to_response,
)
from database import get_db
from providers import Providers
from schemas.application import (
    ApplicationCreate,
    AssignRequest,
    CancelRequest,
    DecisionRequest,
    DisbursementInitiate,
    DisbursementRecord,
    RepeatLoanCreate,
    ScheduleGenerate,
    StageTransition,
)
from services import applications as application_service
from services import schedule as schedule_service
from services.permissions import Actor, require

router = APIRouter(prefix="/api/applications", tags=["applications"])


@router.get("")
async def list_applications(
    stage: Optional[str] = None,
    assigned_to: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    apps = await application_service.list_applications(db, actor.org_id, stage=stage, assigned_to=assigned_to)
    return [application_to_response(a, include_applicants=False) for a in apps]


@router.post("", status_code=201)
async def create_application(body: ApplicationCreate, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    app = await application_service.create_application(db, actor, body)
    return application_to_response(app)


@router.get("/{application_id}")
async def get_application(application_id: str, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    app = await application_service.get_application(db, actor.org_id, application_id)
    return application_to_response(app)


@router.get("/{application_id}/history")
async def get_history(application_id: str, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    await application_service.get_application(db, actor.org_id, application_id)
    events = await application_service.list_stage_events(db, application_id)
    return [stage_event_to_response(e) for e in events]


@router.post("/{application_id}/transition")
async def transition(
    application_id: str,
    body: StageTransition,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    app = await application_service.transition(db, actor, application_id, body.to_stage, body.note)
    return application_to_response(app)


@router.post("/{application_id}/decision")
async def decide(
    application_id: str,
    body: DecisionRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    app = await application_service.decide(
        db,
        actor,
        application_id,
        body.action,
        approved_amount=body.approved_amount,
        comments=body.comments,
        reason=body.reason,
    )
    return application_to_response(app)


@router.post("/{application_id}/disbursement/initiate", status_code=201)
async def initiate_disbursement(
    application_id: str,
    body: DisbursementInitiate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    providers: Providers = Depends(get_provider_clients),
):
    txn = await application_service.initiate_disbursement(
        db,
        providers,
        actor,
        application_id,
        account_number=body.account_number,
        ifsc_code=body.ifsc_code,
        beneficiary_name=body.beneficiary_name,
        amount=body.amount,
    )
    return bank_transaction_to_response(txn)


@router.post("/{application_id}/disbursement")
async def record_disbursement(
    application_id: str,
    body: DisbursementRecord,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    app = await application_service.record_disbursement(db, actor, application_id, body.amount, body.utr)
    return application_to_response(app)


@router.post("/{application_id}/close")
async def close_application(application_id: str, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    app = await application_service.close_application(db, actor, application_id)
    return application_to_response(app)


@router.post("/{application_id}/repeat", status_code=201)
async def create_repeat_loan(
    application_id: str,
    body: RepeatLoanCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    app = await application_service.create_repeat_loan(
        db, actor, application_id, body.requested_amount, body.tenure_days, body.interest_rate
    )
    return application_to_response(app)


@router.post("/{application_id}/assign")
async def assign(
    application_id: str,
    body: AssignRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await application_service.assign(db, actor, application_id, body.assignee)
    return {"changed": result.changed, "application": application_to_response(result.application)}


@router.post("/{application_id}/cancel")
async def cancel(
    application_id: str,
    body: CancelRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    app = await application_service.cancel(db, actor, application_id, body.reason)
    return application_to_response(app)


@router.get("/{application_id}/schedule")
async def get_schedule(application_id: str, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    await application_service.get_application(db, actor.org_id, application_id)
    entries = await schedule_service.list_schedule(db, application_id)
    return [schedule_to_response(e) for e in entries]


@router.post("/{application_id}/schedule", status_code=201)
async def generate_schedule(
    application_id: str,
    body: ScheduleGenerate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    require(actor, "update_disbursement_status")
    app = await application_service.get_application(db, actor.org_id, application_id)
    entries = await schedule_service.generate_schedule(db, app, body.disbursement_date, body.installments)
    return [schedule_to_response(e) for e in entries]
