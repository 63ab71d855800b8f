from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_actor, get_provider_clients
from api.serializers import bank_transaction_to_response, collection_to_response, mandate_to_response
from database import get_db
from providers import Providers
from schemas.payments import CollectionCreate, MandateCancel, MandateCreate, MandateDebit
from services import collections as collection_service
from services import mandates as mandate_service
from services import schedule as schedule_service
from services.permissions import Actor, require

router = APIRouter(prefix="/api", tags=["payments"])


@router.get("/applications/{application_id}/mandates")
async def list_mandates(application_id: str, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    mandates = await mandate_service.list_mandates(db, actor.org_id, application_id)
    return [mandate_to_response(m) for m in mandates]


@router.post("/applications/{application_id}/mandates", status_code=201)
async def register_mandate(
    application_id: str,
    body: MandateCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    providers: Providers = Depends(get_provider_clients),
):
    mandate = await mandate_service.register_mandate(
        db,
        providers,
        actor,
        application_id,
        account_number=body.account_number,
        ifsc_code=body.ifsc_code,
        account_holder_name=body.account_holder_name,
        max_amount=body.max_amount,
        frequency=body.frequency,
        start_date=body.start_date,
        end_date=body.end_date,
        bank_name=body.bank_name,
    )
    return mandate_to_response(mandate)


@router.post("/mandates/{mandate_id}/cancel")
async def cancel_mandate(
    mandate_id: str,
    body: MandateCancel,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    mandate = await mandate_service.cancel_mandate(db, actor, mandate_id, body.reason)
    return mandate_to_response(mandate)


@router.post("/mandates/{mandate_id}/debit", status_code=201)
async def debit_mandate(
    mandate_id: str,
    body: MandateDebit,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    providers: Providers = Depends(get_provider_clients),
):
    txn = await mandate_service.debit_mandate(
        db, providers, actor, mandate_id, body.amount, schedule_id=body.schedule_id, debit_date=body.debit_date
    )
    return bank_transaction_to_response(txn)


@router.get("/applications/{application_id}/collections")
async def list_collections(application_id: str, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    txns = await collection_service.list_collections(db, actor.org_id, application_id)
    return [collection_to_response(t) for t in txns]


@router.post("/applications/{application_id}/collections")
async def create_collection(
    application_id: str,
    body: CollectionCreate,
    response: Response,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    providers: Providers = Depends(get_provider_clients),
):
    txn, created = await collection_service.create_upi_collection(
        db,
        providers,
        actor,
        application_id,
        amount=body.amount,
        payer_name=body.payer_name,
        payer_mobile=body.payer_mobile,
        payer_email=body.payer_email,
        schedule_id=body.schedule_id,
        client_reference_id=body.client_reference_id,
    )
    response.status_code = 201 if created else 200
    return {**collection_to_response(txn), "created": created}


@router.get("/collections/{client_reference_id}/status")
async def collection_status(
    client_reference_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    providers: Providers = Depends(get_provider_clients),
):
    result = await collection_service.resolve_collection_status(db, providers, actor, client_reference_id)
    return {
        **collection_to_response(result.transaction),
        "source": result.source,
        "reconciled": result.reconciled,
    }


@router.post("/schedule/mark-overdue")
async def mark_overdue(actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    require(actor, "update_disbursement_status")
    count = await schedule_service.mark_overdue(db, org_id=actor.org_id)
    return {"markedOverdue": count}
