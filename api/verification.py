from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_actor, get_provider_clients
from api.serializers import verification_to_response
from database import get_db
from providers import Providers
from schemas.verification import VerificationRequest
from services import verification as verification_service
from services.permissions import Actor

router = APIRouter(prefix="/api/applications/{application_id}/verifications", tags=["verifications"])


@router.get("")
async def list_verifications(application_id: str, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    records = await verification_service.list_verifications(db, actor.org_id, application_id)
    missing = await verification_service.missing_verifications(db, application_id)
    return {
        "verifications": [verification_to_response(r) for r in records],
        "missingRequired": missing,
        "complete": not missing,
    }


@router.post("/{verification_type}")
async def run_verification(
    application_id: str,
    verification_type: str,
    body: VerificationRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    providers: Providers = Depends(get_provider_clients),
):
    result = await verification_service.verify(
        db,
        providers,
        actor,
        application_id,
        verification_type,
        body.model_dump(by_alias=False, exclude_none=True),
    )
    return {
        "verificationId": result.record_id,
        "verificationType": result.verification_type,
        "status": result.status,
        "providerData": result.provider_data,
        "errorKind": result.error_kind,
        "message": result.message,
    }
