from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_actor, get_provider_clients
from api.serializers import document_to_response, esign_to_response
from database import get_db
from providers import Providers
from schemas.esign import DocumentGenerate, ESignComplete, ESignCreate, ESignInitiate
from services import esign as esign_service
from services.permissions import Actor

router = APIRouter(tags=["esign"])


@router.post("/api/applications/{application_id}/documents", status_code=201)
async def generate_document(
    application_id: str,
    body: DocumentGenerate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    doc = await esign_service.generate_document(db, actor, application_id, body.document_type)
    return document_to_response(doc)


@router.post("/api/applications/{application_id}/esign", status_code=201)
async def create_esign_request(
    application_id: str,
    body: ESignCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    providers: Providers = Depends(get_provider_clients),
):
    request = await esign_service.create_esign_request(
        db,
        providers,
        actor,
        application_id,
        body.document_type,
        body.signer_name,
        signer_phone=body.signer_phone,
        signer_email=body.signer_email,
        channel=body.notification_channel,
        document_id=body.document_id,
    )
    return esign_to_response(request, include_token=True)


# Signer-facing endpoints are authorized by the access token alone.


@router.get("/api/esign/{token}")
async def view_esign_request(token: str, db: AsyncSession = Depends(get_db)):
    summary = await esign_service.view_esign_request(db, token)
    return {
        "request": esign_to_response(summary["request"]),
        "applicationNumber": summary["application_number"],
        "approvedAmount": float(summary["approved_amount"]) if summary["approved_amount"] is not None else None,
        "alreadySigned": summary["already_signed"],
        "expired": summary["expired"],
    }


@router.post("/api/esign/{token}/initiate")
async def initiate_signing(
    token: str,
    body: ESignInitiate,
    db: AsyncSession = Depends(get_db),
    providers: Providers = Depends(get_provider_clients),
):
    request = await esign_service.initiate_signing(db, providers, token, body.aadhaar_number, body.consent)
    return {"status": request.status, "message": "OTP sent to Aadhaar-linked mobile number"}


@router.post("/api/esign/{token}/complete")
async def complete_signing(
    token: str,
    body: ESignComplete,
    request: Request,
    user_agent: Optional[str] = Header(None),
    x_forwarded_for: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    providers: Providers = Depends(get_provider_clients),
):
    ip = x_forwarded_for.split(",")[0].strip() if x_forwarded_for else (request.client.host if request.client else None)
    signed = await esign_service.complete_signing(db, providers, token, body.otp, ip=ip, user_agent=user_agent)
    return {"status": signed.status, "signedAt": signed.signed_at.isoformat() if signed.signed_at else None}
