"""
Document generation and Aadhaar OTP eSign.

A signing request is addressed by an unguessable access token and moves
created -> otp_sent -> signed, or to expired/failed. The audit log is
append-only: each step stores a new list built from the old one.
"""
from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from errors import (
    AlreadySigned,
    ExpiredResourceError,
    NotFoundError,
    ProviderError,
    StateError,
    ValidationError,
    VerificationFailed,
)
from models import ESignRequest, GeneratedDocument, LoanApplication
from providers import Providers
from services import stages
from services.applications import get_application
from services.permissions import Actor, require
from utils.clock import as_utc, utcnow
from utils.identifiers import new_access_token, new_id, new_reference

logger = logging.getLogger(__name__)

AADHAAR_RE = re.compile(r"^\d{12}$")
DOCUMENT_TYPES = {"sanction_letter", "loan_agreement", "kfs"}
CHANNELS = {"sms", "email", "both"}
OPEN_STATUSES = {"created", "otp_sent"}

# Stages from which each document may be generated
_DOCUMENT_STAGES = {
    "sanction_letter": {stages.SANCTIONED, stages.DISBURSED},
    "loan_agreement": {stages.SANCTIONED, stages.DISBURSED},
    "kfs": {stages.APPROVAL, stages.SANCTIONED},
}


def _audit(request: ESignRequest, action: str, **extra: Any) -> None:
    entry = {"action": action, "timestamp": utcnow().isoformat(), **extra}
    request.audit_log = list(request.audit_log or []) + [entry]


def signing_url(token: str) -> str:
    return f"{settings.app_url.rstrip('/')}/esign/{token}"


async def generate_document(
    session: AsyncSession,
    actor: Actor,
    application_id: str,
    document_type: str,
) -> GeneratedDocument:
    require(actor, "generate_sanction")
    if document_type not in DOCUMENT_TYPES:
        raise ValidationError(f"Unknown document type '{document_type}'", details={"allowed": sorted(DOCUMENT_TYPES)})
    app = await get_application(session, actor.org_id, application_id)
    if app.current_stage not in _DOCUMENT_STAGES[document_type]:
        raise StateError(
            f"A {document_type.replace('_', ' ')} cannot be generated at stage {app.current_stage}",
            details={"current_stage": app.current_stage},
        )
    primary = next((a for a in app.applicants if a.is_primary), None)
    doc = GeneratedDocument(
        id=new_id("doc"),
        application_id=app.id,
        org_id=app.org_id,
        document_type=document_type,
        document_number=new_reference(document_type[:3].upper()),
        content={
            "application_number": app.application_number,
            "borrower_name": primary.name if primary else None,
            "approved_amount": str(app.approved_amount) if app.approved_amount is not None else None,
            "tenure_days": app.tenure_days,
            "interest_rate": str(app.interest_rate) if app.interest_rate is not None else None,
        },
        customer_signed=False,
        generated_by=actor.user_id,
        generated_at=utcnow(),
    )
    session.add(doc)
    await session.flush()
    return doc


async def _notify_signer(providers: Providers, request: ESignRequest, app: LoanApplication) -> bool:
    url = signing_url(request.access_token)
    label = request.document_type.replace("_", " ")
    sent = False
    if request.notification_channel in {"sms", "both"} and request.signer_phone:
        message = f"Dear {request.signer_name}, please review and eSign your {label} for application {app.application_number}: {url}"
        sent = await providers.notifier.send_sms(request.signer_phone, message, request.org_id) or sent
    if request.notification_channel in {"email", "both"} and request.signer_email:
        html = (
            f"<p>Dear {request.signer_name},</p>"
            f"<p>Your {label} for application {app.application_number} is ready for signature.</p>"
            f'<p><a href="{url}">Review and sign</a>. This link expires in {settings.esign_token_ttl_hours} hours.</p>'
        )
        sent = await providers.notifier.send_email(request.signer_email, f"Please sign your {label}", html, request.org_id) or sent
    return sent


async def create_esign_request(
    session: AsyncSession,
    providers: Providers,
    actor: Actor,
    application_id: str,
    document_type: str,
    signer_name: str,
    signer_phone: Optional[str] = None,
    signer_email: Optional[str] = None,
    channel: str = "both",
    document_id: Optional[str] = None,
) -> ESignRequest:
    require(actor, "generate_sanction")
    if document_type not in DOCUMENT_TYPES:
        raise ValidationError(f"Unknown document type '{document_type}'", details={"allowed": sorted(DOCUMENT_TYPES)})
    if channel not in CHANNELS:
        raise ValidationError(f"Unknown notification channel '{channel}'", details={"allowed": sorted(CHANNELS)})
    if not signer_name or not signer_name.strip():
        raise ValidationError("Signer name is required")
    if channel == "sms" and not signer_phone:
        raise ValidationError("Signer phone is required for SMS delivery")
    if channel == "email" and not signer_email:
        raise ValidationError("Signer email is required for email delivery")
    if channel == "both" and not (signer_phone or signer_email):
        raise ValidationError("Signer phone or email is required")
    app = await get_application(session, actor.org_id, application_id)
    if stages.is_terminal(app.current_stage):
        raise StateError(f"Application is {app.current_stage}", details={"current_stage": app.current_stage})

    if document_id:
        doc = await session.get(GeneratedDocument, document_id)
        if doc is None or doc.application_id != app.id:
            raise NotFoundError("Document not found", details={"document_id": document_id})

    previous = await session.execute(
        select(ESignRequest).where(
            ESignRequest.application_id == app.id,
            ESignRequest.document_type == document_type,
            ESignRequest.status.in_(OPEN_STATUSES),
        )
    )
    for old in previous.scalars().all():
        old.status = "expired"
        _audit(old, "superseded", by=actor.user_id)

    now = utcnow()
    request = ESignRequest(
        id=new_id("esg"),
        application_id=app.id,
        document_id=document_id,
        org_id=app.org_id,
        document_type=document_type,
        signer_name=signer_name.strip(),
        signer_phone=signer_phone,
        signer_email=signer_email,
        notification_channel=channel,
        access_token=new_access_token(),
        token_expires_at=now + timedelta(hours=settings.esign_token_ttl_hours),
        status="created",
        otp_failures=0,
        audit_log=[{"action": "created", "timestamp": now.isoformat(), "by": actor.user_id}],
        created_by=actor.user_id,
    )
    session.add(request)
    await session.flush()

    if await _notify_signer(providers, request, app):
        request.notification_sent_at = utcnow()
        _audit(request, "notification_sent", channel=channel)
        await session.flush()
    return request


async def _load_by_token(session: AsyncSession, token: str) -> ESignRequest:
    result = await session.execute(select(ESignRequest).where(ESignRequest.access_token == token))
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError("Invalid or unknown signing link")
    return request


async def _ensure_signable(session: AsyncSession, request: ESignRequest) -> None:
    if request.status == "signed":
        raise AlreadySigned("Document has already been signed", details={"signed_at": as_utc(request.signed_at).isoformat() if request.signed_at else None})
    if request.status == "expired":
        raise ExpiredResourceError("Signing link has expired")
    if request.status == "failed":
        raise StateError("Signing request has failed; ask for a new link", details={"status": request.status})
    if as_utc(request.token_expires_at) <= utcnow():
        request.status = "expired"
        _audit(request, "expired")
        # committed before raising; get_db rolls back on errors
        await session.commit()
        raise ExpiredResourceError("Signing link has expired")


async def view_esign_request(session: AsyncSession, token: str) -> dict[str, Any]:
    request = await _load_by_token(session, token)
    app = await session.get(LoanApplication, request.application_id)
    summary = {
        "request": request,
        "application_number": app.application_number if app else None,
        "approved_amount": app.approved_amount if app else None,
        "already_signed": request.status == "signed",
        "expired": False,
    }
    if request.status == "signed":
        return summary
    if request.status == "expired" or as_utc(request.token_expires_at) <= utcnow():
        if request.status != "expired":
            request.status = "expired"
            _audit(request, "expired")
        summary["expired"] = True
        await session.flush()
        return summary
    if request.viewed_at is None:
        request.viewed_at = utcnow()
        _audit(request, "viewed")
        await session.flush()
    return summary


async def initiate_signing(
    session: AsyncSession,
    providers: Providers,
    token: str,
    aadhaar_number: str,
    consent: bool,
) -> ESignRequest:
    request = await _load_by_token(session, token)
    await _ensure_signable(session, request)
    if consent is not True:
        raise ValidationError("Consent is required to proceed with eSign")
    aadhaar = (aadhaar_number or "").replace(" ", "")
    if not AADHAAR_RE.match(aadhaar):
        raise ValidationError("Invalid Aadhaar number format. Must be 12 digits.")

    outcome = await providers.kyc.send_aadhaar_otp(aadhaar, "Document eSign")
    if not outcome.success:
        raise ProviderError(outcome.message or "Failed to send OTP")

    request.status = "otp_sent"
    request.provider_ref_id = outcome.reference
    request.signer_aadhaar_last4 = aadhaar[-4:]
    _audit(request, "otp_sent", aadhaar_last4=aadhaar[-4:])
    await session.flush()
    return request


async def complete_signing(
    session: AsyncSession,
    providers: Providers,
    token: str,
    otp: str,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> ESignRequest:
    request = await _load_by_token(session, token)
    await _ensure_signable(session, request)
    if request.status != "otp_sent" or not request.provider_ref_id:
        raise StateError("Request an OTP before completing the signature", details={"status": request.status})
    otp = (otp or "").strip()
    if not re.match(r"^\d{6}$", otp):
        raise ValidationError("Invalid OTP. Please enter the 6-digit code.")

    outcome = await providers.kyc.verify_aadhaar_otp(request.provider_ref_id, otp)
    if not outcome.success:
        request.otp_failures = (request.otp_failures or 0) + 1
        _audit(request, "otp_failed", attempt=request.otp_failures)
        if request.otp_failures >= settings.esign_max_otp_attempts:
            request.status = "failed"
            request.failure_reason = "Too many incorrect OTP attempts"
            _audit(request, "failed", reason=request.failure_reason)
        await session.commit()
        raise VerificationFailed(
            outcome.message or "OTP verification failed",
            details={"attempts_remaining": max(settings.esign_max_otp_attempts - request.otp_failures, 0)},
        )

    now = utcnow()
    request.status = "signed"
    request.signed_at = now
    request.signed_from_ip = ip
    _audit(request, "signed", ip=ip, user_agent=user_agent)

    doc = None
    if request.document_id:
        doc = await session.get(GeneratedDocument, request.document_id)
    if doc is None:
        result = await session.execute(
            select(GeneratedDocument)
            .where(
                GeneratedDocument.application_id == request.application_id,
                GeneratedDocument.document_type == request.document_type,
            )
            .order_by(GeneratedDocument.generated_at.desc())
            .limit(1)
        )
        doc = result.scalar_one_or_none()
    if doc is not None:
        doc.customer_signed = True
        doc.signed_at = now
    else:
        logger.warning("Signed request %s has no generated document to mark", request.id)
    await session.flush()
    logger.info("eSign request %s signed", request.id)
    return request
