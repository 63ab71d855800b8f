"""
Verification orchestration.

One VerificationRecord per (application, verification_type), upserted on every
attempt and frozen once it reaches ``success``. Each adapter validates its
payload, calls its gateway and reports a canonical ProviderOutcome; provider
failures are folded into the returned VerificationResult so the record update
is persisted alongside it.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from errors import ConflictError, ProviderError, ProviderUnavailable, StateError, ValidationError
from models import VerificationRecord
from providers import Providers
from providers.base import ProviderOutcome
from services.applications import get_application
from services.permissions import Actor, require
from services.stages import is_terminal
from utils.clock import utcnow
from utils.identifiers import new_id

logger = logging.getLogger(__name__)

PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
AADHAAR_RE = re.compile(r"^\d{12}$")
IFSC_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")
ACCOUNT_RE = re.compile(r"^\d{6,18}$")
OTP_RE = re.compile(r"^\d{6}$")


def normalize_ifsc(ifsc: str) -> str:
    """Upper-case and strip; the 5th character of an IFSC is always digit 0, never letter O."""
    code = (ifsc or "").strip().upper().replace(" ", "")
    if len(code) == 11 and code[4] == "O":
        logger.info("IFSC sanitized: %s -> %s", code, code[:4] + "0" + code[5:])
        code = code[:4] + "0" + code[5:]
    return code


@dataclass
class VerificationResult:
    verification_type: str
    status: str  # pending / success / failed
    record_id: str
    provider_data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None
    message: Optional[str] = None


class VerificationAdapter:
    verification_type = ""
    provider = "internal"

    def prepare(self, payload: dict[str, Any], record: VerificationRecord) -> tuple[dict[str, Any], dict[str, Any]]:
        """Return (call arguments, masked request data to persist)."""
        raise NotImplementedError

    async def call(self, providers: Providers, args: dict[str, Any]) -> ProviderOutcome:
        raise NotImplementedError


class PanAdapter(VerificationAdapter):
    verification_type = "pan"
    provider = "kyc"

    def prepare(self, payload, record):
        pan = str(payload.get("pan_number") or "").strip().upper()
        if not PAN_RE.match(pan):
            raise ValidationError("Invalid PAN format. Expected AAAAA9999A.")
        name = payload.get("name")
        return {"pan_number": pan, "name": name}, {"pan_number": pan, "name": name}

    async def call(self, providers, args):
        return await providers.kyc.verify_pan(args["pan_number"], args.get("name"))


class AadhaarAdapter(VerificationAdapter):
    """Two-step OTP eKYC: first call sends the OTP, second call submits it."""

    verification_type = "aadhaar"
    provider = "kyc"

    def prepare(self, payload, record):
        otp = payload.get("otp")
        if otp is not None:
            otp = str(otp).strip()
            if not OTP_RE.match(otp):
                raise ValidationError("Invalid OTP. Please enter the 6-digit code.")
            ref_id = payload.get("ref_id") or record.provider_ref_id
            if not ref_id:
                raise ValidationError("Request an Aadhaar OTP before submitting one")
            return {"step": "verify", "ref_id": str(ref_id), "otp": otp}, {"step": "verify", "ref_id": str(ref_id)}

        aadhaar = str(payload.get("aadhaar_number") or "").replace(" ", "")
        if not AADHAAR_RE.match(aadhaar):
            raise ValidationError("Invalid Aadhaar number format. Must be 12 digits.")
        if payload.get("consent") is not True:
            raise ValidationError("Consent is required to proceed with Aadhaar verification")
        return (
            {"step": "initiate", "aadhaar_number": aadhaar},
            {"step": "initiate", "aadhaar_last4": aadhaar[-4:], "consent": True},
        )

    async def call(self, providers, args):
        if args["step"] == "initiate":
            return await providers.kyc.send_aadhaar_otp(args["aadhaar_number"], "Loan application KYC")
        return await providers.kyc.verify_aadhaar_otp(args["ref_id"], args["otp"])


class BankAccountAdapter(VerificationAdapter):
    verification_type = "bank_account"
    provider = "kyc"

    def prepare(self, payload, record):
        account = str(payload.get("account_number") or "").strip()
        if not ACCOUNT_RE.match(account):
            raise ValidationError("Account number must be 6 to 18 digits")
        ifsc = normalize_ifsc(str(payload.get("ifsc_code") or ""))
        if not IFSC_RE.match(ifsc):
            raise ValidationError(f"Invalid IFSC code: {ifsc or 'missing'}")
        penny_drop = payload.get("penny_drop", True) is not False
        args = {"account_number": account, "ifsc": ifsc, "penny_drop": penny_drop}
        return args, {"account_number": account, "ifsc_code": ifsc, "verify_type": "pennydrop" if penny_drop else "pennyless"}

    async def call(self, providers, args):
        return await providers.kyc.verify_bank_account(args["account_number"], args["ifsc"], args["penny_drop"])


class VideoKycAdapter(VerificationAdapter):
    """Records an uploaded video KYC recording and the reviewer's outcome."""

    verification_type = "video_kyc"

    def prepare(self, payload, record):
        recording_url = payload.get("recording_url")
        if not recording_url:
            raise ValidationError("recording_url is required for video KYC")
        outcome = str(payload.get("reviewer_outcome") or "approved").lower()
        if outcome not in {"approved", "rejected"}:
            raise ValidationError("reviewer_outcome must be 'approved' or 'rejected'")
        args = {"recording_url": recording_url, "outcome": outcome, "notes": payload.get("notes")}
        return args, dict(args)

    async def call(self, providers, args):
        approved = args["outcome"] == "approved"
        return ProviderOutcome(
            success=approved,
            status=args["outcome"],
            message=None if approved else (args.get("notes") or "Video KYC rejected by reviewer"),
            data={"recording_url": args["recording_url"]},
        )


class FraudCheckAdapter(VerificationAdapter):
    verification_type = "fraud_check"

    def prepare(self, payload, record):
        decision = str(payload.get("decision") or "").lower()
        if decision not in {"clear", "flagged"}:
            raise ValidationError("decision must be 'clear' or 'flagged'")
        risk_score = payload.get("risk_score")
        if risk_score is not None:
            try:
                risk_score = float(risk_score)
            except (TypeError, ValueError):
                raise ValidationError("risk_score must be a number", details={"risk_score": str(risk_score)})
            if not 0 <= risk_score <= 100:
                raise ValidationError("risk_score must be between 0 and 100")
        args = {"decision": decision, "risk_score": risk_score, "signals": list(payload.get("signals") or [])}
        return args, dict(args)

    async def call(self, providers, args):
        clear = args["decision"] == "clear"
        return ProviderOutcome(
            success=clear,
            status=args["decision"],
            message=None if clear else "Fraud signals detected",
            data={"risk_score": args["risk_score"], "signals": args["signals"]},
        )


ADAPTERS: dict[str, VerificationAdapter] = {
    a.verification_type: a
    for a in (PanAdapter(), AadhaarAdapter(), BankAccountAdapter(), VideoKycAdapter(), FraudCheckAdapter())
}
VERIFICATION_TYPES = tuple(ADAPTERS)


async def _get_or_create_record(
    session: AsyncSession,
    application_id: str,
    org_id: str,
    verification_type: str,
    provider: str,
    applicant_id: Optional[str],
) -> VerificationRecord:
    result = await session.execute(
        select(VerificationRecord).where(
            VerificationRecord.application_id == application_id,
            VerificationRecord.verification_type == verification_type,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        record = VerificationRecord(
            id=new_id("ver"),
            application_id=application_id,
            applicant_id=applicant_id,
            org_id=org_id,
            verification_type=verification_type,
            status="pending",
            provider=provider,
            attempts=0,
        )
        session.add(record)
    return record


async def verify(
    session: AsyncSession,
    providers: Providers,
    actor: Actor,
    application_id: str,
    verification_type: str,
    payload: dict[str, Any],
) -> VerificationResult:
    require(actor, "perform_verification")
    adapter = ADAPTERS.get(verification_type)
    if adapter is None:
        raise ValidationError(
            f"Unknown verification type '{verification_type}'",
            details={"allowed": list(VERIFICATION_TYPES)},
        )
    app = await get_application(session, actor.org_id, application_id)
    if is_terminal(app.current_stage):
        raise StateError(f"Application is {app.current_stage}; verification is closed")

    record = await _get_or_create_record(
        session, app.id, app.org_id, verification_type, adapter.provider, payload.get("applicant_id")
    )
    if record.status == "success":
        raise ConflictError(
            f"{verification_type} is already verified",
            details={"verification_id": record.id, "verified_at": record.verified_at.isoformat() if record.verified_at else None},
        )

    args, request_data = adapter.prepare(payload, record)
    record.attempts = (record.attempts or 0) + 1
    record.request_data = request_data
    record.error_kind = None
    record.error_message = None

    try:
        outcome = await adapter.call(providers, args)
    except ProviderUnavailable as e:
        record.status = "pending"
        record.error_kind = "provider_unavailable"
        record.error_message = e.message
        await session.flush()
        return VerificationResult(verification_type, "pending", record.id, error_kind=e.code, message=e.message)
    except ProviderError as e:
        record.status = "pending"
        record.error_kind = "provider_error"
        record.error_message = e.message
        await session.flush()
        return VerificationResult(verification_type, "pending", record.id, error_kind=e.code, message=e.message)

    record.response_data = {"status": outcome.status, "message": outcome.message, **outcome.data}
    if outcome.status == "otp_sent" and outcome.success:
        record.status = "pending"
        record.provider_ref_id = outcome.reference
        await session.flush()
        return VerificationResult(
            verification_type,
            "pending",
            record.id,
            provider_data={"otp_sent": True, "ref_id": outcome.reference},
            message="OTP sent to Aadhaar-linked mobile number",
        )

    if outcome.success:
        record.status = "success"
        record.verified_at = utcnow()
        record.verified_by = actor.user_id
        if outcome.reference:
            record.provider_ref_id = outcome.reference
        await session.flush()
        logger.info("Verification %s succeeded for application %s", verification_type, app.id)
        return VerificationResult(verification_type, "success", record.id, provider_data=outcome.data)

    record.status = "failed"
    record.error_kind = "verification_failed"
    record.error_message = outcome.message
    await session.flush()
    logger.info("Verification %s failed for application %s: %s", verification_type, app.id, outcome.message)
    return VerificationResult(
        verification_type,
        "failed",
        record.id,
        provider_data=outcome.data,
        error_kind="verification_failed",
        message=outcome.message,
    )


async def list_verifications(session: AsyncSession, org_id: str, application_id: str) -> list[VerificationRecord]:
    await get_application(session, org_id, application_id)
    result = await session.execute(
        select(VerificationRecord)
        .where(VerificationRecord.application_id == application_id)
        .order_by(VerificationRecord.verification_type)
    )
    return list(result.scalars().all())


async def missing_verifications(session: AsyncSession, application_id: str) -> list[str]:
    """Required verification types that do not yet have a success record."""
    result = await session.execute(
        select(VerificationRecord.verification_type).where(
            VerificationRecord.application_id == application_id,
            VerificationRecord.status == "success",
        )
    )
    done = set(result.scalars().all())
    return [t for t in settings.required_verification_types if t not in done]
