"""camelCase response bodies for the frontend."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from models import (
    Applicant,
    CollectionTransaction,
    Contact,
    ESignRequest,
    GeneratedDocument,
    Job,
    LoanApplication,
    Mandate,
    PaymentTransaction,
    RepaymentScheduleEntry,
    StageEvent,
    VerificationRecord,
)
from services.esign import signing_url
from services.schedule import effective_status
from utils.clock import as_utc
from utils.case import dict_keys_to_camel


def _iso(value: Optional[datetime | date]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value.isoformat()


def _num(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def applicant_to_response(a: Applicant) -> dict[str, Any]:
    return {
        "id": a.id,
        "isPrimary": a.is_primary,
        "name": a.name,
        "panNumber": a.pan_number,
        "aadhaarLast4": a.aadhaar_last4,
        "phone": a.phone,
        "email": a.email,
        "dateOfBirth": _iso(a.date_of_birth),
        "address": dict_keys_to_camel(a.address) if a.address else None,
        "details": dict_keys_to_camel(a.details) if a.details else None,
    }


def application_to_response(app: LoanApplication, include_applicants: bool = True) -> dict[str, Any]:
    body = {
        "id": app.id,
        "applicationNumber": app.application_number,
        "contactId": app.contact_id,
        "currentStage": app.current_stage,
        "status": app.status,
        "source": app.source,
        "requestedAmount": _num(app.requested_amount),
        "approvedAmount": _num(app.approved_amount),
        "disbursedAmount": _num(app.disbursed_amount),
        "tenureDays": app.tenure_days,
        "interestRate": _num(app.interest_rate),
        "assignedTo": app.assigned_to,
        "approvedBy": app.approved_by,
        "parentApplicationId": app.parent_application_id,
        "rejectionReason": app.rejection_reason,
        "cancellationReason": app.cancellation_reason,
        "disbursementUtr": app.disbursement_utr,
        "sanctionedAt": _iso(app.sanctioned_at),
        "disbursedAt": _iso(app.disbursed_at),
        "closedAt": _iso(app.closed_at),
        "createdAt": _iso(app.created_at),
        "updatedAt": _iso(app.updated_at),
    }
    if include_applicants:
        body["applicants"] = [applicant_to_response(a) for a in app.applicants]
    return body


def stage_event_to_response(e: StageEvent) -> dict[str, Any]:
    return {
        "id": e.id,
        "fromStage": e.from_stage,
        "toStage": e.to_stage,
        "actorId": e.actor_id,
        "note": e.note,
        "createdAt": _iso(e.created_at),
    }


def verification_to_response(v: VerificationRecord) -> dict[str, Any]:
    return {
        "id": v.id,
        "applicationId": v.application_id,
        "verificationType": v.verification_type,
        "status": v.status,
        "provider": v.provider,
        "providerRefId": v.provider_ref_id,
        "requestData": dict_keys_to_camel(v.request_data) if v.request_data else None,
        "responseData": dict_keys_to_camel(v.response_data) if v.response_data else None,
        "errorKind": v.error_kind,
        "errorMessage": v.error_message,
        "attempts": v.attempts,
        "verifiedBy": v.verified_by,
        "verifiedAt": _iso(v.verified_at),
    }


def document_to_response(d: GeneratedDocument) -> dict[str, Any]:
    return {
        "id": d.id,
        "applicationId": d.application_id,
        "documentType": d.document_type,
        "documentNumber": d.document_number,
        "content": dict_keys_to_camel(d.content) if d.content else None,
        "customerSigned": d.customer_signed,
        "signedAt": _iso(d.signed_at),
        "generatedAt": _iso(d.generated_at),
    }


def esign_to_response(r: ESignRequest, include_token: bool = False) -> dict[str, Any]:
    body = {
        "id": r.id,
        "applicationId": r.application_id,
        "documentId": r.document_id,
        "documentType": r.document_type,
        "signerName": r.signer_name,
        "notificationChannel": r.notification_channel,
        "status": r.status,
        "tokenExpiresAt": _iso(r.token_expires_at),
        "signerAadhaarLast4": r.signer_aadhaar_last4,
        "viewedAt": _iso(r.viewed_at),
        "notificationSentAt": _iso(r.notification_sent_at),
        "signedAt": _iso(r.signed_at),
        "failureReason": r.failure_reason,
        "auditLog": r.audit_log or [],
    }
    if include_token:
        body["accessToken"] = r.access_token
        body["signingUrl"] = signing_url(r.access_token)
    return body


def mandate_to_response(m: Mandate) -> dict[str, Any]:
    return {
        "id": m.id,
        "applicationId": m.application_id,
        "mandateReference": m.mandate_reference,
        "providerMandateId": m.provider_mandate_id,
        "umrn": m.umrn,
        "status": m.status,
        "maxAmount": _num(m.max_amount),
        "frequency": m.frequency,
        "startDate": _iso(m.start_date),
        "endDate": _iso(m.end_date),
        "accountNumber": m.account_number,
        "ifscCode": m.ifsc_code,
        "accountHolderName": m.account_holder_name,
        "bankName": m.bank_name,
        "registrationUrl": m.registration_url,
        "rejectionReason": m.rejection_reason,
        "createdAt": _iso(m.created_at),
    }


def bank_transaction_to_response(t: PaymentTransaction) -> dict[str, Any]:
    return {
        "id": t.id,
        "applicationId": t.application_id,
        "mandateId": t.mandate_id,
        "scheduleId": t.schedule_id,
        "transactionType": t.transaction_type,
        "paymentMode": t.payment_mode,
        "referenceId": t.reference_id,
        "amount": _num(t.amount),
        "status": t.status,
        "utrNumber": t.utr_number,
        "failureReason": t.failure_reason,
        "createdAt": _iso(t.created_at),
    }


def collection_to_response(t: CollectionTransaction) -> dict[str, Any]:
    return {
        "id": t.id,
        "applicationId": t.application_id,
        "scheduleId": t.schedule_id,
        "clientReferenceId": t.client_reference_id,
        "providerTransactionId": t.provider_transaction_id,
        "requestAmount": _num(t.request_amount),
        "transactionAmount": _num(t.transaction_amount),
        "status": t.status,
        "statusDescription": t.status_description,
        "paymentLink": t.payment_link,
        "payeeVpa": t.payee_vpa,
        "payerVpa": t.payer_vpa,
        "utr": t.utr,
        "expiresAt": _iso(t.expires_at),
        "createdAt": _iso(t.created_at),
    }


def schedule_to_response(e: RepaymentScheduleEntry) -> dict[str, Any]:
    return {
        "id": e.id,
        "emiNumber": e.emi_number,
        "dueDate": _iso(e.due_date),
        "principalAmount": _num(e.principal_amount),
        "interestAmount": _num(e.interest_amount),
        "totalEmi": _num(e.total_emi),
        "amountPaid": _num(e.amount_paid),
        "principalPaid": _num(e.principal_paid),
        "interestPaid": _num(e.interest_paid),
        "status": effective_status(e),
        "paymentDate": _iso(e.payment_date),
        "nachDebitReference": e.nach_debit_reference,
        "nachDebitStatus": e.nach_debit_status,
    }


def contact_to_response(c: Contact) -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "phone": c.phone,
        "email": c.email,
        "company": c.company,
        "extra": c.extra,
        "importJobId": c.import_job_id,
        "createdAt": _iso(c.created_at),
    }


def job_to_response(j: Job) -> dict[str, Any]:
    return {
        "id": j.id,
        "kind": j.kind,
        "status": j.status,
        "cancelRequested": j.cancel_requested,
        "totalRows": j.total_rows,
        "processedRows": j.processed_rows,
        "succeededRows": j.succeeded_rows,
        "failedRows": j.failed_rows,
        "errors": j.errors or [],
        "result": dict_keys_to_camel(j.result) if j.result else None,
        "errorMessage": j.error_message,
        "startedAt": _iso(j.started_at),
        "completedAt": _iso(j.completed_at),
        "createdAt": _iso(j.created_at),
    }
