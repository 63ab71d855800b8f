"""
Payment gateways: NACH mandate registration/debit and UPI collection.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from providers.base import ProviderClient, ProviderOutcome
from utils.case import coalesce

logger = logging.getLogger(__name__)

# Collection gateway status codes
COLLECTION_ACCEPTED = {"NP2000", "NP2001"}
COLLECTION_DUPLICATE = "NP4008"

MANDATE_STATUS_MAP = {
    "APPROVED": "active",
    "ACTIVE": "active",
    "REJECTED": "rejected",
    "CANCELLED": "cancelled",
    "SUBMITTED": "submitted",
}

BANK_STATUS_MAP = {
    "SUCCESS": "success",
    "COMPLETED": "success",
    "FAILED": "failed",
    "REJECTED": "failed",
    "REVERSED": "failed",
    "PENDING": "processing",
    "PROCESSING": "processing",
    "IN_PROGRESS": "processing",
    "SCHEDULED": "scheduled",
}


def map_mandate_status(provider_status: Optional[str]) -> str:
    return MANDATE_STATUS_MAP.get((provider_status or "").upper(), "pending")


def map_bank_status(provider_status: Optional[str]) -> str:
    status = (provider_status or "").upper()
    return BANK_STATUS_MAP.get(status, status.lower() or "processing")


class NachGateway(ProviderClient):
    name = "nach"

    async def register_mandate(
        self,
        *,
        mandate_reference: str,
        account_number: str,
        ifsc_code: str,
        account_holder_name: str,
        max_amount: Decimal,
        frequency: str,
        start_date: date,
        end_date: Optional[date],
        purpose: str,
    ) -> ProviderOutcome:
        resp = await self._post(
            "/v1/nach/mandate/register",
            {
                "mandate_id": mandate_reference,
                "account_number": account_number,
                "ifsc_code": ifsc_code,
                "account_holder_name": account_holder_name,
                "max_amount": str(max_amount),
                "frequency": frequency.upper(),
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat() if end_date else None,
                "purpose": purpose,
            },
        )
        status = str(coalesce(resp.data, "status", default="") or "").upper()
        accepted = resp.ok and status not in {"REJECTED", "FAILED"}
        return ProviderOutcome(
            success=accepted,
            reference=coalesce(resp.data, "mandate_id", "reference_id", default=mandate_reference),
            status=status or "SUBMITTED",
            message=coalesce(resp.data, "message", "error"),
            data={"registration_url": coalesce(resp.data, "registration_url", "redirect_url")},
        )

    async def debit(
        self,
        *,
        reference_id: str,
        umrn: Optional[str],
        amount: Decimal,
        debit_date: date,
        remarks: str,
    ) -> ProviderOutcome:
        resp = await self._post(
            "/v1/nach/debit",
            {
                "reference_id": reference_id,
                "umrn": umrn,
                "amount": str(amount),
                "debit_date": debit_date.isoformat(),
                "remarks": remarks,
            },
        )
        status = str(coalesce(resp.data, "status", default="") or "").upper()
        accepted = resp.ok and status not in {"REJECTED", "FAILED"}
        return ProviderOutcome(
            success=accepted,
            reference=reference_id,
            status=status or "SCHEDULED",
            message=coalesce(resp.data, "message", "error"),
            data={"scheduled_date": coalesce(resp.data, "scheduled_date", default=debit_date.isoformat())},
        )

    async def transfer(
        self,
        *,
        reference_id: str,
        amount: Decimal,
        account_number: str,
        ifsc_code: str,
        beneficiary_name: str,
    ) -> ProviderOutcome:
        resp = await self._post(
            "/v1/payments/transfer",
            {
                "reference_id": reference_id,
                "amount": str(amount),
                "beneficiary_account": account_number,
                "beneficiary_ifsc": ifsc_code,
                "beneficiary_name": beneficiary_name,
                "mode": "IMPS",
            },
        )
        status = str(coalesce(resp.data, "status", default="") or "").upper()
        accepted = resp.ok and status not in {"REJECTED", "FAILED"}
        return ProviderOutcome(
            success=accepted,
            reference=reference_id,
            status=status or "PROCESSING",
            message=coalesce(resp.data, "message", "error"),
            data={"utr": coalesce(resp.data, "utr_number", "utr")},
        )


class CollectionGateway(ProviderClient):
    name = "collection"

    async def initiate(
        self,
        *,
        client_reference_id: str,
        customer_unique_id: str,
        amount: Decimal,
        payer_name: str,
        payer_mobile: str,
        payer_email: Optional[str],
        expiry_minutes: int,
        remarks: str,
    ) -> ProviderOutcome:
        payload: dict[str, Any] = {
            "client_reference_id": client_reference_id,
            "customer_unique_id": customer_unique_id,
            "amount": str(amount),
            "payer_name": payer_name or "Customer",
            "payer_mobile": payer_mobile,
            "payer_email": payer_email or "",
            "mode": "DYNAMIC_QR",
            "expiry_minutes": expiry_minutes,
            "remarks": remarks,
        }
        resp = await self._post("/collect360/v1/initiate_transaction", payload)
        status_code = coalesce(resp.data, "status_code", "code")
        if status_code == COLLECTION_DUPLICATE:
            return ProviderOutcome(success=False, status="DUPLICATE", message="Duplicate request", data={"duplicate": True})
        accepted = resp.ok and status_code in COLLECTION_ACCEPTED
        return ProviderOutcome(
            success=accepted,
            reference=coalesce(resp.data, "nupay_reference_id", "reference_id"),
            status=status_code,
            message=None if accepted else coalesce(resp.data, "message", default="Failed to create collection request"),
            data={
                "transaction_id": coalesce(resp.data, "transaction_id"),
                "payment_link": coalesce(resp.data, "payment_link", "qr_link"),
                "payee_vpa": coalesce(resp.data, "payee_vpa"),
                "request": payload,
                "response": resp.raw,
            },
        )

    async def enquire(self, client_reference_id: str) -> ProviderOutcome:
        resp = await self._get(f"/collect360/v1/transactionEnquiry/{client_reference_id}")
        status_code = coalesce(resp.data, "status_code", "code")
        if not resp.ok or status_code != "NP2000":
            return ProviderOutcome(
                success=False,
                status=None,
                message=coalesce(resp.data, "message", default="Status enquiry failed"),
            )
        return ProviderOutcome(
            success=True,
            reference=client_reference_id,
            status=coalesce(resp.data, "transaction_status"),
            message=coalesce(resp.data, "status_description"),
            data=extract_collection_fields(resp.data),
        )


def extract_collection_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Canonical collection event fields from an enquiry answer or a webhook body."""
    return {
        "client_reference_id": coalesce(data, "client_reference_id"),
        "transaction_status": coalesce(data, "transaction_status", "status"),
        "status_description": coalesce(data, "status_description", "message"),
        "transaction_id": coalesce(data, "transaction_id", "npci_transaction_id"),
        "npci_transaction_id": coalesce(data, "npci_transaction_id"),
        "utr": coalesce(data, "utr", "rrn"),
        "amount": coalesce(data, "transaction_amount", "amount"),
        "payer_vpa": coalesce(data, "payer_vpa"),
        "payer_name": coalesce(data, "payer_name"),
    }
