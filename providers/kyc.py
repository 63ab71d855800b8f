"""
KYC gateway: PAN lookup, Aadhaar OKYC OTP, and bank account checks.

The same Aadhaar OTP session is used by verification and by document eSign.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Optional

from errors import ProviderError
from providers.base import ProviderClient, ProviderOutcome, ProviderResponse
from utils.case import coalesce

logger = logging.getLogger(__name__)

AUTH_FAILURE_STATUS = {401, 403}
TOKEN_REFRESH_MARGIN_SECONDS = 60


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "y", "yes", "valid", "success", "1"}
    return bool(value)


def _message(resp: ProviderResponse, fallback: str) -> str:
    return coalesce(resp.data, "message", "error", "status_description", default=fallback)


class KycGateway(ProviderClient):
    name = "kyc"

    def __init__(self, base_url: str, api_key: str = "", api_secret: str = "", **kwargs):
        super().__init__(base_url, api_key, **kwargs)
        self.api_secret = api_secret
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[float] = None

    def _token_is_fresh(self) -> bool:
        if self._access_token is None:
            return False
        return self._token_expires_at is None or time.monotonic() < self._token_expires_at

    async def _authenticate(self) -> None:
        resp = await self._post(
            "/authenticate",
            {},
            headers={"x-api-secret": self.api_secret, "x-api-version": "2.0"},
        )
        token = coalesce(resp.data, "access_token", "token")
        if not resp.ok or not token:
            logger.error("KYC authentication failed: %s", resp.raw)
            raise ProviderError("Failed to authenticate with verification service", details={"provider": self.name})
        self._access_token = token
        expires_in = coalesce(resp.data, "expires_in")
        try:
            self._token_expires_at = time.monotonic() + float(expires_in) - TOKEN_REFRESH_MARGIN_SECONDS
        except (TypeError, ValueError):
            self._token_expires_at = None

    async def _authorized_headers(self) -> dict[str, str]:
        if not self._token_is_fresh():
            await self._authenticate()
        return {"Authorization": self._access_token, "x-api-version": "2.0"}

    async def _authorized_post(self, path: str, payload: dict[str, Any]) -> ProviderResponse:
        """POST with the access token, re-authenticating once if the gateway refuses it."""
        resp = await self._post(path, payload, headers=await self._authorized_headers())
        if resp.status_code == 401:
            logger.info("KYC access token refused on %s; re-authenticating", path)
            self._access_token = None
            resp = await self._post(path, payload, headers=await self._authorized_headers())
        if resp.status_code in AUTH_FAILURE_STATUS:
            logger.error("KYC gateway refused credentials on %s: %s", path, resp.raw)
            raise ProviderError(
                "Verification service refused our credentials",
                details={"provider": self.name, "provider_status": resp.status_code},
            )
        return resp

    async def verify_pan(self, pan_number: str, name: Optional[str] = None) -> ProviderOutcome:
        resp = await self._authorized_post(
            "/kyc/pan/verify",
            {
                "pan": pan_number,
                "name_as_per_pan": name or "",
                "consent": "Y",
                "reason": "Loan application verification",
            },
        )
        status = str(coalesce(resp.data, "status", default="") or "")
        valid = resp.ok and (
            _truthy(coalesce(resp.data, "is_valid", "valid", default=False)) or status.lower() == "valid"
        )
        return ProviderOutcome(
            success=valid,
            reference=coalesce(resp.data, "reference_id", "transaction_id"),
            status=status or ("valid" if valid else "invalid"),
            message=None if valid else _message(resp, "PAN verification failed"),
            data={
                "name": coalesce(resp.data, "name", "full_name", "registered_name"),
                "pan_status": status or None,
                "name_match": coalesce(resp.data, "name_as_per_pan_match", "name_match"),
                "category": coalesce(resp.data, "category"),
            },
        )

    async def send_aadhaar_otp(self, aadhaar_number: str, reason: str) -> ProviderOutcome:
        resp = await self._authorized_post(
            "/kyc/aadhaar/okyc/otp",
            {"aadhaar_number": aadhaar_number, "consent": "y", "reason": reason},
        )
        ref_id = coalesce(resp.data, "ref_id", "reference_id", "request_id")
        if ref_id is not None:
            ref_id = str(ref_id)
        return ProviderOutcome(
            success=resp.ok and bool(ref_id),
            reference=ref_id,
            status="otp_sent" if ref_id else "failed",
            message=None if ref_id else _message(resp, "Failed to send OTP"),
        )

    async def verify_aadhaar_otp(self, ref_id: str, otp: str) -> ProviderOutcome:
        resp = await self._authorized_post(
            "/kyc/aadhaar/okyc/otp/verify",
            {"ref_id": ref_id, "otp": otp},
        )
        status = str(coalesce(resp.data, "status", default="") or "")
        valid = resp.ok and (status.upper() == "VALID" or coalesce(resp.data, "code") == 200)
        address = coalesce(resp.data, "full_address", "address")
        if isinstance(address, dict):
            address = coalesce(address, "combined", "full_address") or address
        return ProviderOutcome(
            success=valid,
            reference=ref_id,
            status=status or ("VALID" if valid else "INVALID"),
            message=None if valid else _message(resp, "OTP verification failed"),
            data={
                "name": coalesce(resp.data, "name", "full_name"),
                "date_of_birth": coalesce(resp.data, "date_of_birth", "dob"),
                "gender": coalesce(resp.data, "gender"),
                "address": address,
            },
        )

    async def verify_bank_account(self, account_number: str, ifsc: str, penny_drop: bool = True) -> ProviderOutcome:
        path = "/bank/penny-drop" if penny_drop else "/bank/account/verify"
        resp = await self._authorized_post(
            path,
            {
                "account_number": account_number,
                "ifsc": ifsc,
                "consent": "Y",
                "reason": "Loan application verification",
            },
        )
        verified = resp.ok and _truthy(coalesce(resp.data, "verified", "account_exists", "is_valid", default=False))
        return ProviderOutcome(
            success=verified,
            reference=coalesce(resp.data, "reference_id", "utr"),
            status="verified" if verified else "failed",
            message=None if verified else _message(resp, "Bank account could not be verified"),
            data={
                "account_holder_name": coalesce(resp.data, "account_holder_name", "name_at_bank", "beneficiary_name"),
                "bank_name": coalesce(resp.data, "bank_name"),
                "branch_name": coalesce(resp.data, "branch_name", "branch"),
                "ifsc": ifsc,
            },
        )
