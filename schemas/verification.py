from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class VerificationRequest(BaseModel):
    """Type-specific fields; each adapter validates the ones it needs."""

    applicant_id: Optional[str] = Field(None, alias="applicantId")
    pan_number: Optional[str] = Field(None, alias="panNumber")
    name: Optional[str] = None
    aadhaar_number: Optional[str] = Field(None, alias="aadhaarNumber")
    consent: Optional[bool] = None
    otp: Optional[str] = None
    ref_id: Optional[str] = Field(None, alias="refId")
    account_number: Optional[str] = Field(None, alias="accountNumber")
    ifsc_code: Optional[str] = Field(None, alias="ifscCode")
    penny_drop: bool = Field(True, alias="pennyDrop")
    recording_url: Optional[str] = Field(None, alias="recordingUrl")
    reviewer_outcome: Optional[str] = Field(None, alias="reviewerOutcome")
    notes: Optional[str] = None
    decision: Optional[str] = None
    risk_score: Optional[float] = Field(None, alias="riskScore")
    signals: Optional[list[Any]] = None

    model_config = {"populate_by_name": True}
