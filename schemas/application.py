from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class ApplicantSchema(BaseModel):
    name: str = Field(..., min_length=1)
    is_primary: bool = Field(False, alias="isPrimary")
    pan_number: Optional[str] = Field(None, alias="panNumber")
    phone: Optional[str] = None
    email: Optional[str] = None
    date_of_birth: Optional[date] = Field(None, alias="dateOfBirth")
    address: Optional[dict[str, Any]] = None
    details: Optional[dict[str, Any]] = None

    model_config = {"populate_by_name": True}


class ApplicationCreate(BaseModel):
    contact_id: Optional[str] = Field(None, alias="contactId")
    requested_amount: Optional[Decimal] = Field(None, alias="requestedAmount", gt=0)
    tenure_days: Optional[int] = Field(None, alias="tenureDays", gt=0)
    interest_rate: Optional[Decimal] = Field(None, alias="interestRate", ge=0)
    source: str = "direct"
    assigned_to: Optional[str] = Field(None, alias="assignedTo")
    applicants: list[ApplicantSchema] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class StageTransition(BaseModel):
    to_stage: str = Field(..., alias="toStage")
    note: Optional[str] = None

    model_config = {"populate_by_name": True}


class DecisionRequest(BaseModel):
    action: Literal["approve", "reject"]
    approved_amount: Optional[Decimal] = Field(None, alias="approvedAmount")
    comments: Optional[str] = None
    reason: Optional[str] = None

    model_config = {"populate_by_name": True}


class DisbursementInitiate(BaseModel):
    account_number: str = Field(..., alias="accountNumber")
    ifsc_code: str = Field(..., alias="ifscCode")
    beneficiary_name: str = Field(..., alias="beneficiaryName")
    amount: Optional[Decimal] = None

    model_config = {"populate_by_name": True}


class DisbursementRecord(BaseModel):
    amount: Decimal
    utr: str = Field(..., min_length=1)

    model_config = {"populate_by_name": True}


class RepeatLoanCreate(BaseModel):
    requested_amount: Decimal = Field(..., alias="requestedAmount", gt=0)
    tenure_days: int = Field(..., alias="tenureDays", gt=0)
    interest_rate: Optional[Decimal] = Field(None, alias="interestRate", ge=0)

    model_config = {"populate_by_name": True}


class AssignRequest(BaseModel):
    assignee: str = Field(..., min_length=1)


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ScheduleGenerate(BaseModel):
    disbursement_date: Optional[date] = Field(None, alias="disbursementDate")
    installments: int = Field(1, ge=1, le=60)

    model_config = {"populate_by_name": True}
