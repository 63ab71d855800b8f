from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class MandateCreate(BaseModel):
    account_number: str = Field(..., alias="accountNumber")
    ifsc_code: str = Field(..., alias="ifscCode")
    account_holder_name: str = Field(..., alias="accountHolderName")
    bank_name: Optional[str] = Field(None, alias="bankName")
    max_amount: Decimal = Field(..., alias="maxAmount")
    frequency: str = "monthly"
    start_date: date = Field(..., alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")

    model_config = {"populate_by_name": True}


class MandateCancel(BaseModel):
    reason: Optional[str] = None


class MandateDebit(BaseModel):
    amount: Decimal
    schedule_id: Optional[str] = Field(None, alias="scheduleId")
    debit_date: Optional[date] = Field(None, alias="debitDate")

    model_config = {"populate_by_name": True}


class CollectionCreate(BaseModel):
    amount: Decimal
    payer_name: str = Field(..., alias="payerName")
    payer_mobile: str = Field(..., alias="payerMobile")
    payer_email: Optional[str] = Field(None, alias="payerEmail")
    schedule_id: Optional[str] = Field(None, alias="scheduleId")
    client_reference_id: Optional[str] = Field(None, alias="clientReferenceId")

    model_config = {"populate_by_name": True}
