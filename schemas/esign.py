from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class DocumentGenerate(BaseModel):
    document_type: str = Field(..., alias="documentType")

    model_config = {"populate_by_name": True}


class ESignCreate(BaseModel):
    document_type: str = Field(..., alias="documentType")
    document_id: Optional[str] = Field(None, alias="documentId")
    signer_name: str = Field(..., alias="signerName")
    signer_phone: Optional[str] = Field(None, alias="signerPhone")
    signer_email: Optional[str] = Field(None, alias="signerEmail")
    notification_channel: Literal["sms", "email", "both"] = Field("both", alias="notificationChannel")

    model_config = {"populate_by_name": True}


class ESignInitiate(BaseModel):
    aadhaar_number: str = Field(..., alias="aadhaarNumber")
    consent: bool = False

    model_config = {"populate_by_name": True}


class ESignComplete(BaseModel):
    otp: str

    model_config = {"populate_by_name": True}
