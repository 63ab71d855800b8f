from schemas.application import (
    ApplicantSchema,
    ApplicationCreate,
    AssignRequest,
    CancelRequest,
    DecisionRequest,
    DisbursementInitiate,
    DisbursementRecord,
    RepeatLoanCreate,
    ScheduleGenerate,
    StageTransition,
)
from schemas.contacts import BulkDeleteRequest
from schemas.esign import DocumentGenerate, ESignComplete, ESignCreate, ESignInitiate
from schemas.payments import CollectionCreate, MandateCancel, MandateCreate, MandateDebit
from schemas.verification import VerificationRequest

__all__ = [
    "ApplicantSchema",
    "ApplicationCreate",
    "AssignRequest",
    "CancelRequest",
    "DecisionRequest",
    "DisbursementInitiate",
    "DisbursementRecord",
    "RepeatLoanCreate",
    "ScheduleGenerate",
    "StageTransition",
    "BulkDeleteRequest",
    "DocumentGenerate",
    "ESignComplete",
    "ESignCreate",
    "ESignInitiate",
    "CollectionCreate",
    "MandateCancel",
    "MandateCreate",
    "MandateDebit",
    "VerificationRequest",
]
