from models.application import Applicant, ApprovalDecision, LoanApplication, StageEvent
from models.contacts import Contact, Job
from models.esign import ESignRequest, GeneratedDocument
from models.payments import (
    CollectionTransaction,
    Mandate,
    Payment,
    PaymentTransaction,
    ProcessedEvent,
    RepaymentScheduleEntry,
)
from models.verification import VerificationRecord

__all__ = [
    "LoanApplication",
    "Applicant",
    "ApprovalDecision",
    "StageEvent",
    "VerificationRecord",
    "GeneratedDocument",
    "ESignRequest",
    "Mandate",
    "PaymentTransaction",
    "CollectionTransaction",
    "RepaymentScheduleEntry",
    "Payment",
    "ProcessedEvent",
    "Contact",
    "Job",
]
