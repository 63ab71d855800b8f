from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func

from database import Base


class VerificationRecord(Base):
    __tablename__ = "loan_verifications"
    __table_args__ = (
        UniqueConstraint("application_id", "verification_type", name="uq_verification_per_type"),
    )

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    applicant_id = Column(String(64), ForeignKey("loan_applicants.id", ondelete="SET NULL"), nullable=True)
    org_id = Column(String(64), nullable=False, index=True)
    verification_type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="pending", index=True)
    provider = Column(String(32), nullable=True)
    provider_ref_id = Column(String(128), nullable=True)
    # Masked request fields only; never raw Aadhaar numbers
    request_data = Column(JSON, nullable=True)
    response_data = Column(JSON, nullable=True)
    error_kind = Column(String(32), nullable=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    verified_by = Column(String(64), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
