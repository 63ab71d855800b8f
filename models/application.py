from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.orm import relationship

from database import Base


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        UniqueConstraint("org_id", "application_number", name="uq_application_number"),
    )

    id = Column(String(64), primary_key=True, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    application_number = Column(String(32), nullable=False)
    contact_id = Column(String(64), ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True, index=True)
    current_stage = Column(String(32), nullable=False, default="lead", index=True)
    status = Column(String(32), nullable=False, default="draft", index=True)
    source = Column(String(32), nullable=False, default="direct")

    requested_amount = Column(Numeric(12, 2), nullable=True)
    approved_amount = Column(Numeric(12, 2), nullable=True)
    disbursed_amount = Column(Numeric(12, 2), nullable=True)
    tenure_days = Column(Integer, nullable=True)
    # Daily flat rate in percent (1 == 1% per day)
    interest_rate = Column(Numeric(6, 3), nullable=True)

    assigned_to = Column(String(64), nullable=True, index=True)
    approved_by = Column(String(64), nullable=True)
    parent_application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="SET NULL"), nullable=True, index=True)
    rejection_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    import_job_id = Column(String(64), nullable=True, index=True)

    sanctioned_at = Column(DateTime(timezone=True), nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    disbursement_utr = Column(String(64), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    applicants = relationship(
        "Applicant",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="Applicant.created_at",
    )


class Applicant(Base):
    __tablename__ = "loan_applicants"

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    is_primary = Column(Boolean, nullable=False, default=False)
    name = Column(String(256), nullable=False)
    pan_number = Column(String(10), nullable=True)
    aadhaar_last4 = Column(String(4), nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(256), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    address = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    application = relationship("LoanApplication", back_populates="applicants")


class ApprovalDecision(Base):
    __tablename__ = "loan_approvals"

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    approver_id = Column(String(64), nullable=False)
    approver_role = Column(String(32), nullable=False)
    decision = Column(String(16), nullable=False)  # approved / rejected
    approved_amount = Column(Numeric(12, 2), nullable=True)
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class StageEvent(Base):
    """Append-only stage history."""

    __tablename__ = "loan_stage_events"

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    from_stage = Column(String(32), nullable=True)
    to_stage = Column(String(32), nullable=False)
    actor_id = Column(String(64), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
