from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, func

from database import Base


class GeneratedDocument(Base):
    __tablename__ = "loan_generated_documents"

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    document_type = Column(String(64), nullable=False)  # sanction_letter, loan_agreement, ...
    document_number = Column(String(64), nullable=True)
    content = Column(JSON, nullable=True)
    customer_signed = Column(Boolean, nullable=False, default=False)
    signed_at = Column(DateTime(timezone=True), nullable=True)
    generated_by = Column(String(64), nullable=True)
    generated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ESignRequest(Base):
    __tablename__ = "document_esign_requests"

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id = Column(String(64), ForeignKey("loan_generated_documents.id", ondelete="SET NULL"), nullable=True)
    org_id = Column(String(64), nullable=False, index=True)
    document_type = Column(String(64), nullable=False)

    signer_name = Column(String(256), nullable=False)
    signer_phone = Column(String(20), nullable=True)
    signer_email = Column(String(256), nullable=True)
    notification_channel = Column(String(8), nullable=False, default="both")

    access_token = Column(String(128), nullable=False, unique=True, index=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(16), nullable=False, default="created", index=True)
    provider_ref_id = Column(String(128), nullable=True)
    signer_aadhaar_last4 = Column(String(4), nullable=True)
    otp_failures = Column(Integer, nullable=False, default=0)

    viewed_at = Column(DateTime(timezone=True), nullable=True)
    notification_sent_at = Column(DateTime(timezone=True), nullable=True)
    signed_at = Column(DateTime(timezone=True), nullable=True)
    signed_from_ip = Column(String(64), nullable=True)
    audit_log = Column(JSON, nullable=False, default=list)
    failure_reason = Column(Text, nullable=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
