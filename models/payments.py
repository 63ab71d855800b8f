from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func

from database import Base


class Mandate(Base):
    __tablename__ = "nach_mandates"

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    mandate_reference = Column(String(64), nullable=False, unique=True, index=True)
    provider_mandate_id = Column(String(64), nullable=False, unique=True, index=True)
    umrn = Column(String(64), nullable=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    max_amount = Column(Numeric(12, 2), nullable=False)
    frequency = Column(String(16), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    account_number = Column(String(32), nullable=False)
    ifsc_code = Column(String(11), nullable=False)
    account_holder_name = Column(String(256), nullable=False)
    bank_name = Column(String(128), nullable=True)
    registration_url = Column(String(512), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    request_payload = Column(JSON, nullable=True)
    response_payload = Column(JSON, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class PaymentTransaction(Base):
    """Bank-side instruction log: mandate registration, NACH debits, disbursements."""

    __tablename__ = "bank_payment_transactions"

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    mandate_id = Column(String(64), ForeignKey("nach_mandates.id", ondelete="SET NULL"), nullable=True)
    schedule_id = Column(String(64), ForeignKey("loan_repayment_schedule.id", ondelete="SET NULL"), nullable=True)
    transaction_type = Column(String(32), nullable=False)  # mandate_register / mandate_debit / disbursement
    payment_mode = Column(String(16), nullable=False, default="NACH")
    reference_id = Column(String(64), nullable=False, unique=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(16), nullable=False, default="processing", index=True)
    utr_number = Column(String(64), nullable=True)
    failure_reason = Column(Text, nullable=True)
    request_payload = Column(JSON, nullable=True)
    response_payload = Column(JSON, nullable=True)
    callback_payload = Column(JSON, nullable=True)
    initiated_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class CollectionTransaction(Base):
    __tablename__ = "upi_collection_transactions"

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    schedule_id = Column(String(64), ForeignKey("loan_repayment_schedule.id", ondelete="SET NULL"), nullable=True)
    client_reference_id = Column(String(20), nullable=False, unique=True, index=True)
    provider_transaction_id = Column(String(64), nullable=True, index=True)
    provider_reference_id = Column(String(64), nullable=True)
    request_amount = Column(Numeric(12, 2), nullable=False)
    transaction_amount = Column(Numeric(12, 2), nullable=True)
    status = Column(String(16), nullable=False, default="PENDING", index=True)
    status_description = Column(Text, nullable=True)
    payment_link = Column(String(512), nullable=True)
    payee_vpa = Column(String(128), nullable=True)
    payer_name = Column(String(256), nullable=True)
    payer_mobile = Column(String(20), nullable=True)
    payer_email = Column(String(256), nullable=True)
    payer_vpa = Column(String(128), nullable=True)
    utr = Column(String(64), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    request_payload = Column(JSON, nullable=True)
    response_payload = Column(JSON, nullable=True)
    webhook_payload = Column(JSON, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class RepaymentScheduleEntry(Base):
    __tablename__ = "loan_repayment_schedule"
    __table_args__ = (
        UniqueConstraint("application_id", "emi_number", name="uq_schedule_emi_number"),
    )

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    emi_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False, index=True)

    principal_amount = Column(Numeric(12, 2), nullable=False)
    interest_amount = Column(Numeric(12, 2), nullable=False)
    total_emi = Column(Numeric(12, 2), nullable=False)

    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    principal_paid = Column(Numeric(12, 2), nullable=False, default=0)
    interest_paid = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(String(16), nullable=False, default="pending", index=True)
    payment_date = Column(Date, nullable=True)
    nach_debit_reference = Column(String(64), nullable=True)
    nach_debit_status = Column(String(16), nullable=True)


class Payment(Base):
    """Immutable ledger entry against one schedule row."""

    __tablename__ = "loan_payments"

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False, index=True)
    schedule_id = Column(String(64), ForeignKey("loan_repayment_schedule.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    payment_number = Column(String(64), nullable=False, unique=True)
    payment_date = Column(Date, nullable=False)
    payment_amount = Column(Numeric(12, 2), nullable=False)
    principal_paid = Column(Numeric(12, 2), nullable=False)
    interest_paid = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(32), nullable=False)
    transaction_reference = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ProcessedEvent(Base):
    """One row per provider event whose side effects have been applied."""

    __tablename__ = "processed_events"

    event_key = Column(String(128), primary_key=True)
    org_id = Column(String(64), nullable=False, index=True)
    source = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
