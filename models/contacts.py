from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, func

from database import Base


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(String(64), primary_key=True, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    name = Column(String(256), nullable=True)
    phone = Column(String(32), nullable=True, index=True)
    email = Column(String(256), nullable=True, index=True)
    company = Column(String(256), nullable=True)
    extra = Column(JSON, nullable=True)
    import_job_id = Column(String(64), nullable=True, index=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Job(Base):
    """Persisted background job; clients poll it for progress."""

    __tablename__ = "jobs"

    id = Column(String(64), primary_key=True, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="queued", index=True)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    succeeded_rows = Column(Integer, nullable=False, default=0)
    failed_rows = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=True)
    errors = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
