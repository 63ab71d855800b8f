"""
Bulk contact import, import revert and admin bulk delete.

Imports run as Jobs on a session of their own, committing after every row so
progress is visible to pollers and a cancel request is seen before the next
row. Per-row failures are recorded on the job, never rolled back as a whole.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contact_import.csv_parser import parse_contacts_csv
from database import AsyncSessionLocal
from errors import AuthorizationError, LendingError, NotFoundError, StateError, ValidationError
from models import Applicant, Contact, Job, LoanApplication, StageEvent
from schemas.application import ApplicantSchema, ApplicationCreate
from services.applications import create_application
from services.jobs import ACTIVE_STATUSES, create_job, finish, get_job
from services.permissions import Actor, require
from utils.clock import utcnow
from utils.identifiers import new_id

logger = logging.getLogger(__name__)

IMPORT_KIND = "contact_import"
KNOWN_COLUMNS = {"name", "company"}
BULK_DELETE_MODELS = {"contacts": Contact, "applications": LoanApplication}


async def start_contact_import(
    session: AsyncSession,
    actor: Actor,
    csv_text: str,
    identifier: str = "phone",
    create_applications: bool = False,
    requested_amount: Optional[Decimal] = None,
    tenure_days: Optional[int] = None,
    interest_rate: Optional[Decimal] = None,
) -> Job:
    """Parse the upload and queue an import job; parse errors are stored on the job."""
    require(actor, "import_contacts")
    if create_applications:
        require(actor, "create_application")
    parsed = parse_contacts_csv(csv_text, identifier)
    if parsed.identifier_column is None:
        raise ValidationError(parsed.errors[0] if parsed.errors else "CSV could not be parsed", details={"errors": parsed.errors})

    payload = {
        "identifier": identifier,
        "identifier_column": parsed.identifier_column,
        "rows": parsed.rows,
        "line_numbers": parsed.line_numbers,
        "repaired_lines": parsed.repaired_lines,
        "create_applications": create_applications,
        "application_defaults": {
            "requested_amount": str(requested_amount) if requested_amount is not None else None,
            "tenure_days": tenure_days,
            "interest_rate": str(interest_rate) if interest_rate is not None else None,
        },
        "actor_role": actor.role,
    }
    job = await create_job(session, actor, IMPORT_KIND, payload, total_rows=len(parsed.rows), errors=parsed.errors)
    logger.info("Queued contact import %s: %d rows, %d parse errors", job.id, len(parsed.rows), len(parsed.errors))
    return job


def _contact_from_row(job: Job, row: dict[str, str], identifier: str, identifier_column: str) -> Contact:
    lowered = {k.strip().lower(): v for k, v in row.items()}
    extra = {k: v for k, v in row.items() if k != identifier_column and k.strip().lower() not in KNOWN_COLUMNS | {"phone", "email"}}
    return Contact(
        id=new_id("cnt"),
        org_id=job.org_id,
        name=lowered.get("name") or None,
        phone=row[identifier_column] if identifier == "phone" else (lowered.get("phone") or None),
        email=row[identifier_column] if identifier == "email" else (lowered.get("email") or None),
        company=lowered.get("company") or None,
        extra=extra or None,
        import_job_id=job.id,
        created_by=job.created_by,
    )


async def _create_application_for(session: AsyncSession, job: Job, contact: Contact) -> LoanApplication:
    defaults = job.payload.get("application_defaults") or {}
    actor = Actor(user_id=job.created_by, org_id=job.org_id, role=job.payload.get("actor_role", ""))
    body = ApplicationCreate(
        contact_id=contact.id,
        requested_amount=defaults.get("requested_amount"),
        tenure_days=defaults.get("tenure_days"),
        interest_rate=defaults.get("interest_rate"),
        source="bulk_import",
        applicants=[
            ApplicantSchema(name=contact.name or contact.phone or contact.email, phone=contact.phone, email=contact.email)
        ],
    )
    app = await create_application(session, actor, body)
    app.import_job_id = job.id
    return app


async def run_contact_import(job_id: str, session_factory: Callable[[], AsyncSession] = AsyncSessionLocal) -> None:
    """Background worker for a queued import job."""
    async with session_factory() as session:
        job = await session.get(Job, job_id)
        if job is None:
            logger.error("Import job %s vanished before it started", job_id)
            return
        if job.status != "queued":
            logger.info("Import job %s is %s; nothing to run", job.id, job.status)
            return
        job.status = "running"
        job.started_at = utcnow()
        await session.commit()

        payload = job.payload or {}
        identifier = payload.get("identifier", "phone")
        column = payload.get("identifier_column", identifier)
        rows = payload.get("rows") or []
        line_numbers = payload.get("line_numbers") or list(range(2, len(rows) + 2))
        results: list[dict[str, Any]] = []
        contacts_created = applications_created = 0

        try:
            for row, line_no in zip(rows, line_numbers):
                await session.refresh(job, ["cancel_requested"])
                if job.cancel_requested:
                    job.result = {"rows": results, "contacts_created": contacts_created, "applications_created": applications_created}
                    finish(job, "cancelled")
                    await session.commit()
                    logger.info("Import job %s cancelled after %d rows", job.id, job.processed_rows)
                    return

                row_result: dict[str, Any] = {"row": line_no, "identifier": row.get(column)}
                try:
                    contact = _contact_from_row(job, row, identifier, column)
                    session.add(contact)
                    await session.flush()
                except SQLAlchemyError as e:
                    await session.rollback()
                    job = await session.get(Job, job_id)
                    logger.error("Import job %s row %s failed: %s", job.id, line_no, e)
                    row_result.update(status="failed", error="Could not save contact")
                    job.failed_rows += 1
                    job.errors = list(job.errors or []) + [f"Row {line_no}: Could not save contact"]
                else:
                    contacts_created += 1
                    row_result.update(status="created", contact_id=contact.id)
                    if payload.get("create_applications"):
                        try:
                            app = await _create_application_for(session, job, contact)
                        except LendingError as e:
                            row_result.update(status="partial", error=e.message)
                            job.errors = list(job.errors or []) + [f"Row {line_no}: Application not created: {e.message}"]
                        else:
                            applications_created += 1
                            row_result["application_id"] = app.id
                    job.succeeded_rows += 1

                job.processed_rows += 1
                results.append(row_result)
                await session.commit()

            job.result = {"rows": results, "contacts_created": contacts_created, "applications_created": applications_created}
            finish(job, "succeeded")
            await session.commit()
            logger.info("Import job %s finished: %d contacts, %d applications", job.id, contacts_created, applications_created)
        except Exception as e:
            logger.exception("Import job %s crashed", job_id)
            await session.rollback()
            job = await session.get(Job, job_id)
            job.result = {"rows": results, "contacts_created": contacts_created, "applications_created": applications_created}
            finish(job, "failed", str(e))
            await session.commit()


async def revert_import(session: AsyncSession, actor: Actor, job_id: str) -> dict[str, int]:
    """Delete every contact and application created by a finished import job."""
    require(actor, "import_contacts")
    job = await get_job(session, actor.org_id, job_id)
    if job.kind != IMPORT_KIND:
        raise ValidationError("Only contact import jobs can be reverted")
    if job.status in ACTIVE_STATUSES:
        raise StateError("Job is still running; cancel it before reverting", details={"status": job.status})

    app_ids = select(LoanApplication.id).where(LoanApplication.import_job_id == job.id, LoanApplication.org_id == job.org_id)
    await session.execute(delete(Applicant).where(Applicant.application_id.in_(app_ids)))
    await session.execute(delete(StageEvent).where(StageEvent.application_id.in_(app_ids)))
    apps = await session.execute(
        delete(LoanApplication).where(LoanApplication.import_job_id == job.id, LoanApplication.org_id == job.org_id)
    )
    contacts = await session.execute(
        delete(Contact).where(Contact.import_job_id == job.id, Contact.org_id == job.org_id)
    )
    job.result = {**(job.result or {}), "reverted": True, "reverted_at": utcnow().isoformat()}
    await session.flush()
    counts = {"contacts_deleted": contacts.rowcount or 0, "applications_deleted": apps.rowcount or 0}
    logger.info("Reverted import %s: %s", job.id, counts)
    return counts


async def bulk_delete(session: AsyncSession, actor: Actor, record_type: str, record_ids: list[str]) -> int:
    """Admin-only delete; every target is re-read and must belong to the caller's organization."""
    if actor.role != "admin":
        raise AuthorizationError("Only administrators can bulk delete records")
    require(actor, "delete_records")
    model = BULK_DELETE_MODELS.get(record_type)
    if model is None:
        raise ValidationError(f"Unknown record type '{record_type}'", details={"allowed": sorted(BULK_DELETE_MODELS)})
    ids = list(dict.fromkeys(record_ids or []))
    if not ids:
        raise ValidationError("No records selected")

    result = await session.execute(select(model.id, model.org_id).where(model.id.in_(ids)))
    owners = dict(result.all())
    missing = [i for i in ids if i not in owners]
    if missing:
        raise NotFoundError("Some records were not found", details={"missing_ids": missing})
    foreign = [i for i, org in owners.items() if org != actor.org_id]
    if foreign:
        logger.warning(
            "SECURITY: user %s (org %s) attempted to delete %d %s from other organizations",
            actor.user_id, actor.org_id, len(foreign), record_type,
        )
        raise AuthorizationError("Cannot delete records from other organizations")

    await session.execute(delete(model).where(model.id.in_(ids), model.org_id == actor.org_id))
    await session.flush()
    logger.info("User %s deleted %d %s", actor.user_id, len(ids), record_type)
    return len(ids)
