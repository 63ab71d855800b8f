from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_actor
from api.serializers import contact_to_response, job_to_response
from database import get_db
from errors import ValidationError
from models import Contact
from schemas.contacts import BulkDeleteRequest
from services import contacts as contact_service
from services import jobs as job_service
from services.permissions import Actor

router = APIRouter(prefix="/api", tags=["contacts"])

MAX_UPLOAD_BYTES = 5 * 1024 * 1024


@router.get("/contacts")
async def list_contacts(
    import_job_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    query = select(Contact).where(Contact.org_id == actor.org_id)
    if import_job_id:
        query = query.where(Contact.import_job_id == import_job_id)
    result = await db.execute(query.order_by(Contact.created_at.desc()))
    return [contact_to_response(c) for c in result.scalars().all()]


@router.post("/contacts/import", status_code=202)
async def import_contacts(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    identifier: Literal["phone", "email"] = Form("phone"),
    create_applications: bool = Form(False, alias="createApplications"),
    requested_amount: Optional[Decimal] = Form(None, alias="requestedAmount", gt=0),
    tenure_days: Optional[int] = Form(None, alias="tenureDays", gt=0),
    interest_rate: Optional[Decimal] = Form(None, alias="interestRate", ge=0),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    raw = await file.read()
    if len(raw) > MAX_UPLOAD_BYTES:
        raise ValidationError("CSV file is larger than 5 MB")
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValidationError("CSV file must be UTF-8 encoded") from e
    job = await contact_service.start_contact_import(
        db,
        actor,
        text,
        identifier=identifier,
        create_applications=create_applications,
        requested_amount=requested_amount,
        tenure_days=tenure_days,
        interest_rate=interest_rate,
    )
    # The worker opens its own session, so the job row must be visible first
    await db.commit()
    background_tasks.add_task(contact_service.run_contact_import, job.id)
    return job_to_response(job)


@router.post("/contacts/imports/{job_id}/revert")
async def revert_import(job_id: str, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    counts = await contact_service.revert_import(db, actor, job_id)
    return {"contactsDeleted": counts["contacts_deleted"], "applicationsDeleted": counts["applications_deleted"]}


@router.post("/records/bulk-delete")
async def bulk_delete(body: BulkDeleteRequest, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    deleted = await contact_service.bulk_delete(db, actor, body.record_type, body.record_ids)
    return {"deleted": deleted}


@router.get("/jobs")
async def list_jobs(kind: Optional[str] = None, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    jobs = await job_service.list_jobs(db, actor.org_id, kind)
    return [job_to_response(j) for j in jobs]


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    job = await job_service.get_job(db, actor.org_id, job_id)
    return job_to_response(job)


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    job = await job_service.request_cancel(db, actor, job_id)
    return job_to_response(job)
