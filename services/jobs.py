"""Persisted background jobs that clients poll for progress."""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError, StateError
from models import Job
from services.permissions import Actor
from utils.clock import utcnow
from utils.identifiers import new_id

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = {"queued", "running"}
FINISHED_STATUSES = {"succeeded", "failed", "cancelled"}


async def create_job(
    session: AsyncSession,
    actor: Actor,
    kind: str,
    payload: Optional[dict[str, Any]] = None,
    total_rows: int = 0,
    errors: Optional[list[str]] = None,
) -> Job:
    job = Job(
        id=new_id("job"),
        org_id=actor.org_id,
        kind=kind,
        status="queued",
        cancel_requested=False,
        total_rows=total_rows,
        processed_rows=0,
        succeeded_rows=0,
        failed_rows=0,
        payload=payload or {},
        errors=list(errors or []),
        created_by=actor.user_id,
    )
    session.add(job)
    await session.flush()
    return job


async def get_job(session: AsyncSession, org_id: str, job_id: str) -> Job:
    job = await session.get(Job, job_id)
    if job is None or job.org_id != org_id:
        raise NotFoundError("Job not found", details={"job_id": job_id})
    return job


async def list_jobs(session: AsyncSession, org_id: str, kind: Optional[str] = None) -> list[Job]:
    query = select(Job).where(Job.org_id == org_id)
    if kind:
        query = query.where(Job.kind == kind)
    result = await session.execute(query.order_by(Job.created_at.desc()))
    return list(result.scalars().all())


async def request_cancel(session: AsyncSession, actor: Actor, job_id: str) -> Job:
    """Queued jobs are cancelled at once; running jobs stop before their next row."""
    job = await get_job(session, actor.org_id, job_id)
    if job.status in FINISHED_STATUSES:
        raise StateError(f"Job is already {job.status}", details={"status": job.status})
    job.cancel_requested = True
    if job.status == "queued":
        finish(job, "cancelled")
    await session.flush()
    logger.info("Cancel requested for job %s by %s", job.id, actor.user_id)
    return job


def finish(job: Job, status: str, error_message: Optional[str] = None) -> None:
    job.status = status
    job.completed_at = utcnow()
    if error_message:
        job.error_message = error_message
