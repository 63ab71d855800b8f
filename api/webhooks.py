"""Partner callbacks. Unmatched references are acknowledged with 404 so the partner stops retrying."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services import collections as collection_service
from services import mandates as mandate_service
from utils.case import dict_keys_to_camel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _ack(result: dict[str, Any]) -> JSONResponse:
    status_code = 200 if result.get("matched") else 404
    return JSONResponse(status_code=status_code, content={"received": True, **dict_keys_to_camel(result)})


@router.post("/collection")
async def collection_webhook(payload: dict[str, Any] = Body(...), db: AsyncSession = Depends(get_db)):
    logger.info("Collection webhook received: %s", payload.get("ClientReferenceId") or payload.get("client_reference_id"))
    result = await collection_service.apply_collection_webhook(db, payload)
    return _ack(result)


@router.post("/bank")
async def bank_webhook(payload: dict[str, Any] = Body(...), db: AsyncSession = Depends(get_db)):
    logger.info("Bank webhook received: %s", payload.get("reference_id") or payload.get("referenceId"))
    result = await mandate_service.apply_bank_webhook(db, payload)
    return _ack(result)


@router.post("/mandate")
async def mandate_webhook(payload: dict[str, Any] = Body(...), db: AsyncSession = Depends(get_db)):
    mandate = await mandate_service.apply_mandate_status(db, payload)
    if mandate is None:
        return _ack({"matched": False})
    return _ack({"matched": True, "mandate_id": mandate.id, "status": mandate.status})
