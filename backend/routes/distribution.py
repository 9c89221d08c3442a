"""
Unique CRM - Team distribution trigger
Import patients as leads and split all leads between the two teams.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from models.payloads import AllocationPayload
from services.lead_allocator import import_and_distribute
from services.store import MongoRecordStore, get_store

router = APIRouter(prefix="/teams", tags=["Teams"])
logger = logging.getLogger("distribution_routes")


@router.post("/distribute-leads")
async def distribute_leads(
    payload: Optional[AllocationPayload] = None,
    store: MongoRecordStore = Depends(get_store),
):
    """
    action:
    - import_and_distribute (default)
    - import_only
    - distribute_only
    """
    payload = payload or AllocationPayload()
    logger.info(f"Lead distribution requested: {payload.action.value}")
    result = await import_and_distribute(store, payload.action)
    if not result.success:
        status = 404 if result.not_found else 500
        return JSONResponse(status_code=status, content=result.to_json())
    return result.to_json()
