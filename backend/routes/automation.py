"""
Unique CRM - Stage automation trigger
Called by the pipeline UI (or a database hook) after a lead changes stage.
"""

import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from models.payloads import StageChangePayload
from services.capabilities import CapabilityClient, get_capabilities
from services.stage_automation import handle_stage_change
from services.store import MongoRecordStore, get_store

router = APIRouter(prefix="/automation", tags=["Automation"])
logger = logging.getLogger("automation_routes")


@router.post("/stage-change")
async def stage_change(
    payload: StageChangePayload,
    store: MongoRecordStore = Depends(get_store),
    capabilities: CapabilityClient = Depends(get_capabilities),
):
    """Run stage automations for one lead transition"""
    result = await handle_stage_change(store, capabilities, payload)
    if not result.success:
        status = 404 if result.not_found else 500
        return JSONResponse(status_code=status, content=result.to_json())
    return result.to_json()
