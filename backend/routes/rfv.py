"""
Unique CRM - RFV triggers
Full recomputation of the RFV matrix and its import into the RFV pipeline.
"""

import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from services.rfv_crm_import import import_rfv_customers_to_crm
from services.rfv_service import recalculate_rfv
from services.store import MongoRecordStore, get_store

router = APIRouter(prefix="/rfv", tags=["RFV"])
logger = logging.getLogger("rfv_routes")


@router.post("/recalculate")
async def recalculate(store: MongoRecordStore = Depends(get_store)):
    result = await recalculate_rfv(store)
    if not result.success:
        return JSONResponse(status_code=500, content=result.to_json())
    return result.to_json()


@router.post("/import-to-crm")
async def import_to_crm(store: MongoRecordStore = Depends(get_store)):
    result = await import_rfv_customers_to_crm(store)
    if not result.success:
        return JSONResponse(status_code=500, content=result.to_json())
    return result.to_json()
