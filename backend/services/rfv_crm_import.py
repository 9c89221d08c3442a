"""
Unique CRM - RFV -> CRM import

Creates one lead in the RFV pipeline for every RFV profile that has none yet,
placed in the stage named after the profile's segment.
"""

import logging

from config import LEAD_IMPORT_BATCH_SIZE, RFV_PIPELINE_ID, SYSTEM_USER_ID
from models.customer import CustomerSegment
from models.payloads import RfvImportResult
from services.batching import run_chunks
from services.store import MongoRecordStore, StoreError, fetch_all

logger = logging.getLogger("rfv_crm_import")

SEGMENT_TO_STAGE = {
    CustomerSegment.CHAMPIONS.value: "Campeões",
    CustomerSegment.LOYAL.value: "Leais",
    CustomerSegment.POTENTIAL.value: "Potenciais Leais",
    CustomerSegment.NEW.value: "Novos",
    CustomerSegment.PROMISING.value: "Promissores",
    CustomerSegment.NEED_ATTENTION.value: "Precisam Atenção",
    CustomerSegment.AT_RISK.value: "Em Risco",
    CustomerSegment.CANNOT_LOSE.value: "Não Podem Perder",
    CustomerSegment.HIBERNATING.value: "Hibernando",
    CustomerSegment.LOST.value: "Perdidos",
}
FALLBACK_STAGE = "Perdidos"


def lead_from_profile(customer: dict, stage_ids: dict, pipeline_id: str) -> dict:
    segment = customer.get("segment") or ""
    stage_name = SEGMENT_TO_STAGE.get(segment, FALLBACK_STAGE)
    stage_id = stage_ids.get(stage_name) or stage_ids.get(FALLBACK_STAGE)
    return {
        "name": customer.get("name"),
        "email": customer.get("email"),
        "phone": customer.get("phone"),
        "whatsapp": customer.get("whatsapp"),
        "cpf": customer.get("cpf"),
        "prontuario": customer.get("prontuario"),
        "pipeline_id": pipeline_id,
        "stage_id": stage_id,
        "rfv_customer_id": customer["id"],
        "estimated_value": customer.get("total_value"),
        "source": "rfv_import",
        "source_detail": f"Segmento: {segment}",
        "created_by": SYSTEM_USER_ID,
        "notes": (
            f"Importado da Matriz RFV\nSegmento: {segment}\n"
            f"R: {customer.get('recency_score') or 0} | "
            f"F: {customer.get('frequency_score') or 0} | "
            f"V: {customer.get('value_score') or 0}"
        ),
        "tags": ["RFV", segment],
    }


async def import_rfv_customers_to_crm(
    store: MongoRecordStore, pipeline_id: str = RFV_PIPELINE_ID
) -> RfvImportResult:
    try:
        stages = await fetch_all(store, "crm_stages", {"pipeline_id": pipeline_id})
        stage_ids = {s["name"]: s["id"] for s in stages}

        existing = await fetch_all(
            store,
            "crm_leads",
            {"pipeline_id": pipeline_id, "rfv_customer_id": {"$ne": None}},
            fields=("rfv_customer_id",),
        )
        existing_ids = {lead["rfv_customer_id"] for lead in existing}

        customers = await fetch_all(store, "rfv_customers")
    except StoreError as e:
        logger.error(f"RFV import aborted: {e}")
        return RfvImportResult(success=False, error=str(e))

    to_import = [c for c in customers if c.get("id") not in existing_ids]
    if not to_import:
        logger.info("All RFV customers already imported")
        return RfvImportResult(success=True, total=len(customers), skipped=len(existing_ids))

    leads = [lead_from_profile(c, stage_ids, pipeline_id) for c in to_import]

    async def insert_chunk(chunk):
        await store.insert("crm_leads", list(chunk))

    outcome = await run_chunks(leads, LEAD_IMPORT_BATCH_SIZE, insert_chunk, label="rfv import")
    logger.info(f"RFV import: {outcome.succeeded} imported, {outcome.failed} errors")

    return RfvImportResult(
        success=True,
        total=len(customers),
        imported=outcome.succeeded,
        skipped=len(existing_ids),
        errors=outcome.failed,
    )
