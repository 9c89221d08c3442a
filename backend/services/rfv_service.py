"""
Unique CRM - RFV recalculation job

Stateless batch run:
  revenue_records + executed_records -> aggregator -> classifier -> rfv_customers

Upserts go out in chunks of RFV_UPSERT_BATCH_SIZE; a failed chunk is counted in
`errors` and the run moves on to the next chunk.
"""

import logging
from datetime import datetime
from typing import Optional

from config import RFV_UPSERT_BATCH_SIZE, now_utc
from models.customer import RecordKind, TRANSACTION_TABLES
from models.payloads import RfvResult, RfvStats
from services.batching import run_chunks
from services.rfv_aggregator import aggregate
from services.rfv_classifier import classify
from services.store import MongoRecordStore, StoreError, fetch_all

logger = logging.getLogger("rfv_service")

TRANSACTION_FIELDS = (
    "patient_name",
    "patient_email",
    "patient_phone",
    "patient_cpf",
    "patient_prontuario",
    "date",
    "amount",
)

# Keys of stats.sourceRecordCounts
SOURCE_COUNT_KEYS = {
    RecordKind.SOLD: "revenue",
    RecordKind.EXECUTED: "executed",
}


async def recalculate_rfv(
    store: MongoRecordStore, now: Optional[datetime] = None
) -> RfvResult:
    """Full RFV recomputation. Never raises: failures come back as success=False."""
    now = now or now_utc()
    logger.info("Starting complete RFV recalculation")

    try:
        streams = {}
        for kind, table in TRANSACTION_TABLES.items():
            streams[kind] = await fetch_all(store, table, fields=TRANSACTION_FIELDS)
    except StoreError as e:
        logger.error(f"RFV recalculation aborted while reading transactions: {e}")
        return RfvResult(success=False, error=str(e))

    try:
        customers = aggregate(streams)
        logger.info(f"Built customer map with {len(customers)} unique customers")

        profiles = []
        for acc in customers.values():
            profile = classify(acc, now)
            if profile is not None:
                profiles.append(profile.to_document())
    except Exception as e:
        logger.exception(f"RFV recalculation aborted while building profiles: {e}")
        return RfvResult(success=False, error=str(e))

    async def upsert_chunk(chunk):
        await store.upsert("rfv_customers", list(chunk), conflict_key="name_key")

    outcome = await run_chunks(
        profiles, RFV_UPSERT_BATCH_SIZE, upsert_chunk, label="rfv upsert"
    )
    logger.info(
        f"RFV recalculation complete: {outcome.succeeded} updated, {outcome.failed} errors"
    )

    return RfvResult(
        success=True,
        stats=RfvStats(
            source_record_counts={
                SOURCE_COUNT_KEYS[kind]: len(rows) for kind, rows in streams.items()
            },
            unique_customers=len(customers),
            updated=outcome.succeeded,
            errors=outcome.failed,
        ),
    )
