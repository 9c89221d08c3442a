"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Unique CRM - Lead Allocator                                                 ║
║                                                                              ║
║  1. Import  : patient_data rows with no lead (by prontuario) become leads    ║
║  2. Link    : leads without rfv_customer_id get linked by prontuario         ║
║  3. Distrib.: ALL leads shuffled (Fisher-Yates), even index -> team A,       ║
║               odd index -> team B. Exact +/-1 split on lead count.           ║
║                                                                              ║
║  Distribution is a full reshuffle: every lead may change team on each run.   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import random
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from config import (
    DEFAULT_PIPELINE_TYPE,
    LEAD_IMPORT_BATCH_SIZE,
    PAGE_SIZE,
    SYSTEM_USER_ID,
    TEAM_NAMES,
    TEAM_UPDATE_BATCH_SIZE,
)
from models.lead import Pipeline, Stage, Team
from models.payloads import (
    AllocationAction,
    AllocationResult,
    AllocationSummary,
    TeamSummary,
)
from services.batching import BatchOutcome, chunked, run_chunks
from services.errors import InputResolutionError
from services.store import MongoRecordStore, StoreError, fetch_all

logger = logging.getLogger("lead_allocator")

PATIENT_FIELDS = ("id", "prontuario", "name", "phone", "email", "whatsapp", "cpf")


# ==================== REFERENCE DATA ====================

async def resolve_teams(store: MongoRecordStore) -> List[Team]:
    """The two competing teams, in TEAM_NAMES order"""
    rows = await store.query("teams", {"name": {"$in": list(TEAM_NAMES)}})
    teams = [Team.model_validate(row) for row in rows]
    by_name = {t.name: t for t in teams}
    if len(teams) != len(TEAM_NAMES) or any(n not in by_name for n in TEAM_NAMES):
        raise InputResolutionError(f"Teams not found: expected {', '.join(TEAM_NAMES)}")
    return [by_name[n] for n in TEAM_NAMES]


async def _first_stage(store: MongoRecordStore, pipeline_id: str) -> Optional[Stage]:
    stages = await store.query(
        "crm_stages", {"pipeline_id": pipeline_id}, limit=1, sort=[("order_index", 1)]
    )
    return Stage.model_validate(stages[0]) if stages else None


async def resolve_default_stage(store: MongoRecordStore) -> Tuple[str, str]:
    """(pipeline_id, stage_id) where imported leads start"""
    row = await store.find_one("crm_pipelines", {"pipeline_type": DEFAULT_PIPELINE_TYPE})
    pipeline = Pipeline.model_validate(row) if row else None
    stage = await _first_stage(store, pipeline.id) if pipeline else None

    if not stage:
        # Fallback: first available pipeline
        pipelines = await store.query("crm_pipelines", limit=1)
        pipeline = Pipeline.model_validate(pipelines[0]) if pipelines else None
        stage = await _first_stage(store, pipeline.id) if pipeline else None

    if not pipeline or not stage:
        raise InputResolutionError("Default pipeline or stage not found")
    return pipeline.id, stage.id


# ==================== IMPORT ====================

def lead_from_patient(patient: dict, pipeline_id: str, stage_id: str) -> dict:
    return {
        "name": patient.get("name"),
        "phone": patient.get("phone"),
        "email": patient.get("email"),
        "whatsapp": patient.get("whatsapp"),
        "cpf": patient.get("cpf"),
        "prontuario": patient.get("prontuario"),
        "patient_data_id": patient.get("id"),
        "pipeline_id": pipeline_id,
        "stage_id": stage_id,
        "source": DEFAULT_PIPELINE_TYPE,
        "tags": [],
        "created_by": SYSTEM_USER_ID,
    }


async def import_missing_patients(
    store: MongoRecordStore, pipeline_id: str, stage_id: str
) -> BatchOutcome:
    """Insert a lead for every patient whose prontuario has no lead yet"""
    patients = await fetch_all(store, "patient_data", fields=PATIENT_FIELDS)
    existing = await fetch_all(
        store, "crm_leads", {"prontuario": {"$ne": None}}, fields=("prontuario",)
    )
    known = {lead["prontuario"] for lead in existing}

    to_import = []
    without_id = 0
    for patient in patients:
        prontuario = patient.get("prontuario")
        if not prontuario:
            without_id += 1
            continue
        if prontuario in known:
            continue
        known.add(prontuario)
        to_import.append(lead_from_patient(patient, pipeline_id, stage_id))

    if without_id:
        logger.warning(f"{without_id} patients skipped: no prontuario")
    logger.info(f"Found {len(to_import)} patients to import")

    async def insert_chunk(chunk):
        await store.insert("crm_leads", list(chunk))

    outcome = await run_chunks(to_import, LEAD_IMPORT_BATCH_SIZE, insert_chunk, label="lead import")
    logger.info(f"Imported {outcome.succeeded} new leads ({outcome.failed} failed)")
    return outcome


async def link_rfv_profiles(store: MongoRecordStore) -> BatchOutcome:
    """Attach rfv_customer_id to every unlinked lead with a matching prontuario"""
    profiles = await fetch_all(
        store, "rfv_customers", {"prontuario": {"$ne": None}}, fields=("id", "prontuario")
    )
    rfv_by_prontuario = {p["prontuario"]: p["id"] for p in profiles}

    unlinked = await fetch_all(
        store, "crm_leads", {"rfv_customer_id": None}, fields=("id", "prontuario")
    )

    outcome = BatchOutcome()
    for lead in unlinked:
        rfv_id = rfv_by_prontuario.get(lead.get("prontuario"))
        if not rfv_id:
            continue
        try:
            await store.update("crm_leads", {"id": lead["id"]}, {"rfv_customer_id": rfv_id})
        except StoreError as e:
            logger.error(f"Failed to link lead {lead['id']} to RFV {rfv_id}: {e}")
            outcome.failed += 1
            outcome.errors.append(str(e))
        else:
            outcome.succeeded += 1

    logger.info(f"Linked {outcome.succeeded} leads to RFV profiles")
    return outcome


# ==================== DISTRIBUTION ====================

def split_alternating(
    lead_ids: Sequence[str], team_ids: Sequence[str], rng: random.Random
) -> Dict[str, List[str]]:
    """
    Shuffle a copy of lead_ids (Fisher-Yates, via random.shuffle) and deal
    it round-robin: position i goes to team_ids[i % len(team_ids)].
    """
    shuffled = list(lead_ids)
    rng.shuffle(shuffled)
    assignment = {team_id: [] for team_id in team_ids}
    for index, lead_id in enumerate(shuffled):
        assignment[team_ids[index % len(team_ids)]].append(lead_id)
    return assignment


async def distribute_leads(
    store: MongoRecordStore, teams: List[Team], rng: random.Random
) -> Tuple[int, Dict[str, BatchOutcome]]:
    """Reassign every lead. Returns (total leads, outcome per team id)."""
    leads = await fetch_all(
        store, "crm_leads", sort=[("created_at", 1), ("_id", 1)], fields=("id",)
    )
    assignment = split_alternating(
        [lead["id"] for lead in leads], [t.id for t in teams], rng
    )

    outcomes = {}
    for team in teams:
        team_id = team.id

        async def assign_chunk(chunk, team_id=team_id):
            await store.update("crm_leads", {"id": {"$in": list(chunk)}}, {"team_id": team_id})

        outcomes[team_id] = await run_chunks(
            assignment[team_id], TEAM_UPDATE_BATCH_SIZE, assign_chunk,
            label=f"team {team.name} assignment",
        )

    logger.info(
        "Distribution complete: "
        + ", ".join(f"{t.name}={len(assignment[t.id])}" for t in teams)
    )
    return len(leads), outcomes


# ==================== SUMMARY ====================

async def _client_side_team_value(store: MongoRecordStore, team_id: str) -> float:
    linked = await fetch_all(
        store,
        "crm_leads",
        {"team_id": team_id, "rfv_customer_id": {"$ne": None}},
        fields=("rfv_customer_id",),
    )
    rfv_ids = sorted({lead["rfv_customer_id"] for lead in linked})
    total = 0.0
    for chunk in chunked(rfv_ids, PAGE_SIZE):
        rows = await store.query(
            "rfv_customers", {"id": {"$in": list(chunk)}}, limit=len(chunk), fields=("total_value",)
        )
        total += sum(float(r.get("total_value") or 0) for r in rows)
    return total


async def team_values(store: MongoRecordStore, teams: List[Team]) -> Dict[str, float]:
    """Per-team RFV value, using the store's aggregate helper when it has one"""
    helper = getattr(store, "sum_team_value", None)
    if helper is not None:
        values = {t.id: await helper(t.id) for t in teams}
        if all(v is not None for v in values.values()):
            return values
        logger.info("Team value helper unavailable, summing client-side")
    return {t.id: await _client_side_team_value(store, t.id) for t in teams}


# ==================== ENTRY POINT ====================

async def import_and_distribute(
    store: MongoRecordStore,
    action: AllocationAction = AllocationAction.IMPORT_AND_DISTRIBUTE,
    rng: Optional[random.Random] = None,
) -> AllocationResult:
    """Run the allocator. Never raises: failures come back as success=False."""
    rng = rng or random.SystemRandom()
    try:
        teams = await resolve_teams(store)
        pipeline_id, stage_id = await resolve_default_stage(store)

        imported = BatchOutcome()
        if action.imports:
            imported = await import_missing_patients(store, pipeline_id, stage_id)

        linked = await link_rfv_profiles(store)

        if action.distributes:
            total_leads, outcomes = await distribute_leads(store, teams, rng)
            counts = {team_id: o.succeeded for team_id, o in outcomes.items()}
            assigned = BatchOutcome()
            for outcome in outcomes.values():
                assigned = assigned.merge(outcome)
        else:
            total_leads = await store.count("crm_leads")
            counts = {t.id: await store.count("crm_leads", {"team_id": t.id}) for t in teams}
            assigned = BatchOutcome()

        values = await team_values(store, teams)
        totals = imported.merge(linked).merge(assigned)
    except InputResolutionError as e:
        logger.error(f"Lead allocation failed: {e}")
        return AllocationResult(success=False, error=str(e), not_found=True)
    except (StoreError, ValidationError) as e:
        logger.error(f"Lead allocation failed: {e}")
        return AllocationResult(success=False, error=str(e))

    return AllocationResult(
        success=True,
        summary=AllocationSummary(
            total_leads=total_leads,
            per_team=[
                TeamSummary(
                    team_id=t.id,
                    name=t.name,
                    lead_count=counts[t.id],
                    total_value=values[t.id],
                )
                for t in teams
            ],
            imported=imported.succeeded,
            linked=linked.succeeded,
            errors=totals.failed,
        ),
    )
