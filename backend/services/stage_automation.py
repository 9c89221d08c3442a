"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Unique CRM - Stage Automation                                               ║
║                                                                              ║
║  Runs once per pipeline stage change of a lead:                              ║
║  1. Load lead, new stage (+ pipeline), old stage. Missing lead/stage = fail  ║
║  2. Referral scoring: referred leads reaching consultation / surgery award   ║
║     team points, at most once per (team, reason)                             ║
║  3. Stage rules: tags, temperature, won/lost, tasks, notifications and at    ║
║     most one call per downstream capability                                  ║
║  4. Apply: tag union, lead patch, tasks, notifications, one history entry    ║
║                                                                              ║
║  Past step 1 nothing aborts the run: a failed capability call or write is    ║
║  logged, counted in `errors` and skipped.                                    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from config import now_utc
from models.lead import Lead, Pipeline, Stage
from models.payloads import StageChangePayload, StageChangeResult
from services.capabilities import CapabilityClient
from services.errors import InputResolutionError
from services.lead_history import log_lead_history
from services.notifications import notify
from services.points_ledger import award_once
from services.stage_rules import (
    CAPABILITY_ACTIONS,
    RULES,
    Capability,
    Recipient,
    RuleEffects,
    StageRule,
    TaskTemplate,
    is_referral,
    referral_awards,
    resolve_stage_rules,
)
from services.store import MongoRecordStore, StoreError

logger = logging.getLogger("stage_automation")

GAMIFICATION_ACTION = "sale_closed"

# Write steps an action string can depend on
PATCH = "patch"
TASKS = "tasks"


# ==================== LOAD ====================

async def load_context(
    store: MongoRecordStore, payload: StageChangePayload
) -> Tuple[Lead, Stage, Optional[Stage], Optional[Pipeline]]:
    """(lead, new_stage, old_stage, pipeline). Raises InputResolutionError."""
    async def old_stage_lookup():
        if not payload.old_stage_id:
            return None
        return await store.find_one("crm_stages", {"id": payload.old_stage_id})

    lead_row, new_stage_row, old_stage_row = await asyncio.gather(
        store.find_one("crm_leads", {"id": payload.lead_id}),
        store.find_one("crm_stages", {"id": payload.new_stage_id}),
        old_stage_lookup(),
    )
    if not lead_row or not new_stage_row:
        raise InputResolutionError("Lead ou Stage não encontrado")

    lead = Lead.model_validate(lead_row)
    new_stage = Stage.model_validate(new_stage_row)
    old_stage = Stage.model_validate(old_stage_row) if old_stage_row else None

    pipeline = None
    if new_stage.pipeline_id:
        row = await store.find_one("crm_pipelines", {"id": new_stage.pipeline_id})
        pipeline = Pipeline.model_validate(row) if row else None
    return lead, new_stage, old_stage, pipeline


# ==================== REFERRAL SCORING ====================

async def score_referral(
    store: MongoRecordStore, lead: Lead, stage: Stage, performed_by: Optional[str]
) -> Tuple[List[str], int]:
    """
    Award milestone points to the team of a referred lead.
    Returns (action strings, failed writes).
    """
    if not is_referral(lead.source) or not lead.team_id:
        return [], 0
    if not lead.name.strip():
        logger.warning(f"Lead {lead.id}: referred lead has no name, points not awarded")
        return [], 0

    actions = []
    failed = 0
    for award in referral_awards(stage.name, lead.name):
        try:
            inserted = await award_once(
                store,
                team_id=lead.team_id,
                points=award.points,
                reason=award.reason,
                applied_by=performed_by,
                lead_id=lead.id,
            )
        except StoreError as e:
            logger.error(f"Lead {lead.id}: award '{award.reason}' failed: {e}")
            failed += 1
            continue
        if inserted:
            actions.append(f"+{award.points} pontos para o time ({award.reason})")
    return actions, failed


# ==================== RULE EFFECTS ====================

def build_task(template: TaskTemplate, lead: Lead, now: datetime) -> dict:
    due_date = None
    if template.due_at_next_contact:
        due_date = lead.next_contact_date
    if not due_date:
        due_date = (now + template.due_in).isoformat()
    return {
        "lead_id": lead.id,
        "title": template.title,
        "description": template.description,
        "due_date": due_date,
        "priority": template.priority,
        "assigned_to": lead.assigned_to,
    }


def lead_patch(effects: RuleEffects, lead: Lead, now: datetime) -> dict:
    """Field changes a rule implies; won_at / lost_at are never overwritten"""
    patch = {}
    if effects.temperature and lead.temperature != effects.temperature.value:
        patch["temperature"] = effects.temperature.value
    if effects.closes_as:
        status = effects.closes_as.value
        if lead.status != status:
            patch["status"] = status
        stamp = f"{status}_at"
        if not getattr(lead, stamp):
            patch[stamp] = now.isoformat()
    return patch


def notification_recipient(
    recipient: Recipient, lead: Lead, performed_by: Optional[str]
) -> Optional[str]:
    if recipient == Recipient.PERFORMER_OR_ASSIGNEE:
        return performed_by or lead.assigned_to
    return lead.assigned_to


def sale_value(lead: Lead) -> float:
    """contract_value, else estimated_value, else 0"""
    return lead.contract_value or lead.estimated_value or 0.0


async def invoke_capability(
    capabilities: CapabilityClient, capability: Capability, lead: Lead
) -> bool:
    """Call one downstream capability. False on failure (logged, not raised)."""
    try:
        if capability == Capability.QUALIFY:
            await capabilities.qualify(lead.id)
        elif capability == Capability.GAMIFICATION:
            if not lead.assigned_to:
                logger.warning(f"Lead {lead.id}: no assigned seller, gamification skipped")
                return False
            await capabilities.award_gamification_points(
                lead.assigned_to, GAMIFICATION_ACTION, lead.id, sale_value(lead)
            )
        elif capability == Capability.RECOMMEND_PROCEDURES:
            await capabilities.recommend_procedures(lead.id)
    except Exception as e:
        logger.error(f"Lead {lead.id}: {capability.value} failed: {e}")
        return False
    return True


# ==================== ENTRY POINT ====================

async def handle_stage_change(
    store: MongoRecordStore,
    capabilities: CapabilityClient,
    payload: StageChangePayload,
) -> StageChangeResult:
    """
    Run the automations for a stage change. Never raises.

    Only loading the lead and stages can fail the run. Once loaded, a failed
    write is logged and counted in `errors`; the other steps still run.
    """
    logger.info(
        f"Stage change: lead={payload.lead_id} "
        f"{payload.old_stage_id or '-'} -> {payload.new_stage_id}"
    )
    try:
        lead, new_stage, old_stage, pipeline = await load_context(store, payload)
    except InputResolutionError as e:
        logger.error(f"Stage automation failed: {e}")
        return StageChangeResult(
            success=False, lead_id=payload.lead_id, error=str(e), not_found=True
        )
    except (StoreError, ValidationError) as e:
        logger.error(f"Stage automation failed for lead {payload.lead_id}: {e}")
        return StageChangeResult(success=False, lead_id=payload.lead_id, error=str(e))

    try:
        return await _run(store, capabilities, payload, lead, new_stage, old_stage, pipeline)
    except Exception as e:
        logger.exception(f"Stage automation crashed for lead {payload.lead_id}: {e}")
        return StageChangeResult(success=False, lead_id=payload.lead_id, error=str(e))


async def _run(
    store: MongoRecordStore,
    capabilities: CapabilityClient,
    payload: StageChangePayload,
    lead: Lead,
    new_stage: Stage,
    old_stage: Optional[Stage],
    pipeline: Optional[Pipeline],
) -> StageChangeResult:
    now = now_utc()
    performed_by = payload.performed_by
    referral_actions, errors = await score_referral(store, lead, new_stage, performed_by)

    # (action, write step it depends on)
    planned: List[Tuple[str, Optional[str]]] = [(a, None) for a in referral_actions]
    tags: List[str] = []
    tasks: List[dict] = []
    pending_notifications: List[Dict] = []
    patch: dict = {}
    invoked = set()

    rules: List[StageRule] = resolve_stage_rules(
        new_stage.name, is_won=new_stage.is_won, is_lost=new_stage.is_lost
    )
    for rule in rules:
        effects = RULES[rule]
        tags.extend(t for t in effects.tags if t not in tags)
        tasks.extend(build_task(t, lead, now) for t in effects.tasks)
        patch.update(lead_patch(effects, lead, now))

        if effects.capability and effects.capability not in invoked:
            invoked.add(effects.capability)
            if await invoke_capability(capabilities, effects.capability, lead):
                planned.append((CAPABILITY_ACTIONS[effects.capability], None))

        if effects.notification:
            template = effects.notification
            user_id = notification_recipient(template.recipient, lead, performed_by)
            if user_id:
                pending_notifications.append({
                    "user_id": user_id,
                    "title": template.title,
                    "message": template.message.format(name=lead.name),
                    "category": template.category,
                    "metadata": {"lead_id": lead.id, "stage": new_stage.name},
                })
            else:
                logger.warning(
                    f"Lead {lead.id}: no recipient for '{template.category}' notification"
                )

        if effects.action:
            planned.append((effects.action, TASKS if effects.tasks else PATCH))

    # Apply
    if tags:
        merged = lead.tags + [t for t in tags if t not in lead.tags]
        if merged != lead.tags:
            patch["tags"] = merged
        planned.append((f"Tags adicionadas: {', '.join(tags)}", PATCH))

    failed_steps: Set[str] = set()
    if patch:
        try:
            await store.update("crm_leads", {"id": lead.id}, patch)
        except StoreError as e:
            logger.error(f"Lead {lead.id}: patch {sorted(patch)} failed: {e}")
            failed_steps.add(PATCH)
            errors += 1

    if tasks:
        try:
            await store.insert("crm_tasks", tasks)
        except StoreError as e:
            logger.error(f"Lead {lead.id}: {len(tasks)} task(s) not created: {e}")
            failed_steps.add(TASKS)
            errors += 1
        else:
            planned.append((f"{len(tasks)} tarefa(s) criada(s)", TASKS))

    sent = 0
    for notification in pending_notifications:
        try:
            await notify(store, **notification)
        except StoreError as e:
            logger.error(f"Lead {lead.id}: notification '{notification['title']}' failed: {e}")
            errors += 1
        else:
            sent += 1
    if sent:
        planned.append((f"{sent} notificação(ões) enviada(s)", None))

    actions = [action for action, step in planned if step not in failed_steps]
    tags_added = [] if PATCH in failed_steps else tags
    tasks_created = 0 if TASKS in failed_steps else len(tasks)

    old_stage_name = old_stage.name if old_stage else None
    try:
        await log_lead_history(
            store,
            lead.id,
            "stage_automation",
            {
                "old_stage": old_stage_name,
                "new_stage": new_stage.name,
                "pipeline": pipeline.name if pipeline else None,
                "rules": [r.value for r in rules],
                "actions_executed": actions,
                "tags_added": tags_added,
                "tasks_created": tasks_created,
                "notifications_sent": sent,
            },
            performed_by,
        )
    except StoreError as e:
        logger.error(f"Lead {lead.id}: history entry not written: {e}")
        errors += 1

    logger.info(f"Lead {lead.id}: {len(actions)} automation(s) executed, {errors} error(s)")
    return StageChangeResult(
        success=True,
        lead_id=lead.id,
        old_stage_name=old_stage_name,
        new_stage_name=new_stage.name,
        actions=actions,
        tags_added=tags_added,
        tasks_created=tasks_created,
        notifications_sent=sent,
        errors=errors,
    )
