"""
Unique CRM - Lead history

Audit trail of automated actions on a lead.
Single function to call from any service.
"""

import uuid
from typing import Optional

from config import SYSTEM_USER_ID, now_iso
from services.store import MongoRecordStore


async def log_lead_history(
    store: MongoRecordStore,
    lead_id: str,
    action: str,
    details: Optional[dict] = None,
    performed_by: Optional[str] = None,
) -> dict:
    """
    Write a single entry to the crm_lead_history collection.

    Args:
        action: e.g. stage_automation
        details: free-form dict (old_stage, new_stage, actions_executed, ...)
        performed_by: user id; batch jobs record the system user
    """
    entry = {
        "id": str(uuid.uuid4()),
        "lead_id": lead_id,
        "action": action,
        "details": details or {},
        "performed_by": performed_by or SYSTEM_USER_ID,
        "created_at": now_iso(),
    }
    await store.insert("crm_lead_history", [entry])
    return entry
