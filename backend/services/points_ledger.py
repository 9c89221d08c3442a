"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Unique CRM - Team point ledger ("cards")                                    ║
║                                                                              ║
║  Append-only. (team_id, reason) is UNIQUE at the store level: the reason     ║
║  encodes lead + milestone, so replaying a transition cannot double-award.    ║
║  A uniqueness conflict means "already awarded" and is not an error.          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Optional

from config import SYSTEM_USER_ID, today_iso
from models.lead import PointLedgerEntry
from services.store import MongoRecordStore

logger = logging.getLogger("points_ledger")


async def award_once(
    store: MongoRecordStore,
    team_id: str,
    points: int,
    reason: str,
    applied_by: Optional[str] = None,
    lead_id: Optional[str] = None,
) -> bool:
    """Insert the award unless (team_id, reason) exists. Returns True if inserted."""
    entry = PointLedgerEntry(
        team_id=team_id,
        points=points,
        reason=reason,
        applied_by=applied_by or SYSTEM_USER_ID,
        date=today_iso(),
        lead_id=lead_id,
    )
    inserted = await store.insert_unique("cards", entry.model_dump())
    if inserted:
        logger.info(f"Team {team_id}: +{points} pts ({reason})")
    else:
        logger.info(f"Team {team_id}: award already recorded ({reason})")
    return inserted
