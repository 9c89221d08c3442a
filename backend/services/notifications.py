"""
Notification sink: rows in the notifications collection, read by the app's
notification dropdown.
"""

import uuid
from typing import Optional

from config import now_iso
from services.store import MongoRecordStore


async def notify(
    store: MongoRecordStore,
    user_id: str,
    title: str,
    message: str,
    category: str,
    metadata: Optional[dict] = None,
) -> dict:
    """
    Write a single notification.

    Args:
        user_id: recipient
        category: e.g. lead_proposal, lead_closing, sale_won, ambassador
        metadata: free-form dict (lead_id, stage, ...)
    """
    notification = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "title": title,
        "message": message,
        "type": category,
        "metadata": metadata or {},
        "read": False,
        "created_at": now_iso(),
    }
    await store.insert("notifications", [notification])
    return notification
