"""
Unique CRM - Health endpoint
"""

from fastapi import APIRouter
from config import now_iso

router = APIRouter(tags=["System"])

VERSION = "1.0.0"


@router.get("/health")
async def health():
    """Liveness only: does not touch the database."""
    return {"status": "healthy", "version": VERSION, "timestamp": now_iso()}
