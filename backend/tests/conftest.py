"""
Shared fixtures: an in-memory Motor database (mongomock-motor) behind the
real MongoRecordStore, and a recording stand-in for the downstream functions.
"""

import os
import sys
import uuid

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from services.capabilities import CapabilityError
from services.store import MongoRecordStore


@pytest_asyncio.fixture
async def store():
    db = AsyncMongoMockClient()[f"unique_crm_test_{uuid.uuid4().hex[:8]}"]
    s = MongoRecordStore(db)
    await s.ensure_indexes()
    return s


class FakeCapabilities:
    """Records every call; names listed in `failing` raise CapabilityError"""

    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    async def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.failing:
            raise CapabilityError(f"{name}: HTTP 500")
        return {"success": True}

    async def qualify(self, lead_id):
        return await self._record("qualify", lead_id)

    async def award_gamification_points(self, user_id, action, lead_id, value):
        return await self._record("award_gamification_points", user_id, action, lead_id, value)

    async def recommend_procedures(self, lead_id):
        return await self._record("recommend_procedures", lead_id)

    def names(self):
        return [c[0] for c in self.calls]


@pytest.fixture
def capabilities():
    return FakeCapabilities()
