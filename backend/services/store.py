"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Unique CRM - Record Store                                                   ║
║                                                                              ║
║  Narrow accessor over the MongoDB collections used by the lifecycle jobs:    ║
║  query / insert / upsert / update, plus one optional statistics helper.      ║
║                                                                              ║
║  RULES:                                                                      ║
║  - every driver error surfaces as StoreError (never a silent hang)           ║
║  - reads never return Mongo's _id                                            ║
║  - full scans go through fetch_all(), which stops on the first short page    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pymongo import ASCENDING, UpdateOne
from pymongo.errors import (
    BulkWriteError,
    DuplicateKeyError,
    OperationFailure,
    PyMongoError,
)

from config import PAGE_SIZE, now_iso
from services.batching import PartialBatchError

logger = logging.getLogger("record_store")

Row = Dict[str, Any]
SortSpec = List[Tuple[str, int]]

# Insertion order; _id is always present and unique, which keeps offset pages stable
DEFAULT_SORT: SortSpec = [("_id", ASCENDING)]


class StoreError(Exception):
    """Raised when a read or write against the store fails"""
    pass


class PartialWriteError(StoreError, PartialBatchError):
    """A batch write where some rows landed and some did not"""

    def __init__(self, message: str, written: int):
        PartialBatchError.__init__(self, message, succeeded=written)
        self.written = written


class MongoRecordStore:
    """Record store backed by a Motor database"""

    def __init__(self, db):
        self.db = db

    async def query(
        self,
        table: str,
        filter: Optional[Dict] = None,
        skip: int = 0,
        limit: int = PAGE_SIZE,
        sort: Optional[SortSpec] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> List[Row]:
        projection = {"_id": 0}
        if fields:
            projection.update({f: 1 for f in fields})
        try:
            cursor = self.db[table].find(
                filter or {}, projection, sort=sort or DEFAULT_SORT, skip=skip, limit=limit
            )
            return await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise StoreError(f"query {table} failed: {e}") from e

    async def find_one(self, table: str, filter: Dict) -> Optional[Row]:
        try:
            return await self.db[table].find_one(filter, {"_id": 0})
        except PyMongoError as e:
            raise StoreError(f"find_one {table} failed: {e}") from e

    async def count(self, table: str, filter: Optional[Dict] = None) -> int:
        try:
            return await self.db[table].count_documents(filter or {})
        except PyMongoError as e:
            raise StoreError(f"count {table} failed: {e}") from e

    async def insert(self, table: str, rows: List[Row]) -> int:
        """Insert rows, assigning an id where missing. Returns inserted count."""
        if not rows:
            return 0
        docs = [_with_identity(row) for row in rows]
        try:
            result = await self.db[table].insert_many(docs)
        except PyMongoError as e:
            raise StoreError(f"insert {table} failed: {e}") from e
        return len(result.inserted_ids)

    async def insert_unique(self, table: str, row: Row) -> bool:
        """
        Insert a single row guarded by a unique index.
        A uniqueness conflict is not an error: returns False.
        """
        doc = _with_identity(row)
        try:
            await self.db[table].insert_one(doc)
        except DuplicateKeyError:
            return False
        except PyMongoError as e:
            raise StoreError(f"insert {table} failed: {e}") from e
        return True

    async def upsert(self, table: str, rows: List[Row], conflict_key: str) -> int:
        """
        Create or overwrite rows matched on conflict_key in one unordered bulk
        write. Returns the row count. When only some rows fail, raises
        PartialWriteError carrying how many were written.
        """
        if not rows:
            return 0
        requests = []
        for row in rows:
            on_insert = {}
            if "id" not in row:
                on_insert["id"] = str(uuid.uuid4())
            if "created_at" not in row:
                on_insert["created_at"] = now_iso()
            update = {"$set": row}
            if on_insert:
                update["$setOnInsert"] = on_insert
            requests.append(UpdateOne({conflict_key: row[conflict_key]}, update, upsert=True))
        try:
            await self.db[table].bulk_write(requests, ordered=False)
        except BulkWriteError as e:
            failed = len(e.details.get("writeErrors", []))
            written = len(rows) - failed
            message = f"upsert {table}: {failed} of {len(rows)} rows failed"
            if written > 0:
                raise PartialWriteError(message, written=written) from e
            raise StoreError(message) from e
        except PyMongoError as e:
            raise StoreError(f"upsert {table} failed: {e}") from e
        return len(rows)

    async def update(self, table: str, filter: Dict, patch: Row) -> int:
        """Apply patch to every matching row. Returns modified count."""
        try:
            result = await self.db[table].update_many(filter, {"$set": patch})
        except PyMongoError as e:
            raise StoreError(f"update {table} failed: {e}") from e
        return result.modified_count

    async def sum_team_value(self, team_id: str) -> Optional[float]:
        """
        Server-side sum of the linked RFV total_value for a team's leads.
        Returns None when the backend cannot run the aggregation.
        """
        pipeline = [
            {"$match": {"team_id": team_id, "rfv_customer_id": {"$ne": None}}},
            {
                "$lookup": {
                    "from": "rfv_customers",
                    "localField": "rfv_customer_id",
                    "foreignField": "id",
                    "as": "rfv",
                }
            },
            {"$unwind": "$rfv"},
            {"$group": {"_id": None, "total": {"$sum": "$rfv.total_value"}}},
        ]
        try:
            result = await self.db.crm_leads.aggregate(pipeline).to_list(1)
        except OperationFailure as e:
            logger.warning(f"sum_team_value unavailable: {e}")
            return None
        except PyMongoError as e:
            raise StoreError(f"aggregate crm_leads failed: {e}") from e
        if not result:
            return 0.0
        return float(result[0].get("total") or 0)

    async def ensure_indexes(self):
        """Indexes the jobs rely on, including the ledger de-duplication key"""
        try:
            await self.db.cards.create_index(
                [("team_id", ASCENDING), ("reason", ASCENDING)], unique=True
            )
            await self.db.rfv_customers.create_index("name_key", unique=True)
            await self.db.rfv_customers.create_index("prontuario")
            await self.db.crm_leads.create_index("id", unique=True)
            await self.db.crm_leads.create_index("prontuario")
            await self.db.crm_leads.create_index("team_id")
            await self.db.crm_stages.create_index("id", unique=True)
            await self.db.crm_pipelines.create_index("id", unique=True)
            await self.db.crm_lead_history.create_index("lead_id")
        except PyMongoError as e:
            raise StoreError(f"ensure_indexes failed: {e}") from e


def _with_identity(row: Row) -> Row:
    doc = dict(row)
    doc.setdefault("id", str(uuid.uuid4()))
    doc.setdefault("created_at", now_iso())
    return doc


async def fetch_all(
    store: MongoRecordStore,
    table: str,
    filter: Optional[Dict] = None,
    page_size: int = PAGE_SIZE,
    sort: Optional[SortSpec] = None,
    fields: Optional[Sequence[str]] = None,
) -> List[Row]:
    """Read every matching row page by page until a page comes back short"""
    rows: List[Row] = []
    offset = 0
    while True:
        page = await store.query(
            table, filter, skip=offset, limit=page_size, sort=sort, fields=fields
        )
        rows.extend(page)
        if len(page) < page_size:
            break
        offset += page_size
    logger.info(f"Fetched {len(rows)} rows from {table}")
    return rows


def get_store() -> MongoRecordStore:
    """Store bound to the configured database"""
    from config import db
    return MongoRecordStore(db)
