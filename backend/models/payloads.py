"""
Trigger payloads and job results.

Bodies on the wire are camelCase; Python attributes stay snake_case.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from enum import Enum


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ==================== STAGE AUTOMATION ====================

class StageChangePayload(CamelModel):
    lead_id: str
    old_stage_id: Optional[str] = None
    new_stage_id: str
    performed_by: Optional[str] = None


class StageChangeResult(CamelModel):
    success: bool
    lead_id: Optional[str] = None
    old_stage_name: Optional[str] = None
    new_stage_name: Optional[str] = None
    actions: List[str] = []
    tags_added: List[str] = []
    tasks_created: int = 0
    notifications_sent: int = 0
    # Writes that failed after the lead was loaded; the run still succeeds
    errors: int = 0
    error: Optional[str] = None
    not_found: bool = Field(default=False, exclude=True)


# ==================== LEAD ALLOCATION ====================

class AllocationAction(str, Enum):
    IMPORT_AND_DISTRIBUTE = "import_and_distribute"
    IMPORT_ONLY = "import_only"
    DISTRIBUTE_ONLY = "distribute_only"

    @property
    def imports(self) -> bool:
        return self in (AllocationAction.IMPORT_AND_DISTRIBUTE, AllocationAction.IMPORT_ONLY)

    @property
    def distributes(self) -> bool:
        return self in (AllocationAction.IMPORT_AND_DISTRIBUTE, AllocationAction.DISTRIBUTE_ONLY)


class AllocationPayload(CamelModel):
    action: AllocationAction = AllocationAction.IMPORT_AND_DISTRIBUTE


class TeamSummary(CamelModel):
    team_id: str
    name: str
    lead_count: int
    total_value: float


class AllocationSummary(CamelModel):
    total_leads: int
    per_team: List[TeamSummary]
    imported: int = 0
    linked: int = 0
    errors: int = 0


class AllocationResult(CamelModel):
    success: bool
    summary: Optional[AllocationSummary] = None
    error: Optional[str] = None
    not_found: bool = Field(default=False, exclude=True)


# ==================== RFV ====================

class RfvStats(CamelModel):
    source_record_counts: Dict[str, int]
    unique_customers: int
    updated: int
    errors: int


class RfvResult(CamelModel):
    success: bool
    stats: Optional[RfvStats] = None
    error: Optional[str] = None


class RfvImportResult(CamelModel):
    success: bool
    total: int = 0
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    error: Optional[str] = None
