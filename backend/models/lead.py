"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Unique CRM - Lead, pipeline and team models                                 ║
║                                                                              ║
║  RULES:                                                                      ║
║  1. team_id is set by the allocator and only changes on a redistribution run ║
║  2. stage_id changes (pipeline UI) are what trigger stage automation         ║
║  3. won_at / lost_at are written once by the won / lost stage rules          ║
║  4. tags is a set: additions are always a de-duplicated union                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional, List
from pydantic import BaseModel, ConfigDict, field_validator
from enum import Enum

from .customer import coerce_amount


class Temperature(str, Enum):
    COLD = "cold"
    WARM = "warm"
    HOT = "hot"


class LeadStatus(str, Enum):
    OPEN = "open"
    WON = "won"
    LOST = "lost"


class Team(BaseModel):
    """Static reference data: exactly two competing teams"""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    name: str


class Pipeline(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    name: str = ""
    pipeline_type: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return v or ""


class Stage(BaseModel):
    """crm_stages document. name is free text; is_won / is_lost mark terminal stages."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    name: str = ""
    pipeline_id: Optional[str] = None
    order_index: int = 0
    is_won: bool = False
    is_lost: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return v or ""

    @field_validator("order_index", mode="before")
    @classmethod
    def _order(cls, v):
        return v or 0

    @field_validator("is_won", "is_lost", mode="before")
    @classmethod
    def _flag(cls, v):
        return bool(v)


class Lead(BaseModel):
    """crm_leads document"""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    name: str = ""

    # Identity mirrored from the originating customer
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    cpf: Optional[str] = None
    prontuario: Optional[str] = None
    patient_data_id: Optional[str] = None
    rfv_customer_id: Optional[str] = None

    # Assignment
    team_id: Optional[str] = None
    assigned_to: Optional[str] = None

    # Pipeline position
    pipeline_id: Optional[str] = None
    stage_id: Optional[str] = None

    source: Optional[str] = None
    tags: List[str] = []
    temperature: Optional[str] = None
    status: Optional[str] = None
    won_at: Optional[str] = None
    lost_at: Optional[str] = None

    estimated_value: Optional[float] = None
    contract_value: Optional[float] = None
    next_contact_date: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return v or ""

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_default(cls, v):
        return v or []

    @field_validator("estimated_value", "contract_value", mode="before")
    @classmethod
    def _money(cls, v):
        return coerce_amount(v)


class PointLedgerEntry(BaseModel):
    """
    cards document: an append-only, signed point award.
    (team_id, reason) is unique; reason encodes the lead and the milestone.
    """
    model_config = ConfigDict(extra="ignore")

    team_id: str
    points: int
    reason: str
    applied_by: str
    date: str
    type: str = "bonus"
    lead_id: Optional[str] = None
