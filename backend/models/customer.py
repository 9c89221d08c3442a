"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Unique CRM - Customer models (transactions + RFV profile)                   ║
║                                                                              ║
║  RULES:                                                                      ║
║  1. Transaction records are immutable; this engine only reads them           ║
║  2. Scores are always within [1, 5]                                          ║
║  3. segment is a pure function of (recency, frequency, value)                ║
║  4. Profiles are written only by the RFV recalculation job                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from datetime import date as Date, datetime
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum

logger = logging.getLogger("models")


class RecordKind(str, Enum):
    """The two transaction streams describing the same customers"""
    SOLD = "sold"           # revenue_records
    EXECUTED = "executed"   # executed_records


TRANSACTION_TABLES = {
    RecordKind.SOLD: "revenue_records",
    RecordKind.EXECUTED: "executed_records",
}


class CustomerSegment(str, Enum):
    CHAMPIONS = "champions"
    LOYAL = "loyal"
    POTENTIAL = "potential"
    PROMISING = "promising"
    NEW = "new"
    AT_RISK = "at_risk"
    CANNOT_LOSE = "cannot_lose"       # highest-value dormant customers
    HIBERNATING = "hibernating"
    LOST = "lost"
    NEED_ATTENTION = "need_attention"


def coerce_amount(value) -> Optional[float]:
    """
    Numbers pass through. Strings are parsed as "1500.50" or in the Brazilian
    "R$ 1.500,50" form. Anything else is None.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace("R$", "").replace(" ", "").strip()
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        return float(text)
    except ValueError:
        logger.warning(f"Unparseable amount: {value!r}")
        return None


class TransactionRecord(BaseModel):
    """One sale (revenue_records) or one executed service (executed_records)"""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    patient_name: Optional[str] = None
    patient_email: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_cpf: Optional[str] = None
    patient_prontuario: Optional[str] = None
    date: Optional[Union[datetime, Date, str]] = None
    amount: float = 0.0

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return coerce_amount(v) or 0.0


class CustomerProfile(BaseModel):
    """rfv_customers document"""
    model_config = ConfigDict(extra="ignore")

    name: str
    name_key: str

    # Best-available contact / identity fields
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    cpf: Optional[str] = None
    prontuario: Optional[str] = None

    first_purchase_date: str
    last_purchase_date: str
    total_purchases: int
    total_value: float
    average_ticket: float

    recency_score: int = Field(ge=1, le=5)
    frequency_score: int = Field(ge=1, le=5)
    value_score: int = Field(ge=1, le=5)
    segment: CustomerSegment

    days_since_last_purchase: int
    updated_at: str

    def to_document(self) -> dict:
        doc = self.model_dump()
        doc["segment"] = self.segment.value
        return doc
