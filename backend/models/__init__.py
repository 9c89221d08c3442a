"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Unique CRM - Models Package                                                 ║
║                                                                              ║
║  from models import Lead, CustomerProfile, StageChangePayload, etc.          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Customers / RFV
from .customer import (
    RecordKind,
    TRANSACTION_TABLES,
    CustomerSegment,
    TransactionRecord,
    CustomerProfile,
)

# CRM
from .lead import (
    Temperature,
    LeadStatus,
    Team,
    Pipeline,
    Stage,
    Lead,
    PointLedgerEntry,
)

# Trigger payloads / results
from .payloads import (
    StageChangePayload,
    StageChangeResult,
    AllocationAction,
    AllocationPayload,
    TeamSummary,
    AllocationSummary,
    AllocationResult,
    RfvStats,
    RfvResult,
    RfvImportResult,
)

__all__ = [
    # Customers / RFV
    "RecordKind",
    "TRANSACTION_TABLES",
    "CustomerSegment",
    "TransactionRecord",
    "CustomerProfile",
    # CRM
    "Temperature",
    "LeadStatus",
    "Team",
    "Pipeline",
    "Stage",
    "Lead",
    "PointLedgerEntry",
    # Payloads
    "StageChangePayload",
    "StageChangeResult",
    "AllocationAction",
    "AllocationPayload",
    "TeamSummary",
    "AllocationSummary",
    "AllocationResult",
    "RfvStats",
    "RfvResult",
    "RfvImportResult",
]
