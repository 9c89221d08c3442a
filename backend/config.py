"""
Configuration and shared helpers
"""

import os
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Load .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'unique_crm')
MONGO_TIMEOUT_MS = int(os.environ.get('MONGO_TIMEOUT_MS', '10000'))

client = AsyncIOMotorClient(
    MONGO_URL,
    serverSelectionTimeoutMS=MONGO_TIMEOUT_MS,
    socketTimeoutMS=MONGO_TIMEOUT_MS * 3,
)
db = client[DB_NAME]

# Downstream functions (qualification AI, gamification, procedure recommendations)
FUNCTIONS_BASE_URL = os.environ.get('FUNCTIONS_BASE_URL', 'http://localhost:54321/functions/v1')
FUNCTIONS_API_KEY = os.environ.get('FUNCTIONS_API_KEY', '')
CAPABILITY_TIMEOUT = float(os.environ.get('CAPABILITY_TIMEOUT', '30'))

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


# ==================== DOMAIN CONSTANTS ====================

# Actor recorded on rows written by batch jobs
SYSTEM_USER_ID = "00000000-0000-0000-0000-000000000000"

# The two competing teams, in distribution order (even index -> first)
TEAM_NAMES = ("Lioness Team", "Tróia Team")

# Backing store caps rows per query
PAGE_SIZE = 1000
RFV_UPSERT_BATCH_SIZE = 100
LEAD_IMPORT_BATCH_SIZE = 100
TEAM_UPDATE_BATCH_SIZE = 500
WRITE_CONCURRENCY = int(os.environ.get('WRITE_CONCURRENCY', '4'))

DEFAULT_PIPELINE_TYPE = "FEEGOW"
RFV_PIPELINE_ID = os.environ.get('RFV_PIPELINE_ID', '66666666-6666-6666-6666-666666666666')


# ==================== HELPERS ====================

def now_utc() -> datetime:
    """Current UTC datetime"""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current UTC datetime as ISO string"""
    return now_utc().isoformat()


def today_iso() -> str:
    """Current UTC date as YYYY-MM-DD"""
    return now_utc().date().isoformat()
