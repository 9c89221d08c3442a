"""
Unique CRM - Lifecycle API

Event-triggered jobs: RFV recomputation, team lead distribution and
pipeline stage automation. No in-process scheduler: every run is one request.

Start with:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from config import CORS_ORIGINS, LOG_LEVEL, client

# Logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("unique_crm")

app = FastAPI(
    title="Unique CRM",
    description="Customer lifecycle automation: RFV, team distribution, stage automation",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== ROUTES ====================

from routes import automation, distribution, health, rfv

app.include_router(health.router, prefix="/api")
app.include_router(automation.router, prefix="/api")
app.include_router(distribution.router, prefix="/api")
app.include_router(rfv.router, prefix="/api")


# ==================== STARTUP ====================

@app.on_event("startup")
async def startup():
    logger.info("Unique CRM lifecycle API starting")

    from services.store import get_store
    await get_store().ensure_indexes()

    logger.info("MongoDB indexes ensured")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
