"""
Deuce Match Engine API Server

FastAPI server exposing match scheduling, result consensus, disputes and
admin interventions.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn

from deuce.api.routes import router
from deuce.database import db
from deuce.services.engine import MatchEngine
from deuce.services.engine_config import EngineConfig
from deuce.services.maintenance_service import MatchMaintenanceService

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Deuce match engine API...")

    # Create tables missing from migrations (development fallback)
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    engine = MatchEngine.with_defaults(
        EngineConfig(), session_factory=lambda: db.AsyncSessionLocal()
    )
    app.state.engine = engine

    maintenance = MatchMaintenanceService(engine)
    app.state.maintenance = maintenance
    if os.getenv("DISABLE_MAINTENANCE_WORKER", "false").lower() != "true":
        try:
            maintenance.start()
            logger.info("Match maintenance worker started")
        except Exception as e:
            logger.error(f"Failed to start match maintenance worker: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down Deuce match engine API...")
    try:
        maintenance.stop()
    except Exception as e:
        logger.error(f"Error stopping match maintenance worker: {e}", exc_info=True)


app = FastAPI(
    title="Deuce Match Engine API",
    description="Match lifecycle, result confirmation and dispute resolution for racket-sport leagues",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware - origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
