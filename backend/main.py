"""
EngageOS - FastAPI Application Entry Point
Proximity engagement detection service for the kiosk
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.database import init_db
from app.utils.logger import setup_logging

# Setup logging
setup_logging("DEBUG" if settings.DEBUG else "INFO")
logger = logging.getLogger("engageos.main")

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle manager"""
    logger.info("=" * 60)
    logger.info("  EngageOS Proximity Engine - Starting")
    logger.info("=" * 60)

    # Initialize database
    init_db()
    logger.info("Database initialized")

    from app.services.engine_service import get_engine_service
    service = get_engine_service()
    if settings.ENGINE_AUTOSTART:
        await service.start()
        logger.info("Sensor loop running")
    else:
        logger.info("ENGINE_AUTOSTART disabled; engine is driven manually")

    logger.info(f"Environment: {settings.ENGAGE_ENV}")
    logger.info(f"Tenant: {settings.TENANT_ID}")
    logger.info(f"CORS Origins: {settings.cors_origins_list}")
    logger.info("EngageOS is ready!")
    logger.info("=" * 60)

    yield

    logger.info("EngageOS shutting down...")
    if service.running:
        await service.stop()
    else:
        service.engine.shutdown()


# Create FastAPI app
app = FastAPI(
    title="EngageOS - Proximity Engagement Engine",
    description="Walk-up detection, zone triggers and adaptive threshold learning",
    version=VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from app.routers import detection

app.include_router(detection.router)
app.include_router(detection.ws_router)


# Health check endpoint
@app.get("/health")
async def health_check():
    from app.services.engine_service import get_engine_service
    service = get_engine_service()
    snapshot = service.engine.snapshot
    return {
        "status": "healthy",
        "service": "EngageOS",
        "version": VERSION,
        "loop_running": service.running,
        "zone": snapshot.zone.label if snapshot else None,
        "learning": service.engine.learner.is_learning,
    }


@app.get("/api/info")
def api_info():
    return {
        "name": "EngageOS API",
        "version": VERSION,
        "description": "Proximity engagement detection",
        "endpoints": {
            "proximity": "/api/proximity",
            "websocket_detection": "/ws/proximity/detection",
            "websocket_triggers": "/ws/proximity/triggers",
            "websocket_feedback": "/ws/proximity/feedback",
            "health": "/health",
        }
    }
