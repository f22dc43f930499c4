from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from tablebill.config import settings
from tablebill.core.database import check_database_health

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness_check():
    """Readiness check endpoint that includes database connectivity."""
    db_status = await check_database_health()

    if not db_status:
        logger.warning("health.ready.database_unavailable")
        raise HTTPException(status_code=503, detail="Database is not available")

    return {
        "status": "ready",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if settings.database_url else "not configured",
        "stripe": "configured" if settings.stripe_secret_key else "not configured",
    }
