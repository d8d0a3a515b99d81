"""Health check endpoints for the sync service and its last run."""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.config import get_settings
from infrastructure.database import get_db
from infrastructure.database.models.analytics import GSCConnection, SyncRunLog, as_utc

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()

# A daily cron that has not completed for this long is reported as stale
STALE_AFTER = timedelta(hours=26)


def _service_info() -> dict:
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "cron_secret_configured": bool(settings.cron_secret),
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {"status": "healthy", **_service_info()}


@router.get("/health/db")
async def health_check_db(db: AsyncSession = Depends(get_db)):
    """Health check with database connectivity."""
    try:
        result = await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=5.0)
        result.scalar()
        db_status = "connected"
    except TimeoutError:
        logger.error("Health check DB timeout")
        db_status = "error: database timeout"
    except SQLAlchemyError as e:
        logger.error("Health check DB error: %s", str(e))
        db_status = "error: database check failed"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        **_service_info(),
    }


@router.get("/health/sync")
async def health_check_sync(db: AsyncSession = Depends(get_db)):
    """
    Report the most recent sync run and how many connections are scheduled.

    ``stale`` is set when no run has completed within STALE_AFTER.
    """
    try:
        active = await db.scalar(
            select(func.count()).select_from(GSCConnection).where(GSCConnection.is_active.is_(True))
        )
        last_run = (
            await db.execute(select(SyncRunLog).order_by(SyncRunLog.started_at.desc()).limit(1))
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error("Sync health check failed: %s", e)
        return {"status": "degraded", "sync": "error: sync tables unavailable", **_service_info()}

    if last_run is None:
        return {
            "status": "healthy",
            "active_connections": active,
            "last_run": None,
            "stale": True,
            **_service_info(),
        }

    completed_at = as_utc(last_run.completed_at)
    stale = completed_at is None or datetime.now(UTC) - completed_at > STALE_AFTER
    return {
        "status": "healthy",
        "active_connections": active,
        "last_run": {
            "started_at": as_utc(last_run.started_at).isoformat(),
            "completed_at": completed_at.isoformat() if completed_at else None,
            "trigger": last_run.trigger,
            "success_count": last_run.success_count,
            "error_count": last_run.error_count,
            "total_records": last_run.total_records,
        },
        "stale": stale,
        **_service_info(),
    }


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
