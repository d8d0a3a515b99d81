"""
Scheduled job endpoints.

The Search Console sync is triggered by an external scheduler over HTTP. The
request is authenticated with the shared cron secret before any work starts.
"""

import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_sync_orchestrator, verify_cron_secret
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.sync import CronSyncResponse
from core.errors import SyncHarnessError
from infrastructure.database import get_db
from services.gsc_sync import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


@router.api_route(
    "/gsc-sync",
    methods=["GET", "POST"],
    response_model=CronSyncResponse,
    dependencies=[Depends(verify_cron_secret)],
)
@limiter.limit(get_rate_limit("cron_sync"))
async def run_gsc_sync(
    request: Request,
    db: AsyncSession = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
    connection_id: Annotated[Optional[List[str]], Query()] = None,
    refresh_properties: bool = False,
):
    """
    Sync Search Console data for every active connection.

    Per-property failures are reported in ``syncResults`` with a 200; only a
    batch that could not run at all returns 500.
    """
    trigger = "manual" if connection_id else "cron"
    try:
        summary = await orchestrator.run_batch(
            db,
            trigger=trigger,
            connection_ids=connection_id,
            force_refresh_properties=refresh_properties,
        )
    except SyncHarnessError as e:
        logger.error("GSC sync run aborted: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="GSC sync could not run",
        )

    return CronSyncResponse.from_summary(summary)
