"""
API dependencies for trigger authentication and service wiring.
"""

import hmac
import logging
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Header, HTTPException, status

from infrastructure.config import get_settings, get_sync_config
from services.gsc_sync import SyncOrchestrator, build_sync_orchestrator

logger = logging.getLogger(__name__)


async def verify_cron_secret(
    authorization: Annotated[Optional[str], Header()] = None,
) -> None:
    """
    Reject the request unless it carries ``Authorization: Bearer <CRON_SECRET>``.

    With no secret configured every call is rejected.
    """
    secret = get_settings().cron_secret
    if not secret or not authorization:
        logger.warning("Cron request rejected: %s", "no secret configured" if not secret else "missing header")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    expected = f"Bearer {secret}"
    if not hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Cron request rejected: bad secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@lru_cache
def get_sync_orchestrator() -> SyncOrchestrator:
    """Process-wide orchestrator so token refresh locks are shared between runs."""
    return build_sync_orchestrator(get_sync_config())
