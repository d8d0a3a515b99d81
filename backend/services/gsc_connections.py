"""
Connection lifecycle: create on OAuth callback, deactivate on disconnect.

Connections are never hard-deleted so their sync history stays queryable.
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.search.gsc_adapter import GSCAdapter, TokenGrant
from core.errors import GSCAuthError
from core.security.encryption import TokenCipher
from infrastructure.database.models.analytics import GSCConnection, GSCProperty

logger = logging.getLogger(__name__)


async def get_active_connection(db: AsyncSession, user_id: str) -> Optional[GSCConnection]:
    """Get a user's active connection, if any."""
    result = await db.execute(
        select(GSCConnection).where(
            GSCConnection.user_id == user_id,
            GSCConnection.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def list_active_connections(
    db: AsyncSession, connection_ids: Optional[Sequence[str]] = None
) -> list[GSCConnection]:
    """All active connections in a stable order, optionally restricted to ids."""
    query = select(GSCConnection).where(GSCConnection.is_active.is_(True))
    if connection_ids:
        query = query.where(GSCConnection.id.in_(list(connection_ids)))
    result = await db.execute(
        query.order_by(GSCConnection.connected_at, GSCConnection.id)
    )
    return list(result.scalars().all())


async def store_connection(
    db: AsyncSession,
    cipher: TokenCipher,
    user_id: str,
    grant: TokenGrant,
    email: Optional[str] = None,
) -> GSCConnection:
    """
    Persist a fresh OAuth grant as the user's active connection.

    Any previously active connection for the user is deactivated first so at
    most one stays active.

    Raises:
        GSCAuthError: If the grant carries no refresh token (offline access
            was not granted, so the connection could never be synced)
    """
    if not grant.refresh_token:
        raise GSCAuthError("Google did not return a refresh token; re-consent is required")

    await db.execute(
        update(GSCConnection)
        .where(GSCConnection.user_id == user_id, GSCConnection.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )

    connection = GSCConnection(
        user_id=user_id,
        email=email,
        access_token_encrypted=cipher.encrypt(grant.access_token),
        refresh_token_encrypted=cipher.encrypt(grant.refresh_token),
        token_expiry=grant.expires_at,
        connected_at=datetime.now(timezone.utc),
        is_active=True,
        sync_errors=[],
    )
    db.add(connection)
    await db.commit()
    await db.refresh(connection)

    logger.info("Stored GSC connection %s for user %s", connection.id, user_id)
    return connection


async def deactivate_connection(db: AsyncSession, connection: GSCConnection) -> None:
    """Disconnect: deactivate the connection and its properties, keep the rows."""
    connection.is_active = False
    await db.execute(
        update(GSCProperty)
        .where(GSCProperty.connection_id == connection.id)
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Deactivated GSC connection %s", connection.id)


async def connect_with_code(
    db: AsyncSession,
    adapter: GSCAdapter,
    cipher: TokenCipher,
    user_id: str,
    code: str,
    email: Optional[str] = None,
) -> GSCConnection:
    """Finish the OAuth consent flow: exchange the code and store the grant."""
    grant = await asyncio.to_thread(adapter.exchange_code, code)
    return await store_connection(db, cipher, user_id, grant, email=email)
