"""
OAuth token lifecycle for Search Console connections.

``ensure_valid_token`` returns a usable access token for a connection,
refreshing it through the Google token endpoint when it is within the safety
margin of expiry. Refreshes for one connection are serialised: an in-process
lock makes concurrent callers wait and re-read, and the UPDATE is guarded by
``token_version`` so two processes never both write a token.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.search.gsc_adapter import GSCAdapter
from core.errors import GSCAuthError
from core.security.encryption import TokenCipher, TokenDecryptionError
from infrastructure.database.models.analytics import GSCConnection, as_utc

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    """Ensures connections carry a valid access token."""

    def __init__(
        self,
        adapter: GSCAdapter,
        cipher: TokenCipher,
        safety_margin_seconds: int = 60,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.adapter = adapter
        self.cipher = cipher
        self.safety_margin = timedelta(seconds=safety_margin_seconds)
        self.clock = clock
        # Entries vanish once no caller holds the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, connection_id: str) -> asyncio.Lock:
        lock = self._locks.get(connection_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[connection_id] = lock
        return lock

    def is_token_fresh(self, connection: GSCConnection) -> bool:
        """True while now < expiry - safety margin."""
        return self.clock() < as_utc(connection.token_expiry) - self.safety_margin

    def _decrypt(self, value: str, what: str) -> str:
        try:
            return self.cipher.decrypt(value)
        except TokenDecryptionError as e:
            raise GSCAuthError(f"Stored {what} cannot be decrypted") from e

    async def _reload(self, db: AsyncSession, connection: GSCConnection) -> GSCConnection:
        await db.refresh(connection)
        return connection

    async def ensure_valid_token(
        self,
        db: AsyncSession,
        connection: GSCConnection,
        force: bool = False,
    ) -> str:
        """
        Return a valid access token for ``connection``.

        Args:
            db: Session the connection belongs to
            connection: The connection row
            force: Refresh even if the stored token looks fresh (used after
                upstream rejected it)

        Returns:
            The decrypted access token

        Raises:
            GSCAuthError: If the token cannot be refreshed; the connection
                stays active and the caller decides what to do
        """
        if not force and self.is_token_fresh(connection):
            return self._decrypt(connection.access_token_encrypted, "access token")

        stale_version = connection.token_version
        async with self._lock_for(connection.id):
            # Another caller may have refreshed while we waited
            connection = await self._reload(db, connection)
            if connection.token_version != stale_version and self.is_token_fresh(connection):
                logger.info(
                    "Token for connection %s refreshed concurrently, reusing it",
                    connection.id,
                )
                return self._decrypt(connection.access_token_encrypted, "access token")
            if not force and self.is_token_fresh(connection):
                return self._decrypt(connection.access_token_encrypted, "access token")

            return await self._refresh(db, connection)

    async def _refresh(self, db: AsyncSession, connection: GSCConnection) -> str:
        refresh_token = self._decrypt(connection.refresh_token_encrypted, "refresh token")
        logger.info(
            "Refreshing access token for connection %s (expires %s)",
            connection.id,
            as_utc(connection.token_expiry).isoformat(),
            extra={"connection_id": connection.id},
        )

        grant = await asyncio.to_thread(self.adapter.refresh_access_token, refresh_token)

        values = {
            "access_token_encrypted": self.cipher.encrypt(grant.access_token),
            "token_expiry": grant.expires_at,
            "token_version": connection.token_version + 1,
        }
        if grant.refresh_token:
            values["refresh_token_encrypted"] = self.cipher.encrypt(grant.refresh_token)

        result = await db.execute(
            update(GSCConnection)
            .where(
                GSCConnection.id == connection.id,
                GSCConnection.token_version == connection.token_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Lost the race to another process; use the token it stored
            await db.rollback()
            connection = await self._reload(db, connection)
            logger.warning(
                "Concurrent token refresh detected for connection %s, using stored token",
                connection.id,
            )
            return self._decrypt(connection.access_token_encrypted, "access token")

        await db.commit()
        await self._reload(db, connection)
        logger.info(
            "Refreshed access token for connection %s, valid until %s",
            connection.id,
            grant.expires_at.isoformat(),
        )
        return grant.access_token


async def load_connection(db: AsyncSession, connection_id: str) -> Optional[GSCConnection]:
    """Fetch one connection by id."""
    result = await db.execute(select(GSCConnection).where(GSCConnection.id == connection_id))
    return result.scalar_one_or_none()
