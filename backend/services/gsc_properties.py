"""
Property enumeration for Search Console connections.

Properties are cached in ``gsc_properties``. The upstream site list is only
consulted on first use (no cached properties) or when a refresh is forced;
properties that disappear upstream are deactivated, never deleted.
"""

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.search.gsc_adapter import GSCAdapter
from infrastructure.database.models.analytics import GSCConnection, GSCProperty

logger = logging.getLogger(__name__)

# Listed by sites.list but not verified; can't be queried
UNVERIFIED_PERMISSION = "siteUnverifiedUser"


class PropertyEnumerator:
    """Resolves the set of properties to sync for a connection."""

    def __init__(self, adapter: GSCAdapter):
        self.adapter = adapter

    async def cached_properties(
        self, db: AsyncSession, connection: GSCConnection
    ) -> list[GSCProperty]:
        """Active properties stored locally, without calling upstream."""
        result = await db.execute(
            select(GSCProperty)
            .where(
                GSCProperty.connection_id == connection.id,
                GSCProperty.is_active.is_(True),
            )
            .order_by(GSCProperty.site_url)
        )
        return list(result.scalars().all())

    async def resolve_properties(
        self,
        db: AsyncSession,
        connection: GSCConnection,
        access_token: str,
        force_refresh: bool = False,
    ) -> list[GSCProperty]:
        """
        Return the active properties for a connection.

        Args:
            db: Database session
            connection: Connection whose properties are wanted
            access_token: Valid access token for the upstream site list
            force_refresh: Re-list upstream even when properties are cached

        Raises:
            GSCQueryError: If the upstream site list cannot be fetched
        """
        properties = await self.cached_properties(db, connection)
        if properties and not force_refresh:
            return properties

        logger.info(
            "Refreshing properties for connection %s from Search Console (%s)",
            connection.id,
            "forced" if force_refresh else "none cached",
        )
        sites = await asyncio.to_thread(self.adapter.list_sites, access_token)
        await self._sync_sites(db, connection, sites)
        return await self.cached_properties(db, connection)

    async def _sync_sites(
        self,
        db: AsyncSession,
        connection: GSCConnection,
        sites: list[dict],
    ) -> None:
        result = await db.execute(
            select(GSCProperty).where(GSCProperty.connection_id == connection.id)
        )
        existing = {prop.site_url: prop for prop in result.scalars().all()}

        seen: set[str] = set()
        for site in sites:
            site_url = site.get("siteUrl")
            permission = site.get("permissionLevel", "siteOwner")
            if not site_url or permission == UNVERIFIED_PERMISSION:
                continue
            seen.add(site_url)

            prop = existing.get(site_url)
            if prop is None:
                db.add(
                    GSCProperty(
                        connection_id=connection.id,
                        site_url=site_url,
                        permission_level=permission,
                        is_active=True,
                    )
                )
            else:
                prop.permission_level = permission
                prop.is_active = True

        deactivated = 0
        for site_url, prop in existing.items():
            if site_url not in seen and prop.is_active:
                prop.is_active = False
                deactivated += 1

        await db.commit()
        logger.info(
            "Connection %s: %d verified properties upstream, %d deactivated",
            connection.id,
            len(seen),
            deactivated,
        )
