"""
Persistence for aggregated Search Console results and sync bookkeeping.

Results are upserted on (property_id, window_start, window_end): re-running a
window overwrites the stored row instead of adding a second one.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.analytics import (
    AggregatedResult,
    PropertySyncResult,
    SyncRunSummary,
    SyncWindow,
)
from core.errors import PersistError
from infrastructure.database.models.analytics import (
    GSCConnection,
    GSCPerformanceData,
    GSCProperty,
    SyncRunLog,
)

logger = logging.getLogger(__name__)

# Columns overwritten when a window is re-synced
_UPSERT_COLUMNS = (
    "total_clicks",
    "total_impressions",
    "avg_ctr",
    "avg_position",
    "queries",
    "pages",
    "countries",
    "devices",
    "row_count",
    "truncated",
    "updated_at",
)


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise PersistError(f"Upsert not supported for dialect {dialect!r}")


class SyncRepository:
    """Reads and writes sync results for one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert_result(
        self,
        property_id: str,
        window: SyncWindow,
        result: AggregatedResult,
    ) -> None:
        """
        Store the aggregate for a property and window, and stamp the property.

        A result without a daily series keeps the stored one. Commits on
        success; rolls back and raises PersistError on failure.
        """
        now = datetime.now(timezone.utc)
        insert = _insert_for(self.db)
        stmt = insert(GSCPerformanceData).values(
            id=str(uuid4()),
            property_id=property_id,
            window_start=window.start_date,
            window_end=window.end_date,
            total_clicks=result.totals.clicks,
            total_impressions=result.totals.impressions,
            avg_ctr=result.totals.ctr,
            avg_position=result.totals.average_position,
            queries=[e.to_dict() for e in result.queries],
            pages=[e.to_dict() for e in result.pages],
            countries=[e.to_dict() for e in result.countries],
            devices=[e.to_dict() for e in result.devices],
            daily=[p.to_dict() for p in result.daily] if result.daily is not None else None,
            row_count=result.row_count,
            truncated=result.truncated,
            created_at=now,
            updated_at=now,
        )
        columns = _UPSERT_COLUMNS
        if result.daily is not None:
            columns += ("daily",)
        stmt = stmt.on_conflict_do_update(
            index_elements=["property_id", "window_start", "window_end"],
            set_={column: getattr(stmt.excluded, column) for column in columns},
        )

        try:
            await self.db.execute(stmt)
            await self.db.execute(
                update(GSCProperty)
                .where(GSCProperty.id == property_id)
                .values(last_sync_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to store results for property %s: %s", property_id, e)
            raise PersistError(f"Failed to store results: {e.__class__.__name__}") from e

    async def record_sync_outcome(
        self,
        connection: GSCConnection,
        failures: list[PropertySyncResult],
    ) -> None:
        """Stamp last_sync_at and replace sync_errors with this run's failures."""
        connection_id = connection.id
        connection.last_sync_at = datetime.now(timezone.utc)
        connection.sync_errors = [
            {
                "property_id": f.property_id,
                "site_url": f.site_url,
                "error": f.error,
                "error_kind": f.error_kind.value if f.error_kind else None,
            }
            for f in failures
        ]
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistError(f"Failed to update connection {connection_id}") from e

    async def append_run_log(self, summary: SyncRunSummary) -> SyncRunLog:
        """Insert the audit row for a finished run."""
        entry = SyncRunLog(
            started_at=summary.started_at,
            completed_at=summary.completed_at,
            trigger=summary.trigger,
            success_count=summary.success_count,
            error_count=summary.error_count,
            total_records=summary.total_records,
            summary=summary.to_dict(),
        )
        self.db.add(entry)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistError("Failed to write sync run log") from e
        return entry

    async def get_result(
        self, property_id: str, start: date, end: date
    ) -> Optional[GSCPerformanceData]:
        result = await self.db.execute(
            select(GSCPerformanceData).where(
                GSCPerformanceData.property_id == property_id,
                GSCPerformanceData.window_start == start,
                GSCPerformanceData.window_end == end,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def latest_results(self, connection_id: str) -> list[GSCPerformanceData]:
        """Most recent stored window for each property of a connection."""
        result = await self.db.execute(
            select(GSCPerformanceData)
            .join(GSCProperty, GSCProperty.id == GSCPerformanceData.property_id)
            .where(GSCProperty.connection_id == connection_id)
            .order_by(GSCProperty.site_url, GSCPerformanceData.window_end.desc())
        )
        latest: dict[str, GSCPerformanceData] = {}
        for row in result.scalars().all():
            latest.setdefault(row.property_id, row)
        return list(latest.values())
