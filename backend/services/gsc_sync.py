"""
Batch synchronisation of Search Console data for every active connection.

One ``run_batch`` call walks the active connections, makes sure each has a
usable token, resolves its properties and then, property by property, fetches
the window's rows (plus a per-day series), aggregates them and upserts the
result. A failing property is recorded and the loop moves on; only failing to
load the connections at all aborts the batch.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.search.gsc_adapter import GSCAdapter, QueryResult, create_gsc_adapter
from core.domain.analytics import (
    PropertySyncResult,
    SyncPhase,
    SyncRunSummary,
    SyncWindow,
)
from core.errors import (
    GSCAuthError,
    GSCQueryError,
    PersistError,
    QueryErrorKind,
    SyncError,
    SyncErrorKind,
    SyncHarnessError,
    error_kind_of,
)
from core.interfaces import Pacer
from core.security.encryption import TokenCipher
from infrastructure.config.settings import SyncConfig
from infrastructure.database.models.analytics import GSCConnection
from services.gsc_connections import list_active_connections
from services.gsc_properties import PropertyEnumerator
from services.gsc_token_manager import TokenManager
from services.search_aggregation import aggregate, aggregate_daily
from services.sync_persistence import SyncRepository

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("gsc.sync.audit")


class AsyncSleepPacer(Pacer):
    """Sleeps a fixed delay between property fetches."""

    def __init__(self, delay_seconds: float = 2.0):
        self.delay_seconds = delay_seconds

    async def pause(self) -> None:
        await asyncio.sleep(self.delay_seconds)


class NoDelayPacer(Pacer):
    """Counts pauses without sleeping."""

    def __init__(self):
        self.pauses = 0

    async def pause(self) -> None:
        self.pauses += 1


@dataclass
class SyncRun:
    """Mutable state of one batch. The orchestrator itself is shared between runs."""

    summary: SyncRunSummary
    window: SyncWindow
    repo: SyncRepository
    phase: SyncPhase = SyncPhase.IDLE
    fetches: int = 0

    @property
    def run_id(self) -> str:
        return self.summary.run_id


class SyncOrchestrator:
    """Runs sync batches. Safe to reuse across invocations."""

    def __init__(
        self,
        config: SyncConfig,
        adapter: GSCAdapter,
        token_manager: TokenManager,
        enumerator: PropertyEnumerator,
        pacer: Optional[Pacer] = None,
        today: Optional[date] = None,
    ):
        self.config = config
        self.adapter = adapter
        self.token_manager = token_manager
        self.enumerator = enumerator
        self.pacer = pacer or AsyncSleepPacer(config.property_delay_seconds)
        self.today = today

    def build_window(self) -> SyncWindow:
        return SyncWindow.trailing(
            self.config.window_days,
            lag_days=self.config.data_lag_days,
            today=self.today,
            dimensions=self.config.dimensions,
            row_limit=self.config.row_limit,
        )

    def _enter(self, run: SyncRun, phase: SyncPhase, **extra) -> None:
        run.phase = phase
        logger.debug(
            "Sync run %s entering %s", run.run_id, phase.value,
            extra={"run_id": run.run_id, "phase": phase.value, **extra},
        )

    async def run_batch(
        self,
        db: AsyncSession,
        trigger: str = "cron",
        connection_ids: Optional[Sequence[str]] = None,
        force_refresh_properties: bool = False,
    ) -> SyncRunSummary:
        """
        Sync every active connection (or only ``connection_ids``).

        Args:
            db: Database session used for the whole batch
            trigger: What started the run ("cron" or "manual"), for the audit log
            connection_ids: Restrict the run to these connections
            force_refresh_properties: Re-list properties upstream first

        Returns:
            SyncRunSummary with one result per property (or per connection
            when the connection itself failed)

        Raises:
            SyncHarnessError: If the active connections cannot be loaded
        """
        run = SyncRun(
            summary=SyncRunSummary(
                run_id=str(uuid4()),
                started_at=datetime.now(timezone.utc),
                trigger=trigger,
            ),
            window=self.build_window(),
            repo=SyncRepository(db),
        )
        summary = run.summary
        run_id = run.run_id

        self._enter(run, SyncPhase.ENUMERATING)
        try:
            connections = await list_active_connections(db, connection_ids)
        except SQLAlchemyError as e:
            logger.error("Could not load GSC connections: %s", e, extra={"run_id": run_id})
            raise SyncHarnessError("Failed to load GSC connections") from e

        logger.info(
            "Sync run %s started (%s) for %d connections",
            run_id, trigger, len(connections),
            extra={"run_id": run_id},
        )

        for connection in connections:
            # A rollback while syncing an earlier connection expires this one
            await db.refresh(connection)
            connection_id = connection.id
            try:
                results = await self._sync_connection(
                    db, run, connection, force_refresh_properties
                )
            except Exception as e:
                logger.exception(
                    "Unexpected error syncing connection %s", connection_id,
                    extra={"run_id": run_id, "connection_id": connection_id},
                )
                await self._reset_session(db, connection)
                results = [
                    PropertySyncResult(
                        connection_id=connection_id,
                        user_id=connection.user_id,
                        error=f"Unexpected error: {e.__class__.__name__}",
                        error_kind=SyncErrorKind.INTERNAL,
                    )
                ]
            summary.results.extend(results)
            try:
                await run.repo.record_sync_outcome(
                    connection, [r for r in results if not r.success]
                )
            except PersistError as e:
                logger.error(
                    "Could not record sync outcome for connection %s: %s",
                    connection_id, e,
                    extra={"run_id": run_id, "connection_id": connection_id},
                )

        self._enter(run, SyncPhase.REPORTING)
        summary.completed_at = datetime.now(timezone.utc)
        try:
            await run.repo.append_run_log(summary)
        except PersistError as e:
            logger.error("Could not write run log for %s: %s", run_id, e, extra={"run_id": run_id})

        audit_logger.info(
            "run=%s trigger=%s properties=%d ok=%d failed=%d records=%d",
            run_id,
            trigger,
            summary.total_properties,
            summary.success_count,
            summary.error_count,
            summary.total_records,
            extra={"run_id": run_id},
        )
        self._enter(run, SyncPhase.DONE)
        return summary

    async def _sync_connection(
        self,
        db: AsyncSession,
        run: SyncRun,
        connection: GSCConnection,
        force_refresh_properties: bool,
    ) -> list[PropertySyncResult]:
        connection_id = connection.id
        user_id = connection.user_id
        log_extra = {"run_id": run.run_id, "connection_id": connection_id}

        try:
            access_token = await self.token_manager.ensure_valid_token(db, connection)
        except GSCAuthError as e:
            logger.warning(
                "No usable token for connection %s: %s", connection_id, e, extra=log_extra
            )
            cached = await self.enumerator.cached_properties(db, connection)
            if not cached:
                return [
                    PropertySyncResult(
                        connection_id=connection_id,
                        user_id=user_id,
                        error=str(e),
                        error_kind=SyncErrorKind.AUTH,
                    )
                ]
            return [
                PropertySyncResult(
                    connection_id=connection_id,
                    user_id=user_id,
                    property_id=prop.id,
                    site_url=prop.site_url,
                    error=str(e),
                    error_kind=SyncErrorKind.AUTH,
                )
                for prop in cached
            ]

        try:
            properties = await self.enumerator.resolve_properties(
                db, connection, access_token, force_refresh=force_refresh_properties
            )
        except SyncError as e:
            await self._reset_session(db, connection)
            logger.warning(
                "Could not list properties for connection %s: %s",
                connection_id, e, extra=log_extra,
            )
            return [
                PropertySyncResult(
                    connection_id=connection_id,
                    user_id=user_id,
                    error=str(e),
                    error_kind=error_kind_of(e),
                )
            ]

        # Plain values: a rollback below expires the ORM instances
        targets = [(prop.id, prop.site_url) for prop in properties]
        if not targets:
            logger.info("Connection %s has no active properties", connection_id, extra=log_extra)

        results = []
        for property_id, site_url in targets:
            result = await self._sync_property(
                db, run, connection, connection_id, user_id, property_id, site_url
            )
            results.append(result)
        return results

    async def _sync_property(
        self,
        db: AsyncSession,
        run: SyncRun,
        connection: GSCConnection,
        connection_id: str,
        user_id: str,
        property_id: str,
        site_url: str,
    ) -> PropertySyncResult:
        result = PropertySyncResult(
            connection_id=connection_id,
            user_id=user_id,
            property_id=property_id,
            site_url=site_url,
        )
        log_extra = {"run_id": run.run_id, "connection_id": connection_id, "property_id": property_id}
        window = run.window

        try:
            access_token = await self.token_manager.ensure_valid_token(db, connection)

            if run.fetches:
                await self.pacer.pause()
            run.fetches += 1

            self._enter(run, SyncPhase.FETCHING, property_id=property_id)
            fetched = await self._fetch(db, connection, access_token, site_url, window)
            daily = None
            if self.config.daily_series:
                daily = await self._fetch_daily(db, connection, site_url, window, log_extra)

            self._enter(run, SyncPhase.AGGREGATING, property_id=property_id)
            aggregated = aggregate(
                fetched.rows,
                dimensions=window.dimensions,
                caps=self.config.cap_map,
                truncated=fetched.truncated,
            )
            if daily is not None:
                aggregated.daily = aggregate_daily(daily.rows)

            self._enter(run, SyncPhase.PERSISTING, property_id=property_id)
            await run.repo.upsert_result(property_id, window, aggregated)
        except SyncError as e:
            await self._reset_session(db, connection)
            result.error = str(e)
            result.error_kind = error_kind_of(e)
            logger.warning(
                "Sync failed for %s (%s): %s", site_url, result.error_kind.value, e,
                extra=log_extra,
            )
            return result
        except Exception as e:
            await self._reset_session(db, connection)
            result.error = f"Unexpected error: {e.__class__.__name__}"
            result.error_kind = SyncErrorKind.INTERNAL
            logger.exception("Unexpected error syncing %s", site_url, extra=log_extra)
            return result

        result.success = True
        result.records_processed = aggregated.row_count
        logger.info(
            "Synced %s: %d rows, %d clicks, %d impressions%s",
            site_url,
            aggregated.row_count,
            aggregated.totals.clicks,
            aggregated.totals.impressions,
            " (truncated)" if aggregated.truncated else "",
            extra=log_extra,
        )
        return result

    async def _fetch(
        self,
        db: AsyncSession,
        connection: GSCConnection,
        access_token: str,
        site_url: str,
        window: SyncWindow,
    ) -> QueryResult:
        try:
            return await asyncio.to_thread(
                self.adapter.query_search_analytics,
                access_token,
                site_url,
                window,
                self.config.max_pages,
            )
        except GSCQueryError as e:
            if e.query_kind != QueryErrorKind.AUTH_FAILURE:
                raise
            logger.info("Access token rejected for %s, refreshing and retrying once", site_url)

        access_token = await self.token_manager.ensure_valid_token(db, connection, force=True)
        return await asyncio.to_thread(
            self.adapter.query_search_analytics,
            access_token,
            site_url,
            window,
            self.config.max_pages,
        )

    async def _fetch_daily(
        self,
        db: AsyncSession,
        connection: GSCConnection,
        site_url: str,
        window: SyncWindow,
        log_extra: dict,
    ) -> Optional[QueryResult]:
        """Fetch the per-day series; a failure here never fails the property."""
        try:
            # The breakdown fetch may have refreshed the token
            access_token = await self.token_manager.ensure_valid_token(db, connection)
            return await self._fetch(db, connection, access_token, site_url, window.daily())
        except SyncError as e:
            logger.warning(
                "Daily series for %s not synced (%s): %s",
                site_url, error_kind_of(e).value, e,
                extra=log_extra,
            )
            return None

    async def _reset_session(self, db: AsyncSession, connection: GSCConnection) -> None:
        await db.rollback()
        await db.refresh(connection)


def build_sync_orchestrator(
    config: SyncConfig,
    pacer: Optional[Pacer] = None,
    adapter: Optional[GSCAdapter] = None,
) -> SyncOrchestrator:
    """Wire an orchestrator and its collaborators from configuration."""
    adapter = adapter or create_gsc_adapter(config)
    token_manager = TokenManager(
        adapter,
        TokenCipher(config.encryption_key),
        safety_margin_seconds=config.token_refresh_margin_seconds,
    )
    return SyncOrchestrator(
        config=config,
        adapter=adapter,
        token_manager=token_manager,
        enumerator=PropertyEnumerator(adapter),
        pacer=pacer,
    )
