"""
Sync trigger API schemas.

Responses are serialised in camelCase for the scheduler and dashboard that
consume them.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.domain.analytics import PropertySyncResult, SyncRunSummary


class CamelModel(BaseModel):
    """Base model that reads snake_case and writes camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Cron Sync Schemas
# ============================================================================


class SyncResultItem(CamelModel):
    """Outcome for one property (or one connection when it failed as a whole)."""

    connection_id: str = Field(..., description="GSC connection ID")
    user_id: str = Field(..., description="Owner of the connection")
    property_id: Optional[str] = Field(None, description="Property ID, null for connection-level failures")
    site_url: Optional[str] = Field(None, description="Search Console site URL")
    success: bool = Field(..., description="Whether the property synced")
    records_processed: int = Field(0, description="Valid rows aggregated and stored")
    error: Optional[str] = Field(None, description="Failure message")
    error_kind: Optional[str] = Field(None, description="Failure kind, e.g. transient or auth")

    @classmethod
    def from_result(cls, result: PropertySyncResult) -> "SyncResultItem":
        return cls(
            connection_id=result.connection_id,
            user_id=result.user_id,
            property_id=result.property_id,
            site_url=result.site_url,
            success=result.success,
            records_processed=result.records_processed,
            error=result.error,
            error_kind=result.error_kind.value if result.error_kind else None,
        )


class SyncSummaryCounts(CamelModel):
    """Aggregate counters for one run."""

    total_properties: int
    success_count: int
    error_count: int
    total_records_processed: int


class CronSyncResponse(CamelModel):
    """Response of the cron sync trigger."""

    success: bool = Field(..., description="The batch ran to completion")
    summary: SyncSummaryCounts
    sync_results: List[SyncResultItem] = Field(default_factory=list)
    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_summary(cls, summary: SyncRunSummary) -> "CronSyncResponse":
        return cls(
            success=summary.success,
            summary=SyncSummaryCounts(
                total_properties=summary.total_properties,
                success_count=summary.success_count,
                error_count=summary.error_count,
                total_records_processed=summary.total_records,
            ),
            sync_results=[SyncResultItem.from_result(r) for r in summary.results],
            run_id=summary.run_id,
            started_at=summary.started_at,
            completed_at=summary.completed_at,
        )
