"""Search analytics domain entities."""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Optional

from core.errors import SyncErrorKind

# Search Console caps rowLimit at 25000 per request
MAX_ROW_LIMIT = 25000
DEFAULT_ROW_LIMIT = 1000
DEFAULT_DIMENSIONS: tuple[str, ...] = ("query", "page", "country", "device")
DAILY_DIMENSIONS: tuple[str, ...] = ("date",)


class SyncPhase(str, Enum):
    """Orchestrator lifecycle phases for one invocation."""
    IDLE = "idle"
    ENUMERATING = "enumerating"
    FETCHING = "fetching"
    AGGREGATING = "aggregating"
    PERSISTING = "persisting"
    REPORTING = "reporting"
    DONE = "done"


@dataclass(frozen=True)
class SyncWindow:
    """Immutable parameters of one sync attempt for a property."""

    start_date: date
    end_date: date
    dimensions: tuple[str, ...] = DEFAULT_DIMENSIONS
    row_limit: int = DEFAULT_ROW_LIMIT

    def __post_init__(self):
        if self.end_date < self.start_date:
            raise ValueError(
                f"end_date {self.end_date} is before start_date {self.start_date}"
            )
        if not self.dimensions:
            raise ValueError("At least one dimension is required")
        if self.row_limit < 1:
            raise ValueError("row_limit must be positive")
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "dimensions", tuple(self.dimensions))
        object.__setattr__(self, "row_limit", min(self.row_limit, MAX_ROW_LIMIT))

    @classmethod
    def trailing(
        cls,
        days: int,
        lag_days: int = 3,
        today: Optional[date] = None,
        dimensions: tuple[str, ...] = DEFAULT_DIMENSIONS,
        row_limit: int = DEFAULT_ROW_LIMIT,
    ) -> "SyncWindow":
        """Window of ``days`` days ending ``lag_days`` before today (GSC data lags)."""
        if days < 1:
            raise ValueError("days must be at least 1")
        end = (today or date.today()) - timedelta(days=lag_days)
        start = end - timedelta(days=days - 1)
        return cls(start_date=start, end_date=end, dimensions=dimensions, row_limit=row_limit)

    def daily(self) -> "SyncWindow":
        """Same dates, one row per day."""
        return SyncWindow(
            start_date=self.start_date,
            end_date=self.end_date,
            dimensions=DAILY_DIMENSIONS,
            row_limit=self.row_limit,
        )


@dataclass
class DimensionEntry:
    """Aggregate for one distinct dimension value."""

    value: str
    clicks: float = 0
    impressions: float = 0
    ctr: float = 0.0
    position: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "clicks": self.clicks,
            "impressions": self.impressions,
            "ctr": self.ctr,
            "position": self.position,
        }


@dataclass
class DailyPoint:
    """Totals for one calendar day of the window."""

    date: str
    clicks: float = 0
    impressions: float = 0
    ctr: float = 0.0
    position: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "clicks": self.clicks,
            "impressions": self.impressions,
            "ctr": self.ctr,
            "position": self.position,
        }


@dataclass
class Totals:
    clicks: float = 0
    impressions: float = 0
    ctr: float = 0.0
    average_position: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "clicks": self.clicks,
            "impressions": self.impressions,
            "ctr": self.ctr,
            "average_position": self.average_position,
        }


@dataclass
class AggregatedResult:
    """Output of the dimensional aggregator for one sync window."""

    totals: Totals = field(default_factory=Totals)
    queries: list[DimensionEntry] = field(default_factory=list)
    pages: list[DimensionEntry] = field(default_factory=list)
    countries: list[DimensionEntry] = field(default_factory=list)
    devices: list[DimensionEntry] = field(default_factory=list)
    # None when the daily series was not fetched
    daily: Optional[list[DailyPoint]] = None

    # Bookkeeping
    row_count: int = 0
    skipped_rows: int = 0
    truncated: bool = False

    def breakdown(self, dimension: str) -> list[DimensionEntry]:
        """Return the bucket list for a dimension name (query, page, country, device)."""
        return {
            "query": self.queries,
            "page": self.pages,
            "country": self.countries,
            "device": self.devices,
        }[dimension]


@dataclass
class PropertySyncResult:
    """Outcome of syncing one property (or a connection-level failure)."""

    connection_id: str
    user_id: str
    property_id: Optional[str] = None
    site_url: Optional[str] = None
    success: bool = False
    records_processed: int = 0
    error: Optional[str] = None
    error_kind: Optional[SyncErrorKind] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "connection_id": self.connection_id,
            "user_id": self.user_id,
            "property_id": self.property_id,
            "site_url": self.site_url,
            "success": self.success,
            "records_processed": self.records_processed,
        }
        if self.error is not None:
            data["error"] = self.error
            data["error_kind"] = self.error_kind.value if self.error_kind else None
        return data


@dataclass
class SyncRunSummary:
    """Summary of one orchestrator invocation."""

    run_id: str
    started_at: datetime
    trigger: str = "cron"
    completed_at: Optional[datetime] = None
    results: list[PropertySyncResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def total_properties(self) -> int:
        return len(self.results)

    @property
    def total_records(self) -> int:
        return sum(r.records_processed for r in self.results)

    @property
    def success(self) -> bool:
        """The batch ran to completion; per-property failures live in ``results``."""
        return self.completed_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_properties": self.total_properties,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "total_records": self.total_records,
            "results": [r.to_dict() for r in self.results],
        }
