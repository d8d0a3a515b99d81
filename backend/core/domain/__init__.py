# Domain Entities
# Pure business objects with no external dependencies
from .analytics import (
    AggregatedResult,
    DailyPoint,
    DimensionEntry,
    PropertySyncResult,
    SyncPhase,
    SyncRunSummary,
    SyncWindow,
    Totals,
)

__all__ = [
    "AggregatedResult",
    "DailyPoint",
    "DimensionEntry",
    "PropertySyncResult",
    "SyncPhase",
    "SyncRunSummary",
    "SyncWindow",
    "Totals",
]
