"""
API request and response schemas.
"""

from .sync import CronSyncResponse, SyncResultItem, SyncSummaryCounts

__all__ = [
    "CronSyncResponse",
    "SyncResultItem",
    "SyncSummaryCounts",
]
