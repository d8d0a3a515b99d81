"""
SQLAlchemy database models.
"""

from .analytics import (
    GSCConnection,
    GSCPerformanceData,
    GSCProperty,
    SyncRunLog,
)
from .base import Base, TimestampMixin

__all__ = [
    "Base",
    "TimestampMixin",
    "GSCConnection",
    "GSCProperty",
    "GSCPerformanceData",
    "SyncRunLog",
]
