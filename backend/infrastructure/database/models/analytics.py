"""
Analytics database models for Google Search Console synchronization.
"""

from datetime import date, datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class GSCConnection(Base, TimestampMixin):
    """Google Search Console OAuth connection (one user's grant)."""

    __tablename__ = "gsc_connections"

    # Primary key
    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # Owner
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        nullable=False,
        index=True,
    )
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # OAuth tokens, Fernet-encrypted (core.security.encryption)
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    token_expiry: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    # Bumped on every token write; guards concurrent refreshes across processes
    token_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Connection metadata
    connected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Failures from the most recent run only
    sync_errors: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        # At most one active connection per user
        Index(
            "uq_gsc_connections_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def __repr__(self) -> str:
        return f"<GSCConnection(id={self.id}, user_id={self.user_id}, active={self.is_active})>"

    @property
    def token_expires_at(self) -> datetime:
        return as_utc(self.token_expiry)


class GSCProperty(Base, TimestampMixin):
    """A verified Search Console property reachable under a connection."""

    __tablename__ = "gsc_properties"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    connection_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("gsc_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Canonical site identifier: URL prefix or "sc-domain:" property
    site_url: Mapped[str] = mapped_column(String(500), nullable=False)
    permission_level: Mapped[str] = mapped_column(String(50), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint(
            "connection_id",
            "site_url",
            name="uq_gsc_property_connection_site",
        ),
        Index("ix_gsc_properties_connection_active", "connection_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<GSCProperty(site={self.site_url}, active={self.is_active})>"


class GSCPerformanceData(Base, TimestampMixin):
    """Aggregated search performance for one property and date window."""

    __tablename__ = "gsc_performance_data"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    property_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("gsc_properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Inclusive date window
    window_start: Mapped[date] = mapped_column(Date, nullable=False)
    window_end: Mapped[date] = mapped_column(Date, nullable=False)

    # Totals
    total_clicks: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    total_impressions: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    avg_ctr: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_position: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # Breakdowns: lists of {value, clicks, impressions, ctr, position}
    queries: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    pages: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    countries: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    devices: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Daily series: list of {date, clicks, impressions, ctr, position}; NULL until first fetched
    daily: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True), nullable=True)

    row_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    truncated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "property_id",
            "window_start",
            "window_end",
            name="uq_gsc_performance_property_window",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<GSCPerformanceData(property_id={self.property_id}, "
            f"window={self.window_start}..{self.window_end}, clicks={self.total_clicks})>"
        )


class SyncRunLog(Base):
    """Append-only audit record of one sync batch invocation."""

    __tablename__ = "sync_run_logs"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    trigger: Mapped[str] = mapped_column(String(20), nullable=False, default="cron")

    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    summary: Mapped[dict] = mapped_column(JSON, nullable=False)
    """
    Structure:
    {
        "run_id": "...",
        "results": [
            {"connection_id": ..., "property_id": ..., "success": true,
             "records_processed": 120},
            {"connection_id": ..., "property_id": ..., "success": false,
             "error": "...", "error_kind": "transient"}
        ]
    }
    """

    def __repr__(self) -> str:
        return (
            f"<SyncRunLog(started_at={self.started_at}, ok={self.success_count}, "
            f"failed={self.error_count})>"
        )
