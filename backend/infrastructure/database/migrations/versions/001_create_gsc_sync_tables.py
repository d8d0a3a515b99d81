"""Create Search Console sync tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create connection, property, performance and run-log tables."""

    # Create gsc_connections table
    op.create_table(
        "gsc_connections",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("access_token_encrypted", sa.Text(), nullable=False),
        sa.Column("refresh_token_encrypted", sa.Text(), nullable=False),
        sa.Column("token_expiry", sa.DateTime(timezone=True), nullable=False),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("connected_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_errors", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_gsc_connections_user_id", "gsc_connections", ["user_id"])
    # One active connection per user; history rows stay inactive
    op.create_index(
        "uq_gsc_connections_active_user",
        "gsc_connections",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    # Create gsc_properties table
    op.create_table(
        "gsc_properties",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("connection_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("site_url", sa.String(500), nullable=False),
        sa.Column("permission_level", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["connection_id"], ["gsc_connections.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("connection_id", "site_url", name="uq_gsc_property_connection_site"),
    )
    op.create_index("ix_gsc_properties_connection_id", "gsc_properties", ["connection_id"])
    op.create_index(
        "ix_gsc_properties_connection_active", "gsc_properties", ["connection_id", "is_active"]
    )

    # Create gsc_performance_data table
    op.create_table(
        "gsc_performance_data",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("property_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("window_start", sa.Date(), nullable=False),
        sa.Column("window_end", sa.Date(), nullable=False),
        sa.Column("total_clicks", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_impressions", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("avg_ctr", sa.Float(), nullable=False, server_default=sa.text("0.0")),
        sa.Column("avg_position", sa.Float(), nullable=False, server_default=sa.text("0.0")),
        sa.Column("queries", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("pages", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("countries", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("devices", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("daily", sa.JSON(), nullable=True),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("truncated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["property_id"], ["gsc_properties.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "property_id", "window_start", "window_end", name="uq_gsc_performance_property_window"
        ),
    )
    op.create_index("ix_gsc_performance_data_property_id", "gsc_performance_data", ["property_id"])

    # Create sync_run_logs table
    op.create_table(
        "sync_run_logs",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trigger", sa.String(20), nullable=False, server_default="cron"),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_records", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("summary", sa.JSON(), nullable=False),
    )
    op.create_index("ix_sync_run_logs_started_at", "sync_run_logs", ["started_at"])


def downgrade() -> None:
    """Drop Search Console sync tables."""
    op.drop_table("sync_run_logs")
    op.drop_table("gsc_performance_data")
    op.drop_table("gsc_properties")
    op.drop_index("uq_gsc_connections_active_user", table_name="gsc_connections")
    op.drop_table("gsc_connections")
