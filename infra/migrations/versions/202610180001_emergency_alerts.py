"""emergency alerts, alert event log and profiles

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610180001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "emergency_alerts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("user_name", sa.String(), nullable=False),
        sa.Column("user_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("additional_info", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_emergency_alerts_user_id", "emergency_alerts", ["user_id"])
    op.create_index("ix_emergency_alerts_status", "emergency_alerts", ["status"])
    op.create_index("ix_emergency_alerts_created_at", "emergency_alerts", ["created_at"])
    op.create_index("ix_emergency_alerts_created_at_id", "emergency_alerts", ["created_at", "id"])

    op.create_table(
        "alert_events",
        sa.Column("seq", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("alert_id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("old", sa.JSON(), nullable=True),
        sa.Column("new", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("seq"),
    )
    op.create_index("ix_alert_events_event_id", "alert_events", ["event_id"], unique=True)
    op.create_index("ix_alert_events_event_type", "alert_events", ["event_type"])
    op.create_index("ix_alert_events_alert_id", "alert_events", ["alert_id"])
    op.create_index("ix_alert_events_actor_id", "alert_events", ["actor_id"])
    op.create_index("ix_alert_events_ts", "alert_events", ["ts"])

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("roll_number", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profiles_roll_number", "profiles", ["roll_number"])


def downgrade() -> None:
    op.drop_index("ix_profiles_roll_number", table_name="profiles")
    op.drop_table("profiles")

    op.drop_index("ix_alert_events_ts", table_name="alert_events")
    op.drop_index("ix_alert_events_actor_id", table_name="alert_events")
    op.drop_index("ix_alert_events_alert_id", table_name="alert_events")
    op.drop_index("ix_alert_events_event_type", table_name="alert_events")
    op.drop_index("ix_alert_events_event_id", table_name="alert_events")
    op.drop_table("alert_events")

    op.drop_index("ix_emergency_alerts_created_at_id", table_name="emergency_alerts")
    op.drop_index("ix_emergency_alerts_created_at", table_name="emergency_alerts")
    op.drop_index("ix_emergency_alerts_status", table_name="emergency_alerts")
    op.drop_index("ix_emergency_alerts_user_id", table_name="emergency_alerts")
    op.drop_table("emergency_alerts")
