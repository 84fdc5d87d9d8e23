"""Create webhook_events audit ledger

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # One row per logical provider event, keyed by the derived event id
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=True),
        sa.Column("payload_hash", sa.String(64), nullable=True),
        sa.Column("processed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("correlation_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_webhook_events_source", "webhook_events", ["source"])
    op.create_index("ix_webhook_events_payload_hash", "webhook_events", ["payload_hash"])
    op.create_index("ix_webhook_events_correlation_id", "webhook_events", ["correlation_id"])
    op.create_index("ix_webhook_events_created_at", "webhook_events", ["created_at"])
    # Operators look for failed, unprocessed events to retry
    op.create_index(
        "ix_webhook_events_unprocessed",
        "webhook_events",
        ["source", "created_at"],
        postgresql_where=sa.text("processed = false"),
    )


def downgrade() -> None:
    op.drop_index("ix_webhook_events_unprocessed", table_name="webhook_events")
    op.drop_index("ix_webhook_events_created_at", table_name="webhook_events")
    op.drop_index("ix_webhook_events_correlation_id", table_name="webhook_events")
    op.drop_index("ix_webhook_events_payload_hash", table_name="webhook_events")
    op.drop_index("ix_webhook_events_source", table_name="webhook_events")
    op.drop_table("webhook_events")
