"""create_webhook_tables

Revision ID: 001
Revises:
Create Date: 2026-10-16 10:12:40.118305

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "webhooks",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("conditions", postgresql.JSONB(), nullable=True),
        sa.Column("headers", postgresql.JSONB(), nullable=True),
        sa.Column("trigger_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "entity_type IN ('contact', 'company', 'deal', 'task', 'activity')", name="ck_webhooks_entity_type"
        ),
        sa.CheckConstraint(
            "event_type IN ('created', 'updated', 'deleted', 'stage_changed', 'tag_added', 'tag_removed', "
            "'status_changed', 'field_changed')",
            name="ck_webhooks_event_type",
        ),
        sa.CheckConstraint("consecutive_failures >= 0", name="ck_webhooks_consecutive_failures"),
    )

    # Dispatch lookup: active subscriptions of one owner for one entity/event pair
    op.create_index("idx_webhooks_dispatch", "webhooks", ["user_id", "entity_type", "event_type", "active"])

    op.create_table(
        "webhook_logs",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("webhook_id", sa.String(50), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("triggered_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),  # "success", "failed"
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["webhook_id"], ["webhooks.id"], ondelete="CASCADE"),
        sa.CheckConstraint("status IN ('success', 'failed')", name="ck_webhook_logs_status"),
    )

    op.create_index("idx_webhook_logs_webhook", "webhook_logs", ["webhook_id", "triggered_at"])
    op.create_index("idx_webhook_logs_user", "webhook_logs", ["user_id"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_webhook_logs_user", table_name="webhook_logs")
    op.drop_index("idx_webhook_logs_webhook", table_name="webhook_logs")
    op.drop_table("webhook_logs")
    op.drop_index("idx_webhooks_dispatch", table_name="webhooks")
    op.drop_table("webhooks")
