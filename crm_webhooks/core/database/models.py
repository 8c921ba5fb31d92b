"""SQLAlchemy models for database schema."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from crm_webhooks.core.database.json_type import JSONType
from crm_webhooks.core.schemas import EntityType, WebhookEventType


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models using SQLAlchemy 2.0 declarative style."""

    pass


def _in_clause(column: str, values: list[str]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


ENTITY_TYPE_VALUES = [e.value for e in EntityType]
EVENT_TYPE_VALUES = [e.value for e in WebhookEventType]


class Webhook(Base):
    """A subscription: notify ``url`` when ``entity_type``/``event_type`` changes happen.

    Health fields (trigger_count, consecutive_failures, last_triggered_at, active)
    are maintained by the dispatch engine after every settled delivery.
    """

    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    # Ordered filter conditions and custom request headers
    conditions: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    headers: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Health
    trigger_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    logs = relationship("WebhookLog", back_populates="webhook", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        CheckConstraint(_in_clause("entity_type", ENTITY_TYPE_VALUES), name="ck_webhooks_entity_type"),
        CheckConstraint(_in_clause("event_type", EVENT_TYPE_VALUES), name="ck_webhooks_event_type"),
        CheckConstraint("consecutive_failures >= 0", name="ck_webhooks_consecutive_failures"),
        Index("idx_webhooks_dispatch", "user_id", "entity_type", "event_type", "active"),
    )


class WebhookLog(Base):
    """Append-only outcome of one delivery series to one subscription.

    One row per dispatch-to-one-subscription, never one per retry attempt.
    """

    __tablename__ = "webhook_logs"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=lambda: str(uuid4()))
    webhook_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # "success", "failed"
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    webhook = relationship("Webhook", back_populates="logs")

    __table_args__ = (
        CheckConstraint("status IN ('success', 'failed')", name="ck_webhook_logs_status"),
        Index("idx_webhook_logs_webhook", "webhook_id", "triggered_at"),
        Index("idx_webhook_logs_user", "user_id"),
    )
