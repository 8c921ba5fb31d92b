"""Pydantic models for webhook subscriptions, events, payloads and delivery outcomes."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EntityType(str, Enum):
    """CRM entities that can emit webhook events."""

    CONTACT = "contact"
    COMPANY = "company"
    DEAL = "deal"
    TASK = "task"
    ACTIVITY = "activity"


class WebhookEventType(str, Enum):
    """Kinds of change a subscription can listen for."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    STAGE_CHANGED = "stage_changed"
    TAG_ADDED = "tag_added"
    TAG_REMOVED = "tag_removed"
    STATUS_CHANGED = "status_changed"
    FIELD_CHANGED = "field_changed"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"


class ConditionLogic(str, Enum):
    AND = "AND"
    OR = "OR"


class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class WebhookCondition(BaseModel):
    """One filter rule of a subscription.

    ``logic`` joins this condition's outcome onto the running result of the
    conditions before it. It is ignored on the first condition.
    """

    field: str = Field(min_length=1, description="Dot-separated path into the entity data")
    operator: ConditionOperator
    value: Any = None
    logic: ConditionLogic | None = None


class WebhookEvent(BaseModel):
    """A domain change handed to the dispatcher. Never persisted."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    event_type: WebhookEventType
    entity_type: EntityType
    entity_id: str
    data: dict[str, Any]
    previous_data: dict[str, Any] | None = None
    changed_fields: list[str] | None = None

    @property
    def event_name(self) -> str:
        return f"{self.entity_type.value}.{self.event_type.value}"


class WebhookSubscription(BaseModel):
    """Snapshot of a stored subscription.

    Conditions stay as raw stored dicts so that one malformed rule only fails its
    own evaluation instead of the whole load.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str
    url: str
    entity_type: EntityType
    event_type: WebhookEventType
    active: bool = True
    conditions: list[dict[str, Any]] | None = None
    headers: dict[str, str] | None = None
    trigger_count: int = 0
    consecutive_failures: int = 0
    last_triggered_at: datetime | None = None
    created_at: datetime | None = None


class WebhookPayload(BaseModel):
    """The JSON envelope POSTed to a subscriber. Immutable once built."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    event: str
    timestamp: str
    entity_type: EntityType
    entity_id: str
    data: Any
    previous_data: Any | None = None
    changed_fields: list[str] | None = None
    webhook_id: str | None = None
    webhook_name: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class DeliveryOutcome(BaseModel):
    """Final result of one delivery series (or one manual test attempt)."""

    success: bool
    status_code: int | None = None
    response_body: str | None = None
    error: str | None = None
    attempts: int = 0
    duration_seconds: float = 0.0

    @property
    def status(self) -> DeliveryStatus:
        return DeliveryStatus.SUCCESS if self.success else DeliveryStatus.FAILED


class DeliveryLogEntry(BaseModel):
    """Append-only record of one delivery series outcome."""

    model_config = ConfigDict(frozen=True)

    webhook_id: str
    user_id: str
    status: DeliveryStatus
    status_code: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    payload: dict[str, Any]
