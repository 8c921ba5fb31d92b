"""Construction of webhook payload envelopes."""

import json
import time
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from crm_webhooks.core.schemas import WebhookEvent, WebhookPayload, WebhookSubscription
from crm_webhooks.core.webhook_validator import WebhookValidationError

# Representative record sent by manual test deliveries
TEST_ENTITY_DATA: dict[str, Any] = {
    "id": "test-id",
    "name": "Test Record",
    "email": "test@example.com",
}


def dispatch_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_payload(event: WebhookEvent, subscription: WebhookSubscription, timestamp: str) -> WebhookPayload:
    """Build the envelope for one (event, subscription) pair.

    The caller generates ``timestamp`` once per event so that every subscriber of
    the same change sees the same value.
    """
    return WebhookPayload(
        event=event.event_name,
        timestamp=timestamp,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        data=event.data,
        previous_data=event.previous_data,
        changed_fields=event.changed_fields,
        webhook_id=subscription.id,
        webhook_name=subscription.name,
    )


def build_test_payload(
    subscription: WebhookSubscription,
    overrides: dict[str, Any] | None = None,
    entity_id_prefix: str = "test-id-",
) -> WebhookPayload:
    """Build a synthetic payload for a manual test, with caller overrides applied on top.

    Raises:
        WebhookValidationError: If an override names an unknown field or has the wrong type
    """
    fields: dict[str, Any] = {
        "event": f"{subscription.entity_type.value}.{subscription.event_type.value}",
        "timestamp": dispatch_timestamp(),
        "entity_type": subscription.entity_type,
        "entity_id": f"{entity_id_prefix}{int(time.time() * 1000)}",
        "data": dict(TEST_ENTITY_DATA),
        "webhook_id": subscription.id,
        "webhook_name": subscription.name,
    }
    if overrides:
        fields.update(overrides)

    try:
        return WebhookPayload.model_validate(fields)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "payload"
        raise WebhookValidationError(location, first["msg"]) from e


def compute_changed_fields(previous: dict[str, Any] | None, current: dict[str, Any]) -> list[str]:
    """Keys of ``current`` whose value differs from ``previous``.

    Values are compared by their JSON encoding so nested structures compare by content.
    """
    previous = previous or {}

    def encode(value: Any) -> str:
        return json.dumps(value, sort_keys=True, default=str)

    return [key for key, value in current.items() if key not in previous or encode(previous[key]) != encode(value)]
