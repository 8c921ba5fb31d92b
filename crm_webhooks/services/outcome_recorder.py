"""Persist settled delivery outcomes and maintain subscription health."""

import logging
from datetime import UTC, datetime

from crm_webhooks.core.metrics import (
    webhook_auto_disabled_total,
    webhook_delivery_attempts,
    webhook_delivery_duration,
    webhook_delivery_total,
)
from crm_webhooks.core.schemas import DeliveryLogEntry, DeliveryOutcome, WebhookPayload, WebhookSubscription
from crm_webhooks.core.webhook_health import DEFAULT_FAILURE_THRESHOLD, HealthState, next_health_state
from crm_webhooks.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


class OutcomeRecorder:
    """Turns one settled delivery series into a log entry plus a health update."""

    def __init__(self, store: SubscriptionStore, failure_threshold: int = DEFAULT_FAILURE_THRESHOLD):
        self.store = store
        self.failure_threshold = failure_threshold

    def record(
        self,
        subscription: WebhookSubscription,
        payload: WebhookPayload,
        outcome: DeliveryOutcome,
        principal_id: str,
        now: datetime | None = None,
    ) -> HealthState:
        """Store the outcome and return the subscription's new health state.

        Store errors propagate; the dispatcher decides what to do with them.
        """
        entry = DeliveryLogEntry(
            webhook_id=subscription.id,
            user_id=principal_id,
            status=outcome.status,
            status_code=outcome.status_code,
            response_body=outcome.response_body,
            error_message=outcome.error,
            payload=payload.to_wire(),
        )

        current = HealthState.of(subscription)
        health = next_health_state(
            current,
            outcome.success,
            now=now or datetime.now(UTC),
            failure_threshold=self.failure_threshold,
        )

        self.store.record_delivery(entry, subscription.id, health)

        entity_type = subscription.entity_type.value
        event_type = subscription.event_type.value
        webhook_delivery_total.labels(entity_type=entity_type, event_type=event_type, status=outcome.status.value).inc()
        webhook_delivery_duration.labels(entity_type=entity_type, event_type=event_type).observe(
            outcome.duration_seconds
        )
        webhook_delivery_attempts.labels(entity_type=entity_type, event_type=event_type).observe(outcome.attempts)

        if current.active and not health.active:
            webhook_auto_disabled_total.labels(entity_type=entity_type).inc()
            logger.warning(
                f"[Webhook Dispatch] Disabled {subscription.id} ({subscription.name}) after "
                f"{health.consecutive_failures} consecutive failures"
            )

        return health
