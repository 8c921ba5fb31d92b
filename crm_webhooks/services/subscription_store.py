"""Subscription and delivery-log persistence for the webhook engine.

The engine only needs four operations from its store: list the active
subscriptions for a dispatch, fetch one subscription for a manual test, append a
delivery log entry, and update health fields. ``SubscriptionStore`` names that
contract; ``DatabaseSubscriptionStore`` implements it on PostgreSQL together with
the management operations used by operators.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select

from crm_webhooks.core.database.database_session import get_db_session
from crm_webhooks.core.database.models import Webhook, WebhookLog
from crm_webhooks.core.metrics import webhook_dispatch_errors
from crm_webhooks.core.schemas import (
    DeliveryLogEntry,
    EntityType,
    WebhookEventType,
    WebhookSubscription,
)
from crm_webhooks.core.webhook_health import HealthState
from crm_webhooks.core.webhook_validator import (
    SubscriptionNotFoundError,
    WebhookURLValidator,
    WebhookValidationError,
    is_valid_webhook_url,
)

logger = logging.getLogger(__name__)


class SubscriptionStore(ABC):
    """Storage operations the dispatch engine depends on."""

    @abstractmethod
    def list_active_subscriptions(
        self, principal_id: str, entity_type: EntityType | str, event_type: WebhookEventType | str
    ) -> list[WebhookSubscription]:
        """Active subscriptions of ``principal_id`` for one entity/event pair."""

    @abstractmethod
    def get_subscription(self, subscription_id: str, principal_id: str) -> WebhookSubscription | None:
        """One subscription by id, only if it belongs to ``principal_id``."""

    @abstractmethod
    def update_health(self, subscription_id: str, health: HealthState) -> None:
        """Overwrite the health fields of one subscription."""

    @abstractmethod
    def insert_log(self, entry: DeliveryLogEntry) -> None:
        """Append one delivery log entry."""

    def record_delivery(self, entry: DeliveryLogEntry, subscription_id: str, health: HealthState) -> None:
        """Persist a settled delivery: log entry first, then health fields."""
        self.insert_log(entry)
        self.update_health(subscription_id, health)


def _clean_headers(headers: dict[str, Any] | None) -> dict[str, str] | None:
    if not headers:
        return None
    cleaned = {
        str(key).strip(): str(value).strip()
        for key, value in headers.items()
        if key is not None and value is not None and str(key).strip() and str(value).strip()
    }
    return cleaned or None


def _clean_conditions(conditions: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
    if not conditions:
        return None
    kept = [
        dict(condition)
        for condition in conditions
        if isinstance(condition, dict)
        and condition.get("field")
        and condition.get("operator")
        and condition.get("value") is not None
    ]
    return kept or None


class DatabaseSubscriptionStore(SubscriptionStore):
    """SQLAlchemy-backed store using the ``webhooks`` and ``webhook_logs`` tables."""

    def list_active_subscriptions(
        self, principal_id: str, entity_type: EntityType | str, event_type: WebhookEventType | str
    ) -> list[WebhookSubscription]:
        with get_db_session() as session:
            stmt = select(Webhook).filter_by(
                user_id=principal_id,
                entity_type=EntityType(entity_type).value,
                event_type=WebhookEventType(event_type).value,
                active=True,
            )
            subscriptions = []
            for row in session.scalars(stmt).all():
                # Only the unreadable row is dropped
                try:
                    subscriptions.append(WebhookSubscription.model_validate(row))
                except ValidationError as e:
                    logger.error(f"[Webhook Dispatch] Skipping malformed subscription {row.id}: {e}")
                    webhook_dispatch_errors.labels(stage="load").inc()
            return subscriptions

    def get_subscription(self, subscription_id: str, principal_id: str) -> WebhookSubscription | None:
        with get_db_session() as session:
            stmt = select(Webhook).filter_by(id=subscription_id, user_id=principal_id)
            row = session.scalars(stmt).first()
            return WebhookSubscription.model_validate(row) if row else None

    def update_health(self, subscription_id: str, health: HealthState) -> None:
        with get_db_session() as session:
            self._apply_health(session, subscription_id, health)
            session.commit()

    def insert_log(self, entry: DeliveryLogEntry) -> None:
        with get_db_session() as session:
            session.add(self._log_row(entry))
            session.commit()

    def record_delivery(self, entry: DeliveryLogEntry, subscription_id: str, health: HealthState) -> None:
        """Write the log entry and the health update in one transaction."""
        with get_db_session() as session:
            session.add(self._log_row(entry))
            self._apply_health(session, subscription_id, health)
            session.commit()

    @staticmethod
    def _log_row(entry: DeliveryLogEntry) -> WebhookLog:
        return WebhookLog(
            webhook_id=entry.webhook_id,
            user_id=entry.user_id,
            status=entry.status.value,
            status_code=entry.status_code,
            response_body=entry.response_body,
            error_message=entry.error_message,
            payload=entry.payload,
        )

    @staticmethod
    def _apply_health(session, subscription_id: str, health: HealthState) -> None:
        webhook = session.get(Webhook, subscription_id)
        if webhook is None:
            # Deleted while the delivery was in flight
            logger.warning(f"Webhook {subscription_id} disappeared before its health could be updated")
            return
        webhook.active = health.active
        webhook.trigger_count = health.trigger_count
        webhook.consecutive_failures = health.consecutive_failures
        webhook.last_triggered_at = health.last_triggered_at

    # Management operations

    def create_subscription(
        self,
        principal_id: str,
        name: str,
        url: str,
        entity_type: EntityType | str,
        event_type: WebhookEventType | str,
        conditions: list[dict[str, Any]] | None = None,
        headers: dict[str, Any] | None = None,
        active: bool = True,
    ) -> WebhookSubscription:
        """Create a subscription after validating its input.

        Raises:
            WebhookValidationError: If any field is missing or invalid
        """
        if not principal_id:
            raise WebhookValidationError("principal_id", "You must be logged in to create webhooks")

        name = (name or "").strip()
        url = (url or "").strip()
        if not name:
            raise WebhookValidationError("name", "Name is required")
        if not url:
            raise WebhookValidationError("url", "URL is required")
        if not is_valid_webhook_url(url):
            raise WebhookValidationError("url", "URL must be a valid HTTPS URL")
        url_ok, url_error = WebhookURLValidator.validate_webhook_url(url)
        if not url_ok:
            raise WebhookValidationError("url", url_error)

        try:
            entity = EntityType(entity_type)
        except ValueError as e:
            raise WebhookValidationError("entity_type", f"Unknown entity type: {entity_type}") from e
        try:
            event = WebhookEventType(event_type)
        except ValueError as e:
            raise WebhookValidationError("event_type", f"Unknown event type: {event_type}") from e

        with get_db_session() as session:
            webhook = Webhook(
                user_id=principal_id,
                name=name,
                url=url,
                entity_type=entity.value,
                event_type=event.value,
                active=active,
                conditions=_clean_conditions(conditions),
                headers=_clean_headers(headers),
                trigger_count=0,
                consecutive_failures=0,
            )
            session.add(webhook)
            session.commit()
            session.refresh(webhook)
            logger.info(f"Created webhook {webhook.id} ({entity.value}.{event.value}) for {principal_id}")
            return WebhookSubscription.model_validate(webhook)

    def list_subscriptions(self, principal_id: str) -> list[WebhookSubscription]:
        with get_db_session() as session:
            stmt = select(Webhook).filter_by(user_id=principal_id).order_by(Webhook.created_at.desc())
            return [WebhookSubscription.model_validate(row) for row in session.scalars(stmt).all()]

    def set_active(self, subscription_id: str, principal_id: str, active: bool) -> WebhookSubscription:
        """Activate or deactivate a subscription. Health counters are left as they are.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist for ``principal_id``
        """
        with get_db_session() as session:
            stmt = select(Webhook).filter_by(id=subscription_id, user_id=principal_id)
            webhook = session.scalars(stmt).first()
            if webhook is None:
                raise SubscriptionNotFoundError(subscription_id)
            webhook.active = active
            session.commit()
            session.refresh(webhook)
            logger.info(f"Webhook {subscription_id} {'activated' if active else 'deactivated'} by {principal_id}")
            return WebhookSubscription.model_validate(webhook)

    def list_logs(self, subscription_id: str, principal_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent delivery log entries of one subscription, newest first."""
        with get_db_session() as session:
            stmt = (
                select(WebhookLog)
                .filter_by(webhook_id=subscription_id, user_id=principal_id)
                .order_by(WebhookLog.triggered_at.desc())
                .limit(limit)
            )
            return [
                {
                    "id": log.id,
                    "webhook_id": log.webhook_id,
                    "triggered_at": log.triggered_at,
                    "status": log.status,
                    "status_code": log.status_code,
                    "response_body": log.response_body,
                    "error_message": log.error_message,
                    "payload": log.payload,
                }
                for log in session.scalars(stmt).all()
            ]
