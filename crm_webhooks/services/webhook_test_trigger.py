"""Manual "send test" for a single subscription."""

import asyncio
import logging
from typing import Any

import httpx

from crm_webhooks.core.config import WebhookSettings, get_config
from crm_webhooks.core.schemas import DeliveryOutcome
from crm_webhooks.core.webhook_delivery import WebhookDelivery, deliver_webhook_with_retry
from crm_webhooks.core.webhook_payload import build_test_payload
from crm_webhooks.core.webhook_validator import SubscriptionNotFoundError, WebhookValidationError
from crm_webhooks.services.subscription_store import DatabaseSubscriptionStore, SubscriptionStore

logger = logging.getLogger(__name__)


class WebhookTestTrigger:
    """Sends one synthetic payload so a user can check an endpoint is reachable.

    A test is a single attempt. It writes no delivery log entry and leaves the
    subscription's health untouched, so inactive subscriptions can be tested too.
    """

    def __init__(
        self,
        store: SubscriptionStore | None = None,
        client: httpx.AsyncClient | None = None,
        settings: WebhookSettings | None = None,
    ):
        self.store = store or DatabaseSubscriptionStore()
        self.client = client
        self.settings = settings or get_config().webhook

    async def test_webhook(
        self, principal_id: str | None, subscription_id: str, overrides: dict[str, Any] | None = None
    ) -> DeliveryOutcome:
        """Deliver a test payload to one subscription and return the outcome.

        Raises:
            WebhookValidationError: No principal, or overrides that do not fit the payload
            SubscriptionNotFoundError: The subscription does not exist for ``principal_id``
        """
        if not principal_id:
            raise WebhookValidationError("principal_id", "You must be logged in to test webhooks")

        subscription = await asyncio.to_thread(self.store.get_subscription, subscription_id, principal_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)

        payload = build_test_payload(subscription, overrides, self.settings.test_entity_id_prefix)
        delivery = WebhookDelivery(
            webhook_url=subscription.url,
            payload=payload.to_wire(),
            headers=dict(subscription.headers or {}),
            max_attempts=1,
            timeout=self.settings.timeout_seconds,
            user_agent=self.settings.user_agent,
        )

        logger.info(f"[Webhook Test] Sending test {payload.event} to {subscription.id}")
        outcome = await deliver_webhook_with_retry(delivery, self.client)
        logger.info(
            f"[Webhook Test] Test for {subscription.id} {'succeeded' if outcome.success else 'failed'}"
            f" (status={outcome.status_code}, error={outcome.error})"
        )
        return outcome
