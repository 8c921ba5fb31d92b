"""Fire-and-forget dispatch of CRM change events to webhook subscribers.

CRUD code calls ``trigger()`` after persisting its own change and moves on.
Everything after that happens in the background: subscriptions are loaded,
filtered by their conditions, and each surviving one gets its own delivery
series, concurrently with the others. Nothing in here ever raises back into the
caller.
"""

import asyncio
import concurrent.futures
import logging
import threading
from concurrent.futures import Future
from typing import Any

import httpx
from pydantic import ValidationError

from crm_webhooks.core.config import WebhookSettings, get_config
from crm_webhooks.core.metrics import webhook_deliveries_in_flight, webhook_dispatch_errors
from crm_webhooks.core.schemas import EntityType, WebhookEvent, WebhookEventType, WebhookSubscription
from crm_webhooks.core.webhook_conditions import matches
from crm_webhooks.core.webhook_delivery import WebhookDelivery, deliver_webhook_with_retry
from crm_webhooks.core.webhook_payload import build_payload, dispatch_timestamp
from crm_webhooks.services.outcome_recorder import OutcomeRecorder
from crm_webhooks.services.subscription_store import DatabaseSubscriptionStore, SubscriptionStore

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """Coordinates condition matching, delivery and outcome recording for one event."""

    def __init__(
        self,
        store: SubscriptionStore | None = None,
        recorder: OutcomeRecorder | None = None,
        client: httpx.AsyncClient | None = None,
        settings: WebhookSettings | None = None,
    ):
        self.settings = settings or get_config().webhook
        self.store = store or DatabaseSubscriptionStore()
        self.recorder = recorder or OutcomeRecorder(self.store, self.settings.failure_threshold)
        self.client = client

        self._background_tasks: set[asyncio.Task] = set()
        self._pending_futures: set[Future] = set()
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: threading.Thread | None = None

    def trigger(
        self,
        principal_id: str | None,
        event_type: WebhookEventType | str,
        entity_type: EntityType | str,
        entity_id: str | int,
        data: dict[str, Any],
        previous_data: dict[str, Any] | None = None,
        changed_fields: list[str] | None = None,
    ) -> None:
        """Schedule dispatch of one event and return immediately.

        Inside a running event loop the dispatch becomes a task on that loop.
        Synchronous callers get it scheduled on the dispatcher's background loop,
        where every dispatch runs as its own task.
        Integer entity ids are accepted and sent as strings.
        """
        fields = {
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "data": data,
            "previous_data": previous_data,
            "changed_fields": changed_fields,
        }
        try:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

            if loop is not None:
                task = loop.create_task(self._dispatch(principal_id, fields, self.client))
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)
            else:
                background_loop = self._get_loop()
                # A shared client belongs to the caller's loop; deliveries here open their own
                future = asyncio.run_coroutine_threadsafe(self._dispatch(principal_id, fields, None), background_loop)
                with self._lock:
                    self._pending_futures.add(future)
                future.add_done_callback(self._forget_future)
        except Exception as e:
            logger.error(
                f"[Webhook Dispatch] Failed to schedule dispatch for {entity_type}.{event_type}: {e}", exc_info=True
            )
            webhook_dispatch_errors.labels(stage="schedule").inc()

    async def dispatch(
        self,
        principal_id: str | None,
        event_type: WebhookEventType | str,
        entity_type: EntityType | str,
        entity_id: str | int,
        data: dict[str, Any],
        previous_data: dict[str, Any] | None = None,
        changed_fields: list[str] | None = None,
    ) -> None:
        """Dispatch one event and wait until every delivery series has been recorded."""
        await self._dispatch(
            principal_id,
            {
                "event_type": event_type,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "data": data,
                "previous_data": previous_data,
                "changed_fields": changed_fields,
            },
            self.client,
        )

    async def wait_for_pending(self) -> None:
        """Wait for every dispatch scheduled by trigger() so far, including ones scheduled meanwhile."""
        while True:
            tasks = [task for task in self._background_tasks if not task.done()]
            with self._lock:
                futures = [future for future in self._pending_futures if not future.done()]
            if not tasks and not futures:
                return
            await asyncio.gather(
                *tasks, *(asyncio.wrap_future(future) for future in futures), return_exceptions=True
            )

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background loop used for synchronous callers.

        With ``wait`` the dispatches already scheduled there finish first.
        """
        with self._lock:
            loop, thread = self._loop, self._loop_thread
            self._loop = self._loop_thread = None
            futures = list(self._pending_futures)
        if loop is None:
            return

        if wait:
            concurrent.futures.wait(futures)
        loop.call_soon_threadsafe(loop.stop)
        if wait:
            thread.join()
            loop.close()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=loop.run_forever, name="webhook_dispatch_loop", daemon=True)
                thread.start()
                self._loop, self._loop_thread = loop, thread
            return self._loop

    def _forget_future(self, future: Future) -> None:
        with self._lock:
            self._pending_futures.discard(future)

    async def _dispatch(
        self, principal_id: str | None, fields: dict[str, Any], client: httpx.AsyncClient | None
    ) -> None:
        if not principal_id:
            logger.debug("[Webhook Dispatch] No principal for event, skipping dispatch")
            return

        try:
            event = WebhookEvent(**fields)
        except ValidationError as e:
            logger.error(
                f"[Webhook Dispatch] Invalid event {fields.get('entity_type')}.{fields.get('event_type')}: {e}"
            )
            webhook_dispatch_errors.labels(stage="event").inc()
            return

        try:
            subscriptions = await asyncio.to_thread(
                self.store.list_active_subscriptions, principal_id, event.entity_type, event.event_type
            )
        except Exception as e:
            logger.error(
                f"[Webhook Dispatch] Failed to load subscriptions for {event.event_name}: {e}", exc_info=True
            )
            webhook_dispatch_errors.labels(stage="load").inc()
            return

        if not subscriptions:
            return

        timestamp = dispatch_timestamp()
        logger.info(
            f"[Webhook Dispatch] Dispatching {event.event_name} {event.entity_id} "
            f"to {len(subscriptions)} subscription(s)"
        )
        await asyncio.gather(
            *(self._deliver_to(subscription, event, timestamp, principal_id, client) for subscription in subscriptions)
        )

    async def _deliver_to(
        self,
        subscription: WebhookSubscription,
        event: WebhookEvent,
        timestamp: str,
        principal_id: str,
        client: httpx.AsyncClient | None,
    ) -> None:
        try:
            if not matches(subscription.conditions, event.data, event.previous_data):
                logger.debug(f"[Webhook Dispatch] Conditions not met for {subscription.id}, skipping")
                return

            payload = build_payload(event, subscription, timestamp)
            delivery = WebhookDelivery(
                webhook_url=subscription.url,
                payload=payload.to_wire(),
                headers=dict(subscription.headers or {}),
                max_attempts=self.settings.max_attempts,
                timeout=self.settings.timeout_seconds,
                backoff_base=self.settings.backoff_base_seconds,
                user_agent=self.settings.user_agent,
            )
        except Exception as e:
            logger.error(f"[Webhook Dispatch] Could not prepare delivery for {subscription.id}: {e}", exc_info=True)
            webhook_dispatch_errors.labels(stage="prepare").inc()
            return

        webhook_deliveries_in_flight.inc()
        try:
            outcome = await deliver_webhook_with_retry(delivery, client)
        finally:
            webhook_deliveries_in_flight.dec()

        try:
            await asyncio.to_thread(self.recorder.record, subscription, payload, outcome, principal_id)
        except Exception as e:
            logger.error(f"[Webhook Dispatch] Failed to record outcome for {subscription.id}: {e}", exc_info=True)
            webhook_dispatch_errors.labels(stage="record").inc()


# Global dispatcher instance
_dispatcher: WebhookDispatcher | None = None


def get_webhook_dispatcher() -> WebhookDispatcher:
    """Get or create global webhook dispatcher instance."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher()
    return _dispatcher
