"""Integration tests against a real PostgreSQL database.

Run with DATABASE_URL pointing at a disposable database; skipped otherwise.
"""

import os
import uuid

import pytest
from sqlalchemy import delete

from crm_webhooks.core.config import WebhookSettings
from crm_webhooks.core.database.database_session import get_db_session, get_engine, reset_engine
from crm_webhooks.core.database.models import Base, Webhook
from crm_webhooks.services.subscription_store import DatabaseSubscriptionStore
from crm_webhooks.services.webhook_dispatcher import WebhookDispatcher
from crm_webhooks.services.webhook_test_trigger import WebhookTestTrigger
from tests.fixtures import ScriptedEndpoint

pytestmark = [
    pytest.mark.requires_db,
    pytest.mark.skipif(not os.environ.get("DATABASE_URL"), reason="DATABASE_URL not set"),
]


@pytest.fixture
def principal_id():
    """Unique owner per test; its rows are removed afterwards."""
    reset_engine()
    Base.metadata.create_all(get_engine())
    owner = f"it_{uuid.uuid4().hex[:8]}"
    yield owner
    with get_db_session() as session:
        session.execute(delete(Webhook).where(Webhook.user_id == owner))
        session.commit()
    reset_engine()


@pytest.fixture
def store():
    return DatabaseSubscriptionStore()


@pytest.mark.asyncio
async def test_dispatch_records_log_and_health(principal_id, store):
    sub = store.create_subscription(principal_id, "Deals", "https://hooks.example.com/crm", "deal", "updated")
    endpoint = ScriptedEndpoint(500, 200)

    async with endpoint.client() as client:
        dispatcher = WebhookDispatcher(
            store=store, client=client, settings=WebhookSettings(backoff_base_seconds=0)
        )
        await dispatcher.dispatch(principal_id, "updated", "deal", "deal_1", {"id": "deal_1", "amount": 10})

    assert endpoint.call_count == 2
    reloaded = store.get_subscription(sub.id, principal_id)
    assert reloaded.trigger_count == 1
    assert reloaded.consecutive_failures == 0
    assert reloaded.last_triggered_at is not None
    logs = store.list_logs(sub.id, principal_id)
    assert len(logs) == 1
    assert logs[0]["status"] == "success"
    assert logs[0]["payload"]["entity_id"] == "deal_1"


@pytest.mark.asyncio
async def test_auto_disable_after_threshold(principal_id, store):
    sub = store.create_subscription(principal_id, "Flaky", "https://hooks.example.com/flaky", "task", "created")
    endpoint = ScriptedEndpoint(503)
    settings = WebhookSettings(max_attempts=1, failure_threshold=2)

    async with endpoint.client() as client:
        dispatcher = WebhookDispatcher(store=store, client=client, settings=settings)
        for _ in range(3):
            await dispatcher.dispatch(principal_id, "created", "task", "task_1", {"id": "task_1"})

    assert endpoint.call_count == 2
    reloaded = store.get_subscription(sub.id, principal_id)
    assert reloaded.active is False
    assert reloaded.consecutive_failures == 2
    assert len(store.list_logs(sub.id, principal_id)) == 2


@pytest.mark.asyncio
async def test_manual_test_leaves_no_trace(principal_id, store):
    sub = store.create_subscription(principal_id, "Probe", "https://hooks.example.com/probe", "contact", "deleted")
    endpoint = ScriptedEndpoint(404)

    async with endpoint.client() as client:
        outcome = await WebhookTestTrigger(store, client, WebhookSettings()).test_webhook(principal_id, sub.id)

    assert outcome.success is False
    assert outcome.status_code == 404
    assert store.list_logs(sub.id, principal_id) == []
    assert store.get_subscription(sub.id, principal_id).trigger_count == 0
