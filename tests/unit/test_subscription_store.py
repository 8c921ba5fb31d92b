"""Unit tests for the database subscription store (in-memory SQLite)."""

from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from crm_webhooks.core.database.models import Webhook, WebhookLog
from crm_webhooks.core.metrics import webhook_dispatch_errors
from crm_webhooks.core.schemas import DeliveryLogEntry, DeliveryStatus, EntityType, WebhookEventType
from crm_webhooks.core.webhook_health import HealthState
from crm_webhooks.core.webhook_validator import SubscriptionNotFoundError, WebhookValidationError
from crm_webhooks.services.subscription_store import DatabaseSubscriptionStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def store(db_session_patch):
    return DatabaseSubscriptionStore()


def create(store, principal_id="user_1", **kwargs):
    fields = {
        "name": "Deal updates",
        "url": "https://hooks.example.com/crm",
        "entity_type": "deal",
        "event_type": "updated",
    }
    fields.update(kwargs)
    return store.create_subscription(principal_id, **fields)


def log_entry(webhook_id, status=DeliveryStatus.SUCCESS):
    return DeliveryLogEntry(
        webhook_id=webhook_id,
        user_id="user_1",
        status=status,
        status_code=200,
        response_body="ok",
        payload={"event": "deal.updated", "webhook_id": webhook_id},
    )


def count(session_factory, model):
    with session_factory() as session:
        return session.scalar(select(func.count()).select_from(model))


class TestCreateSubscription:
    def test_creates_with_defaults(self, store):
        sub = create(store)

        assert sub.id
        assert sub.user_id == "user_1"
        assert sub.entity_type == EntityType.DEAL
        assert sub.event_type == WebhookEventType.UPDATED
        assert sub.active is True
        assert sub.trigger_count == 0
        assert sub.consecutive_failures == 0
        assert sub.conditions is None
        assert sub.headers is None
        assert sub.created_at is not None

    def test_trims_name_and_url(self, store):
        sub = create(store, name="  Deals  ", url="  https://hooks.example.com/crm  ")
        assert sub.name == "Deals"
        assert sub.url == "https://hooks.example.com/crm"

    def test_drops_blank_headers(self, store):
        sub = create(store, headers={"Authorization": "Bearer x", "": "orphan", "X-Empty": "  "})
        assert sub.headers == {"Authorization": "Bearer x"}

    def test_all_blank_headers_stored_as_null(self, store):
        assert create(store, headers={"": ""}).headers is None

    def test_drops_incomplete_conditions(self, store):
        sub = create(
            store,
            conditions=[
                {"field": "amount", "operator": "greater_than", "value": 100},
                {"field": "", "operator": "equals", "value": 1},
                {"field": "stage", "operator": "equals"},
                {"field": "stage", "operator": "in", "value": ["won"], "logic": "OR"},
            ],
        )
        assert sub.conditions == [
            {"field": "amount", "operator": "greater_than", "value": 100},
            {"field": "stage", "operator": "in", "value": ["won"], "logic": "OR"},
        ]

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"name": " "}, "name"),
            ({"url": ""}, "url"),
            ({"url": "http://hooks.example.com/crm"}, "url"),
            ({"url": "https://localhost/hook"}, "url"),
            ({"url": "https://10.0.0.5/hook"}, "url"),
            ({"entity_type": "invoice"}, "entity_type"),
            ({"event_type": "exploded"}, "event_type"),
        ],
    )
    def test_rejects_invalid_input(self, store, db_session_patch, kwargs, field):
        with pytest.raises(WebhookValidationError) as exc_info:
            create(store, **kwargs)
        assert exc_info.value.field == field
        assert count(db_session_patch, Webhook) == 0

    def test_requires_principal(self, store):
        with pytest.raises(WebhookValidationError):
            create(store, principal_id=None)


class TestEngineOperations:
    """Operations the dispatcher and test trigger depend on."""

    def test_list_active_filters_owner_type_and_state(self, store):
        wanted = create(store)
        create(store, principal_id="user_2")
        create(store, entity_type="contact")
        create(store, event_type="created")
        create(store, active=False)

        found = store.list_active_subscriptions("user_1", EntityType.DEAL, WebhookEventType.UPDATED)

        assert [sub.id for sub in found] == [wanted.id]

    def test_list_active_accepts_plain_strings(self, store):
        wanted = create(store)
        assert [s.id for s in store.list_active_subscriptions("user_1", "deal", "updated")] == [wanted.id]

    def test_list_active_skips_unreadable_row(self, store, db_session_patch):
        good = create(store)
        with db_session_patch() as session:
            session.add(
                Webhook(
                    id="wh_bad_headers",
                    user_id="user_1",
                    name="Written elsewhere",
                    url="https://hooks.example.com/other",
                    entity_type="deal",
                    event_type="updated",
                    headers={"X-Retry": 3},
                )
            )
            session.commit()
        before = webhook_dispatch_errors.labels(stage="load")._value.get()

        found = store.list_active_subscriptions("user_1", "deal", "updated")

        assert [sub.id for sub in found] == [good.id]
        assert webhook_dispatch_errors.labels(stage="load")._value.get() == before + 1

    def test_get_subscription_checks_owner(self, store):
        sub = create(store)
        assert store.get_subscription(sub.id, "user_1").id == sub.id
        assert store.get_subscription(sub.id, "user_2") is None
        assert store.get_subscription("missing", "user_1") is None

    def test_record_delivery_writes_log_and_health(self, store, db_session_patch):
        sub = create(store)
        health = HealthState(active=True, trigger_count=1, consecutive_failures=0, last_triggered_at=NOW)

        store.record_delivery(log_entry(sub.id), sub.id, health)

        reloaded = store.get_subscription(sub.id, "user_1")
        assert reloaded.trigger_count == 1
        assert reloaded.last_triggered_at is not None
        logs = store.list_logs(sub.id, "user_1")
        assert len(logs) == 1
        assert logs[0]["status"] == "success"
        assert logs[0]["status_code"] == 200
        assert logs[0]["payload"] == {"event": "deal.updated", "webhook_id": sub.id}

    def test_auto_disabled_subscription_is_no_longer_loaded(self, store):
        sub = create(store)
        health = HealthState(active=False, trigger_count=10, consecutive_failures=10, last_triggered_at=NOW)

        store.update_health(sub.id, health)

        assert store.list_active_subscriptions("user_1", "deal", "updated") == []
        assert store.get_subscription(sub.id, "user_1").consecutive_failures == 10

    def test_record_delivery_is_one_transaction(self, store, db_session_patch):
        health = HealthState(active=True, trigger_count=1, consecutive_failures=0, last_triggered_at=NOW)

        with pytest.raises(IntegrityError):
            store.record_delivery(log_entry("missing"), "missing", health)

        assert count(db_session_patch, WebhookLog) == 0

    def test_insert_log_and_update_health_separately(self, store):
        sub = create(store)

        store.insert_log(log_entry(sub.id, DeliveryStatus.FAILED))
        store.update_health(sub.id, HealthState(active=True, trigger_count=3, consecutive_failures=3))

        assert store.get_subscription(sub.id, "user_1").consecutive_failures == 3
        assert store.list_logs(sub.id, "user_1")[0]["status"] == "failed"

    def test_update_health_of_deleted_subscription_is_ignored(self, store):
        store.update_health("gone", HealthState(active=True, trigger_count=1, consecutive_failures=0))


class TestManagementOperations:
    def test_list_subscriptions_of_owner(self, store):
        first = create(store, name="First")
        second = create(store, name="Second", entity_type="task")
        create(store, principal_id="user_2")

        assert {sub.id for sub in store.list_subscriptions("user_1")} == {first.id, second.id}

    def test_reactivation_keeps_counters(self, store):
        sub = create(store)
        store.update_health(sub.id, HealthState(active=False, trigger_count=10, consecutive_failures=10))

        reactivated = store.set_active(sub.id, "user_1", True)

        assert reactivated.active is True
        assert reactivated.consecutive_failures == 10
        assert [s.id for s in store.list_active_subscriptions("user_1", "deal", "updated")] == [sub.id]

    def test_deactivate(self, store):
        sub = create(store)
        assert store.set_active(sub.id, "user_1", False).active is False

    def test_set_active_unknown_subscription(self, store):
        sub = create(store)
        with pytest.raises(SubscriptionNotFoundError):
            store.set_active(sub.id, "user_2", False)

    def test_list_logs_limit_and_owner(self, store):
        sub = create(store)
        for _ in range(5):
            store.insert_log(log_entry(sub.id))

        assert len(store.list_logs(sub.id, "user_1", limit=3)) == 3
        assert store.list_logs(sub.id, "user_2") == []
