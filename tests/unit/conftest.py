"""
Unit test specific fixtures.

These fixtures are only available to unit tests.
"""

from contextlib import contextmanager
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crm_webhooks.core.database.models import Base


@pytest.fixture
def no_backoff():
    """Skip real backoff sleeps; the mock records the requested delays."""
    with patch("crm_webhooks.core.webhook_delivery.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def sqlite_session_factory():
    """In-memory SQLite database with the webhook tables created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def enable_foreign_keys(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session_patch(sqlite_session_factory):
    """Route the subscription store's sessions to the in-memory database."""

    @contextmanager
    def fake_get_db_session():
        session = sqlite_session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    with patch("crm_webhooks.services.subscription_store.get_db_session", fake_get_db_session):
        yield sqlite_session_factory
