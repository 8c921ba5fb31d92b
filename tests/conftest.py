"""
Global pytest configuration and fixtures for all tests.

This file provides fixtures available to all test modules.
"""

import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from crm_webhooks.core.config import WebhookSettings, reset_config  # noqa: E402
from tests.fixtures import InMemorySubscriptionStore, ScriptedEndpoint, SubscriptionFactory  # noqa: E402


@pytest.fixture(autouse=True)
def test_environment(monkeypatch):
    """Keep tests away from real databases and cached configuration."""
    monkeypatch.setenv("CRM_WEBHOOKS_TESTING", "1")
    monkeypatch.delenv("PRODUCTION", raising=False)
    for name in ("ENVIRONMENT", "LOG_JSON", "WEBHOOK_MAX_ATTEMPTS", "WEBHOOK_TIMEOUT_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def webhook_settings():
    """Default delivery settings."""
    return WebhookSettings()


@pytest.fixture
def memory_store():
    """Provide an empty in-memory subscription store."""
    return InMemorySubscriptionStore()


@pytest.fixture
def subscription():
    """Provide an active deal.updated subscription without conditions."""
    return SubscriptionFactory.create()


@pytest.fixture
def endpoint():
    """Provide a scripted HTTP endpoint answering 200 by default."""
    return ScriptedEndpoint()
