"""
Test fixtures for the CRM webhook engine.

This module provides reusable test data and mock objects for testing.
"""

from .factories import *
from .mocks import *

__all__ = [
    # Factories
    "SubscriptionFactory",
    "EventFactory",
    "OutcomeFactory",
    # Mocks
    "InMemorySubscriptionStore",
    "ScriptedEndpoint",
]
