"""
Service modules for the webhook dispatch engine.

This package contains the services that tie the core components together:
subscription storage, outcome recording, event dispatch and manual test delivery.
"""
