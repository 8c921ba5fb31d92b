"""
Core components of the webhook dispatch engine.

This module contains the building blocks that do not orchestrate anything:
- Configuration and logging setup (config.py, logging_config.py)
- Data models and schemas (schemas.py)
- URL validation (webhook_validator.py)
- Condition evaluation and payload construction (webhook_conditions.py, webhook_payload.py)
- HTTP delivery with retry (webhook_delivery.py)
- Subscription health policy (webhook_health.py)
"""
