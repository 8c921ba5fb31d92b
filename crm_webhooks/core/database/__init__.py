"""Database module for the webhook dispatch engine.

Key components:
- db_config.py: Database configuration and connection string
- database_session.py: Engine and session management
- json_type.py: JSON column type (JSONB on PostgreSQL)
- models.py: SQLAlchemy ORM models for subscriptions and delivery logs
"""
