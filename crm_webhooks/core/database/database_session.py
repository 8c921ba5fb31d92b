"""
Database session management for the webhook engine.

Sessions are short-lived and scoped to one unit of work: the dispatcher calls
the store from worker threads, one subscription at a time.
"""

import logging
import os
import time
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from crm_webhooks.core.config import get_config
from crm_webhooks.core.database.db_config import DatabaseConfig

logger = logging.getLogger(__name__)

# Module-level globals for lazy initialization
_engine: Engine | None = None
_scoped_session: scoped_session | None = None

# Fail fast for a short window after a connection-level failure
_UNHEALTHY_WINDOW_SECONDS = 10
_last_failure_at: float = 0.0
_is_healthy = True


def get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine, _scoped_session

    if _engine is None:
        # Unit tests must patch get_db_session() instead of opening real connections
        if os.environ.get("CRM_WEBHOOKS_TESTING") and not os.environ.get("DATABASE_URL"):
            raise RuntimeError(
                "Unit tests should not create real database connections. "
                "Either patch get_db_session() or set DATABASE_URL for integration tests."
            )

        settings = get_config().database
        connection_string = settings.url or DatabaseConfig.get_connection_string()

        if "postgresql" not in connection_string and "postgres://" not in connection_string:
            raise ValueError("Only PostgreSQL is supported. Use DATABASE_URL=postgresql://...")

        _engine = create_engine(
            connection_string,
            pool_size=10,
            max_overflow=20,
            pool_timeout=settings.pool_timeout,
            pool_recycle=3600,
            pool_pre_ping=True,
            echo=False,
            connect_args={"connect_timeout": settings.connect_timeout},
        )

        statement_timeout_ms = settings.query_timeout * 1000

        @event.listens_for(_engine, "connect")
        def set_statement_timeout(dbapi_conn, connection_record):
            """Set statement_timeout on new connections."""
            cursor = dbapi_conn.cursor()
            cursor.execute(f"SET statement_timeout = '{statement_timeout_ms}'")
            cursor.close()

        _scoped_session = scoped_session(sessionmaker(bind=_engine))

    return _engine


def reset_engine() -> None:
    """Reset engine for testing - closes existing connections and clears global state."""
    global _engine, _scoped_session, _is_healthy, _last_failure_at

    if _scoped_session is not None:
        _scoped_session.remove()
        _scoped_session = None

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _is_healthy = True
    _last_failure_at = 0.0


def get_scoped_session() -> scoped_session:
    """Get the scoped session factory (lazy initialization)."""
    get_engine()
    assert _scoped_session is not None
    return _scoped_session


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic cleanup.

    Usage:
        with get_db_session() as session:
            stmt = select(Webhook).filter_by(...)
            result = session.scalars(stmt).first()
            session.add(new_object)
            session.commit()  # Explicit commit needed

    The session will automatically rollback on exception and always be closed.
    """
    global _is_healthy, _last_failure_at

    if not _is_healthy and time.time() - _last_failure_at < _UNHEALTHY_WINDOW_SECONDS:
        raise RuntimeError("Database is unhealthy - failing fast to prevent cascading failures")

    scoped = get_scoped_session()
    session = scoped()
    try:
        yield session
        _is_healthy = True
    except (OperationalError, DisconnectionError) as e:
        logger.error(f"Database connection error: {e}")
        session.rollback()
        _is_healthy = False
        _last_failure_at = time.time()
        raise
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        session.rollback()
        raise
    finally:
        session.close()
        scoped.remove()
