"""Custom SQLAlchemy JSON type: native JSONB on PostgreSQL.

Conditions, headers and logged payloads are stored as JSON documents. On
PostgreSQL they use JSONB; other dialects (the in-memory SQLite engine used by
unit tests) fall back to the generic JSON type.
"""

import logging
from typing import Any

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator, TypeEngine

logger = logging.getLogger(__name__)


class JSONType(TypeDecorator):
    """JSON column with validation.

    - Python None is stored as SQL NULL, not JSON null
    - Only dicts and lists are accepted; anything else is logged and stored as {}
    """

    impl = JSON(none_as_null=True)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB(none_as_null=True))
        return dialect.type_descriptor(JSON(none_as_null=True))

    def process_bind_param(self, value: Any, dialect: Dialect) -> dict | list | None:
        if value is None:
            return None

        if not isinstance(value, dict | list):
            logger.warning(
                f"JSONType received non-JSON type: {type(value).__name__}. "
                f"Converting to empty dict to prevent data corruption."
            )
            value = {}

        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> dict | list | None:
        return value
