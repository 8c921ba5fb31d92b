"""Condition evaluation for webhook subscriptions.

A subscription's filter is an ordered list of conditions folded strictly left to
right: each condition's ``logic`` combines the running result with that
condition's own outcome. There is no precedence and no grouping, so
``A OR B AND C`` means ``(A OR B) AND C``.
"""

import json
import logging
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from crm_webhooks.core.schemas import ConditionLogic, ConditionOperator, WebhookCondition

logger = logging.getLogger(__name__)


def resolve_field(data: Any, path: str) -> Any:
    """Follow a dot-separated path into nested mappings.

    Missing keys and non-mapping intermediates resolve to None instead of raising.
    Numeric segments index into lists (``"emails.0"``).
    """
    current = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(segment)
        elif isinstance(current, list | tuple) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping | list | tuple):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, Mapping | list | tuple):
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, int | float | Decimal):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _evaluate(condition: WebhookCondition, data: Any) -> bool:
    field_value = resolve_field(data, condition.field)
    target = condition.value
    op = condition.operator

    if op == ConditionOperator.EQUALS:
        return _as_text(field_value) == _as_text(target)
    if op == ConditionOperator.NOT_EQUALS:
        return _as_text(field_value) != _as_text(target)
    if op == ConditionOperator.CONTAINS:
        return _as_text(target).lower() in _as_text(field_value).lower()
    if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left = _as_number(field_value)
        right = _as_number(target)
        # NaN compares False both ways, which is what an unparsable value must do
        if left is None or right is None:
            return False
        return left > right if op == ConditionOperator.GREATER_THAN else left < right
    if op == ConditionOperator.IN:
        candidates = list(target) if isinstance(target, list | tuple | set | frozenset) else [target]
        return field_value in candidates
    return False


def _coerce(condition: WebhookCondition | Mapping[str, Any]) -> WebhookCondition | None:
    if isinstance(condition, WebhookCondition):
        return condition
    try:
        return WebhookCondition.model_validate(condition)
    except ValidationError as e:
        logger.warning(f"[Webhook Conditions] Ignoring malformed condition {condition!r}: {e.error_count()} error(s)")
        return None


def _logic_of(condition: WebhookCondition | None, raw: Any) -> ConditionLogic:
    if condition is not None:
        return condition.logic or ConditionLogic.AND
    # a malformed condition still honours a readable combinator
    raw_logic = raw.get("logic") if isinstance(raw, Mapping) else None
    return ConditionLogic.OR if raw_logic == ConditionLogic.OR.value else ConditionLogic.AND


def matches(
    conditions: Sequence[WebhookCondition | Mapping[str, Any]] | None,
    data: Any,
    previous_data: Any = None,
) -> bool:
    """Decide whether a subscription fires for this record.

    Args:
        conditions: Stored conditions (models or raw dicts). Empty or None always matches.
        data: The entity's new state
        previous_data: The entity's prior state. Accepted for callers' convenience;
            no operator compares against it.

    Returns:
        The left-to-right fold of all condition outcomes. A malformed condition
        counts as a False outcome.
    """
    if not conditions:
        return True

    result: bool | None = None
    for raw in conditions:
        condition = _coerce(raw)
        outcome = _evaluate(condition, data) if condition is not None else False

        if result is None:
            result = outcome
            continue

        logic = _logic_of(condition, raw)
        if logic == ConditionLogic.OR:
            result = result or outcome
        else:
            result = result and outcome

    return bool(result)
