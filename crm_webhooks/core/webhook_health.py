"""Subscription health policy.

Health counters change once per settled delivery series. The only automatic
state transition is the auto-disable: a failure that brings
``consecutive_failures`` to the threshold turns the subscription off until a
human reactivates it.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from crm_webhooks.core.schemas import WebhookSubscription

DEFAULT_FAILURE_THRESHOLD = 10


@dataclass(frozen=True)
class HealthState:
    """Health fields of one subscription."""

    active: bool
    trigger_count: int
    consecutive_failures: int
    last_triggered_at: datetime | None = None

    @classmethod
    def of(cls, subscription: WebhookSubscription) -> "HealthState":
        return cls(
            active=subscription.active,
            trigger_count=subscription.trigger_count or 0,
            consecutive_failures=subscription.consecutive_failures or 0,
            last_triggered_at=subscription.last_triggered_at,
        )


def next_health_state(
    current: HealthState,
    succeeded: bool,
    now: datetime | None = None,
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
) -> HealthState:
    """Compute the health fields after one settled delivery series.

    - ``trigger_count`` grows by one and ``last_triggered_at`` moves to ``now`` regardless of outcome.
    - Success resets ``consecutive_failures`` and never touches ``active``.
    - Failure increments ``consecutive_failures``; reaching ``failure_threshold`` sets ``active`` to False.
    """
    now = now or datetime.now(UTC)

    if succeeded:
        return HealthState(
            active=current.active,
            trigger_count=current.trigger_count + 1,
            consecutive_failures=0,
            last_triggered_at=now,
        )

    failures = current.consecutive_failures + 1
    return HealthState(
        active=False if failures >= failure_threshold else current.active,
        trigger_count=current.trigger_count + 1,
        consecutive_failures=failures,
        last_triggered_at=now,
    )
