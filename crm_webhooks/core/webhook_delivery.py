"""Webhook delivery with exponential backoff retry logic.

This module performs the outbound HTTP side of a webhook:
- One POST attempt with its own timeout (send_webhook_request)
- A bounded retry series with exponential backoff (deliver_webhook_with_retry)

A retry series always settles into exactly one DeliveryOutcome; callers never
see individual attempts.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from crm_webhooks.core.schemas import DeliveryOutcome

logger = logging.getLogger(__name__)


@dataclass
class WebhookDelivery:
    """Configuration for one webhook delivery series.

    Attributes:
        webhook_url: Target URL for the POST request
        payload: JSON payload to send
        headers: Subscriber-configured headers
        max_attempts: Total number of attempts, first try included (default: 3)
        timeout: Per-attempt timeout in seconds (default: 10)
        backoff_base: Seconds to wait before the first retry; doubles after each retry
        user_agent: Default User-Agent, overridable through ``headers``
    """

    webhook_url: str
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    max_attempts: int = 3
    timeout: float = 10.0
    backoff_base: float = 1.0
    user_agent: str = "CRM-Webhooks/1.0"

    def request_headers(self) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        for name, value in self.headers.items():
            lowered = name.lower()
            # Body is always JSON, whatever the subscriber configured
            if lowered == "content-type":
                continue
            if lowered == "user-agent":
                headers.pop("User-Agent", None)
            headers[name] = value
        headers["Content-Type"] = "application/json"
        return headers


def backoff_seconds(attempt: int, base: float = 1.0) -> float:
    """Delay after failed attempt number ``attempt`` (1-based): 1s, 2s, 4s, ..."""
    return base * (2 ** (attempt - 1))


async def send_webhook_request(client: httpx.AsyncClient, delivery: WebhookDelivery) -> httpx.Response:
    """Perform exactly one POST.

    Raises:
        TimeoutError: The attempt exceeded ``delivery.timeout`` as a whole
        httpx.RequestError: Connection-level failure (DNS, refused, TLS, ...)
    """
    return await asyncio.wait_for(
        client.post(
            delivery.webhook_url,
            json=delivery.payload,
            headers=delivery.request_headers(),
            timeout=delivery.timeout,
        ),
        timeout=delivery.timeout,
    )


async def deliver_webhook_with_retry(
    delivery: WebhookDelivery, client: httpx.AsyncClient | None = None
) -> DeliveryOutcome:
    """Deliver a webhook, retrying any failure with exponential backoff.

    Retry strategy (default base of 1s):
    - Attempt 1: Immediate
    - Attempt 2: After 1 second
    - Attempt 3: After 2 seconds
    No backoff follows the final attempt.

    Retry conditions:
    - 2xx: Success, stop
    - Any other status: Retry; the final one is reported with status code and body
    - Timeouts and connection errors: Retry; the final one is reported with an error message only
    - Anything else: Unrecoverable, reported immediately

    Args:
        delivery: WebhookDelivery configuration object
        client: Shared HTTP client. A short-lived one is created when omitted.

    Returns:
        The single settled outcome of the series
    """
    if client is None:
        async with httpx.AsyncClient() as owned_client:
            return await _deliver(delivery, owned_client)
    return await _deliver(delivery, client)


async def _deliver(delivery: WebhookDelivery, client: httpx.AsyncClient) -> DeliveryOutcome:
    start_time = time.monotonic()
    max_attempts = max(1, delivery.max_attempts)
    url = delivery.webhook_url

    if delivery.headers:
        # Names only: values are often credentials
        logger.debug(f"[Webhook Delivery] Custom headers for {url}: {', '.join(sorted(delivery.headers))}")

    for attempt in range(1, max_attempts + 1):
        is_final = attempt == max_attempts
        status_code: int | None = None
        response_body: str | None = None

        try:
            logger.info(f"[Webhook Delivery] Attempt {attempt}/{max_attempts} to {url}")
            response = await send_webhook_request(client, delivery)

            status_code = response.status_code
            response_body = response.text or None

            if 200 <= status_code < 300:
                duration = time.monotonic() - start_time
                logger.info(f"[Webhook Delivery] SUCCESS: {url} answered {status_code} after {attempt} attempt(s)")
                return DeliveryOutcome(
                    success=True,
                    status_code=status_code,
                    response_body=response_body,
                    attempts=attempt,
                    duration_seconds=duration,
                )

            error_msg = f"HTTP {status_code}: {response.reason_phrase}"

        except (TimeoutError, httpx.TimeoutException):
            error_msg = f"Request timeout after {delivery.timeout}s"

        except (httpx.RequestError, httpx.InvalidURL) as e:
            error_msg = f"{type(e).__name__}: {e}" if str(e) else "Network error"

        except Exception as e:
            logger.error(f"[Webhook Delivery] Unexpected error delivering to {url}: {e}", exc_info=True)
            return DeliveryOutcome(
                success=False,
                error=f"Unexpected error: {e}",
                attempts=attempt,
                duration_seconds=time.monotonic() - start_time,
            )

        if is_final:
            duration = time.monotonic() - start_time
            logger.error(f"[Webhook Delivery] FAILED: {url} after {attempt} attempt(s) in {duration:.2f}s: {error_msg}")
            return DeliveryOutcome(
                success=False,
                status_code=status_code,
                response_body=response_body,
                error=error_msg,
                attempts=attempt,
                duration_seconds=duration,
            )

        backoff_time = backoff_seconds(attempt, delivery.backoff_base)
        logger.warning(
            f"[Webhook Delivery] {error_msg} from {url}, retrying in {backoff_time:g}s "
            f"(attempt {attempt}/{max_attempts})"
        )
        await asyncio.sleep(backoff_time)

    # Unreachable: the final attempt always returns above
    return DeliveryOutcome(success=False, error="Max retries exceeded", attempts=max_attempts)
