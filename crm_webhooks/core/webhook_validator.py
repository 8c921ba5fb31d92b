"""Webhook URL validation.

Subscriptions may only point at HTTPS endpoints. The creation-time validator
additionally refuses hosts that would make the server call into its own
infrastructure (loopback, private ranges, cloud metadata services).
"""

import ipaddress
from urllib.parse import urlparse


class WebhookValidationError(Exception):
    """Raised when a webhook request is invalid and must not be retried."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class SubscriptionNotFoundError(WebhookValidationError):
    """Raised when a subscription does not exist or belongs to another user."""

    def __init__(self, subscription_id: str):
        self.subscription_id = subscription_id
        super().__init__("webhook_id", f"Webhook {subscription_id} not found")


def is_valid_webhook_url(url: str) -> bool:
    """Return True only for well-formed https:// URLs."""
    try:
        parsed = urlparse(url)
        return parsed.scheme == "https" and bool(parsed.hostname)
    except (TypeError, ValueError, AttributeError):
        return False


class WebhookURLValidator:
    """Explains why a webhook URL is rejected at subscription creation."""

    # Blocked IP ranges (RFC 1918 private networks, loopback, link-local)
    BLOCKED_NETWORKS = [
        ipaddress.ip_network("10.0.0.0/8"),
        ipaddress.ip_network("172.16.0.0/12"),
        ipaddress.ip_network("192.168.0.0/16"),
        ipaddress.ip_network("127.0.0.0/8"),
        ipaddress.ip_network("169.254.0.0/16"),  # Link-local (AWS metadata service)
        ipaddress.ip_network("::1/128"),
        ipaddress.ip_network("fc00::/7"),
        ipaddress.ip_network("fe80::/10"),
    ]

    BLOCKED_HOSTNAMES = {
        "localhost",
        "metadata.google.internal",
        "metadata",
        "instance-data",
    }

    @classmethod
    def validate_webhook_url(cls, url: str) -> tuple[bool, str]:
        """
        Validate a webhook URL before it is stored.

        Only literal IP hosts are checked against the blocked ranges; hostnames are
        not resolved here.

        Args:
            url: The webhook URL to validate

        Returns:
            (is_valid, error_message) - error_message is empty when the URL is accepted
        """
        if not url or not url.strip():
            return False, "URL is required"

        try:
            parsed = urlparse(url.strip())
        except ValueError as e:
            return False, f"Invalid webhook URL: {e}"

        if parsed.scheme != "https":
            return False, "URL must be a valid HTTPS URL"

        try:
            hostname = parsed.hostname
        except ValueError as e:
            return False, f"Invalid webhook URL: {e}"

        if not hostname:
            return False, "Webhook URL must have a valid hostname"

        if hostname.lower() in cls.BLOCKED_HOSTNAMES:
            return False, f"Webhook URL hostname '{hostname}' is blocked for security reasons"

        try:
            ip = ipaddress.ip_address(hostname)
        except ValueError:
            return True, ""

        for network in cls.BLOCKED_NETWORKS:
            if ip in network:
                return False, f"Webhook URL points to blocked IP range {network} (private/internal network)"

        return True, ""
