"""Unit tests for webhook URL validation."""

import pytest

from crm_webhooks.core.webhook_validator import (
    SubscriptionNotFoundError,
    WebhookURLValidator,
    WebhookValidationError,
    is_valid_webhook_url,
)


class TestIsValidWebhookUrl:
    @pytest.mark.parametrize(
        "url",
        ["https://example.com/hook", "https://hooks.example.com:8443/a?b=c", "HTTPS://example.com"],
    )
    def test_https_urls_are_valid(self, url):
        assert is_valid_webhook_url(url) is True

    @pytest.mark.parametrize(
        "url",
        ["http://example.com", "not a url", "", "ftp://example.com", "https://", "example.com/hook"],
    )
    def test_other_urls_are_invalid(self, url):
        assert is_valid_webhook_url(url) is False

    def test_none_is_invalid(self):
        assert is_valid_webhook_url(None) is False


class TestWebhookURLValidator:
    """Creation-time validation with reasons."""

    def test_accepts_public_https(self):
        assert WebhookURLValidator.validate_webhook_url("https://hooks.example.com/crm") == (True, "")

    def test_requires_url(self):
        assert WebhookURLValidator.validate_webhook_url("  ") == (False, "URL is required")

    def test_rejects_plain_http(self):
        is_valid, error = WebhookURLValidator.validate_webhook_url("http://hooks.example.com/crm")
        assert is_valid is False
        assert error == "URL must be a valid HTTPS URL"

    @pytest.mark.parametrize("host", ["localhost", "metadata.google.internal", "LOCALHOST"])
    def test_rejects_blocked_hostnames(self, host):
        is_valid, error = WebhookURLValidator.validate_webhook_url(f"https://{host}/hook")
        assert is_valid is False
        assert "blocked" in error

    @pytest.mark.parametrize("ip", ["127.0.0.1", "10.1.2.3", "192.168.0.10", "169.254.169.254", "[::1]"])
    def test_rejects_private_ips(self, ip):
        is_valid, error = WebhookURLValidator.validate_webhook_url(f"https://{ip}/hook")
        assert is_valid is False
        assert "blocked IP range" in error

    def test_accepts_public_ip(self):
        assert WebhookURLValidator.validate_webhook_url("https://8.8.8.8/hook") == (True, "")


class TestErrors:
    def test_validation_error_carries_field(self):
        error = WebhookValidationError("url", "URL is required")
        assert error.field == "url"
        assert error.message == "URL is required"
        assert str(error) == "url: URL is required"

    def test_not_found_is_a_validation_error(self):
        error = SubscriptionNotFoundError("wh_1")
        assert isinstance(error, WebhookValidationError)
        assert error.subscription_id == "wh_1"
        assert error.message == "Webhook wh_1 not found"
