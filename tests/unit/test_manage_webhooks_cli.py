"""Unit tests for the webhook management CLI."""

import importlib.util
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from crm_webhooks.core.webhook_validator import WebhookValidationError

SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "ops" / "manage_webhooks.py"


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("manage_webhooks", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestParseHeaders:
    def test_parses_name_value_pairs(self, cli):
        headers = cli.parse_headers(["Authorization: Bearer abc:def", "X-Team:crm"])
        assert headers == {"Authorization": "Bearer abc:def", "X-Team": "crm"}

    def test_no_headers(self, cli):
        assert cli.parse_headers(None) is None
        assert cli.parse_headers([]) is None

    @pytest.mark.parametrize("value", ["Authorization", ":value", "   :value"])
    def test_rejects_malformed_header(self, cli, value):
        with pytest.raises(WebhookValidationError) as exc_info:
            cli.parse_headers([value])
        assert exc_info.value.field == "header"


class TestCreateCommand:
    def test_malformed_header_is_reported_without_traceback(self, cli):
        argv = [
            "manage_webhooks.py",
            "user_1",
            "create",
            "--name",
            "Deals",
            "--url",
            "https://hooks.example.com/crm",
            "--entity-type",
            "deal",
            "--event-type",
            "updated",
            "--header",
            "NoColonHere",
        ]
        store = MagicMock()
        console = MagicMock()

        with (
            patch.object(sys, "argv", argv),
            patch.object(cli, "setup_structured_logging"),
            patch.object(cli, "DatabaseSubscriptionStore", return_value=store),
            patch.object(cli, "console", console),
        ):
            with pytest.raises(SystemExit) as exc_info:
                cli.main()

        assert exc_info.value.code == 1
        store.create_subscription.assert_not_called()
        message = console.print.call_args.args[0]
        assert message.startswith("[red]✗ header:")
        assert "NoColonHere" in message
