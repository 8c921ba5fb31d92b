#!/usr/bin/env python3
"""Manage CRM webhook subscriptions from the command line."""

import asyncio
import json
import sys

from rich.console import Console
from rich.table import Table

from crm_webhooks.core.logging_config import setup_structured_logging
from crm_webhooks.core.webhook_validator import SubscriptionNotFoundError, WebhookValidationError
from crm_webhooks.services.subscription_store import DatabaseSubscriptionStore
from crm_webhooks.services.webhook_test_trigger import WebhookTestTrigger

console = Console()


def list_webhooks(store: DatabaseSubscriptionStore, principal_id: str):
    """List all webhooks of a principal with their health."""
    subscriptions = store.list_subscriptions(principal_id)

    if not subscriptions:
        console.print(f"[yellow]No webhooks found for {principal_id}.[/yellow]")
        return

    table = Table(title=f"Webhooks of {principal_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Event", style="blue")
    table.add_column("URL")
    table.add_column("Active")
    table.add_column("Triggers", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Last Triggered")

    for sub in subscriptions:
        table.add_row(
            sub.id,
            sub.name,
            f"{sub.entity_type.value}.{sub.event_type.value}",
            sub.url,
            "[green]yes[/green]" if sub.active else "[red]no[/red]",
            str(sub.trigger_count),
            str(sub.consecutive_failures),
            sub.last_triggered_at.isoformat() if sub.last_triggered_at else "-",
        )

    console.print(table)


def show_logs(store: DatabaseSubscriptionStore, principal_id: str, webhook_id: str, limit: int):
    """Show the most recent delivery log entries of one webhook."""
    logs = store.list_logs(webhook_id, principal_id, limit=limit)

    if not logs:
        console.print(f"[yellow]No deliveries logged for {webhook_id}.[/yellow]")
        return

    table = Table(title=f"Deliveries of {webhook_id}")
    table.add_column("Triggered At", style="cyan")
    table.add_column("Status")
    table.add_column("HTTP", justify="right")
    table.add_column("Error", style="red")
    table.add_column("Response")

    for log in logs:
        status = log["status"]
        table.add_row(
            log["triggered_at"].isoformat() if log["triggered_at"] else "-",
            f"[green]{status}[/green]" if status == "success" else f"[red]{status}[/red]",
            str(log["status_code"]) if log["status_code"] is not None else "-",
            log["error_message"] or "",
            (log["response_body"] or "")[:60],
        )

    console.print(table)


def parse_headers(values: list[str] | None) -> dict[str, str] | None:
    """Turn repeated ``Name:Value`` arguments into a header dict."""
    if not values:
        return None
    headers = {}
    for value in values:
        name, sep, header_value = value.partition(":")
        if not sep or not name.strip():
            raise WebhookValidationError("header", f"Expected Name:Value, got '{value}'")
        headers[name.strip()] = header_value.strip()
    return headers


def create_webhook(store: DatabaseSubscriptionStore, args):
    """Create a webhook subscription."""
    conditions = json.loads(args.conditions) if args.conditions else None
    headers = parse_headers(args.header)

    sub = store.create_subscription(
        principal_id=args.principal_id,
        name=args.name,
        url=args.url,
        entity_type=args.entity_type,
        event_type=args.event_type,
        conditions=conditions,
        headers=headers,
        active=not args.inactive,
    )
    console.print(f"[green]✓ Created webhook '{sub.name}' ({sub.id})[/green]")


def test_webhook(store: DatabaseSubscriptionStore, principal_id: str, webhook_id: str, overrides: str | None):
    """Send one test delivery and print the outcome."""
    trigger = WebhookTestTrigger(store=store)
    outcome = asyncio.run(trigger.test_webhook(principal_id, webhook_id, json.loads(overrides) if overrides else None))

    if outcome.success:
        console.print(f"[green]✓ Test delivered: HTTP {outcome.status_code}[/green]")
    else:
        console.print(f"[red]✗ Test failed: {outcome.error}[/red]")
    if outcome.response_body:
        console.print(f"[cyan]Response:[/cyan] {outcome.response_body[:500]}")


def set_active(store: DatabaseSubscriptionStore, principal_id: str, webhook_id: str, active: bool):
    """Activate or deactivate a webhook."""
    sub = store.set_active(webhook_id, principal_id, active)
    state = "[green]activated[/green]" if sub.active else "[yellow]deactivated[/yellow]"
    console.print(f"Webhook '{sub.name}' ({sub.id}) {state}")


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Manage CRM webhook subscriptions")
    parser.add_argument("principal_id", help="Owning user ID")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # List command
    subparsers.add_parser("list", help="List webhooks with their health")

    # Create command
    create_parser = subparsers.add_parser("create", help="Create a webhook")
    create_parser.add_argument("--name", required=True, help="Display name")
    create_parser.add_argument("--url", required=True, help="HTTPS endpoint")
    create_parser.add_argument("--entity-type", required=True, help="contact, company, deal, task or activity")
    create_parser.add_argument("--event-type", required=True, help="created, updated, deleted, ...")
    create_parser.add_argument("--conditions", help="JSON list of conditions")
    create_parser.add_argument("--header", action="append", help="Custom header as Name:Value (repeatable)")
    create_parser.add_argument("--inactive", action="store_true", help="Create the webhook disabled")

    # Logs command
    logs_parser = subparsers.add_parser("logs", help="Show recent deliveries of a webhook")
    logs_parser.add_argument("webhook_id", help="Webhook ID")
    logs_parser.add_argument("--limit", type=int, default=20, help="Number of entries (default: 20)")

    # Test command
    test_parser = subparsers.add_parser("test", help="Send a test payload to a webhook")
    test_parser.add_argument("webhook_id", help="Webhook ID")
    test_parser.add_argument("--payload", help="JSON object of payload fields to override")

    # Activate / deactivate commands
    activate_parser = subparsers.add_parser("activate", help="Re-enable a webhook")
    activate_parser.add_argument("webhook_id", help="Webhook ID")
    deactivate_parser = subparsers.add_parser("deactivate", help="Disable a webhook")
    deactivate_parser.add_argument("webhook_id", help="Webhook ID")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_structured_logging()
    store = DatabaseSubscriptionStore()

    try:
        if args.command == "list":
            list_webhooks(store, args.principal_id)
        elif args.command == "create":
            create_webhook(store, args)
        elif args.command == "logs":
            show_logs(store, args.principal_id, args.webhook_id, args.limit)
        elif args.command == "test":
            test_webhook(store, args.principal_id, args.webhook_id, args.payload)
        elif args.command == "activate":
            set_active(store, args.principal_id, args.webhook_id, True)
        elif args.command == "deactivate":
            set_active(store, args.principal_id, args.webhook_id, False)
    except SubscriptionNotFoundError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        sys.exit(1)
    except WebhookValidationError as e:
        console.print(f"[red]✗ {e.field}: {e.message}[/red]")
        sys.exit(1)
    except json.JSONDecodeError as e:
        console.print(f"[red]✗ Invalid JSON: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
