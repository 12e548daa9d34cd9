"""
tiersync CLI

Command-line interface for the tiersync service.
"""

import asyncio
import subprocess
import sys

import click
import structlog

from tiersync import __version__
from tiersync.config import settings

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
# CLI Group
# ══════════════════════════════════════════════════════════════


@click.group()
@click.version_option(version=__version__, prog_name="tiersync")
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """tiersync - Stripe customer and subscription tier synchronization."""
    if debug:
        import logging
        logging.basicConfig(level=logging.DEBUG)
        structlog.configure(
            wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        )


# ══════════════════════════════════════════════════════════════
# Server Commands
# ══════════════════════════════════════════════════════════════


@cli.command()
@click.option("--host", default="0.0.0.0", help="Host to bind to")
@click.option("--port", default=8000, help="Port to bind to")
@click.option("--reload/--no-reload", default=False, help="Enable auto-reload")
@click.option("--workers", default=1, help="Number of worker processes")
def serve(host: str, port: int, reload: bool, workers: int) -> None:
    """Start the tiersync API server."""
    import uvicorn

    click.echo(f"Starting tiersync API on {host}:{port}")

    uvicorn.run(
        "tiersync.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        workers=workers if not reload else 1,
        factory=True,
    )


# ══════════════════════════════════════════════════════════════
# Database Commands
# ══════════════════════════════════════════════════════════════


@cli.group()
def db() -> None:
    """Database management commands."""
    pass


@db.command("init")
def db_init() -> None:
    """Create the users, customers and webhook ledger tables if missing."""
    click.echo("Initializing database...")

    async def init():
        from tiersync.db import close_db, create_schema, init_db

        await init_db()
        try:
            await create_schema()
        finally:
            await close_db()

    asyncio.run(init())
    click.echo("Database initialized.")


def _alembic(*args: str) -> None:
    result = subprocess.run(
        ["alembic", *args],
        capture_output=True,
        text=True,
    )
    click.echo(result.stdout)
    if result.returncode != 0:
        click.echo(result.stderr, err=True)
        sys.exit(1)


@db.command("upgrade")
@click.argument("revision", default="head")
def db_upgrade(revision: str) -> None:
    """Upgrade database to a revision."""
    _alembic("upgrade", revision)


@db.command("downgrade")
@click.argument("revision", default="-1")
def db_downgrade(revision: str) -> None:
    """Downgrade database to a revision."""
    _alembic("downgrade", revision)


# ══════════════════════════════════════════════════════════════
# Event Commands
# ══════════════════════════════════════════════════════════════


@cli.group()
def events() -> None:
    """Stripe event commands."""
    pass


@events.command("replay")
@click.argument("event_id")
def events_replay(event_id: str) -> None:
    """Fetch EVENT_ID from Stripe and reconcile it.

    Skips signature verification; the event comes straight from the Stripe API.
    """
    from tiersync.core.errors import SyncError
    from tiersync.integrations.stripe import StripeClient
    from tiersync.webhooks.service import WebhookService

    async def replay():
        from tiersync.db import close_db, init_db

        event = await StripeClient.retrieve_event(event_id)
        if event is None:
            click.echo(f"Event not found: {event_id}", err=True)
            sys.exit(1)

        service = WebhookService.from_settings(settings)
        await init_db()
        try:
            result = await service.reconcile(event)
        except SyncError as e:
            click.echo(f"Replay failed: {e.message} (correlation id {e.correlation_id})", err=True)
            sys.exit(1)
        finally:
            await close_db()

        click.echo(f"Event: {result.event_id}")
        click.echo(f"  Action: {result.action.value}")
        click.echo(f"  Status: {result.status.value}")
        if result.customer_id:
            click.echo(f"  Customer: {result.customer_id}")
        if result.subscription_id:
            click.echo(f"  Subscription: {result.subscription_id}")
        if result.tier is not None:
            click.echo(f"  Tier: {result.tier}")

    asyncio.run(replay())


# ══════════════════════════════════════════════════════════════
# Config Commands
# ══════════════════════════════════════════════════════════════


@cli.command()
def config() -> None:
    """Show current configuration."""
    click.echo("tiersync Configuration\n")

    config_items = [
        ("Environment", settings.app_env),
        ("Debug", str(settings.debug)),
        ("Log Level", settings.log_level),
        ("Database", str(settings.database_url) if settings.database_url else "Not set"),
        ("Stripe Secret Key", settings.stripe_secret_key),
        ("Stripe Webhook Secret", settings.stripe_webhook_secret),
        ("Max Body Bytes", str(settings.webhook_max_body_bytes)),
        ("Tolerance Seconds", str(settings.webhook_tolerance_seconds)),
        ("Sentry DSN", settings.sentry_dsn),
    ]

    for key, value in config_items:
        # Mask sensitive values
        if any(word in key.lower() for word in ("key", "secret", "dsn")):
            value = "***" if value else "Not set"
        click.echo(f"  {key:22} {value}")


# ══════════════════════════════════════════════════════════════
# Entry Point
# ══════════════════════════════════════════════════════════════


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
