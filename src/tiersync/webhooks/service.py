"""
Webhook Service

Runs one delivery through authentication, classification and projection
inside a single database unit of work, reporting every failure.
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from tiersync.config import Settings
from tiersync.core.errors import StorageError, SyncError
from tiersync.core.models import ReconciliationResult, WebhookEvent
from tiersync.db.store import CustomerStore, UserRegistry, sql_stores
from tiersync.observability import ErrorReporter, reporter_for
from tiersync.reconcile.projector import EntityProjector
from tiersync.webhooks.authenticator import EventAuthenticator
from tiersync.webhooks.classifier import classify

logger = structlog.get_logger()

StoresFactory = Callable[
    [], AbstractAsyncContextManager[tuple[CustomerStore, UserRegistry]]
]


class WebhookService:
    """
    Entry point for Stripe deliveries.

    ``stores`` opens a transactional scope yielding the customer store and
    user registry; it commits when the scope exits cleanly.
    """

    def __init__(
        self,
        authenticator: EventAuthenticator,
        reporter: ErrorReporter,
        stores: StoresFactory = sql_stores,
    ):
        self.authenticator = authenticator
        self.reporter = reporter
        self.stores = stores

    @classmethod
    def from_settings(cls, settings: Settings, reporter: ErrorReporter | None = None) -> "WebhookService":
        authenticator = EventAuthenticator(
            secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
            max_body_bytes=settings.webhook_max_body_bytes,
        )
        return cls(authenticator, reporter or reporter_for(settings))

    async def handle_webhook_event(
        self, payload: bytes, signature: str | None
    ) -> ReconciliationResult:
        """Verify and reconcile a raw delivery."""
        try:
            event = self.authenticator.verify(payload, signature)
        except SyncError as e:
            self.report(e)
            raise

        return await self.reconcile(event)

    async def reconcile(self, event: WebhookEvent) -> ReconciliationResult:
        """Classify and project an already-trusted event."""
        logger.info("Processing webhook event", event_id=event.id, event_type=event.type)

        try:
            action = classify(event)
            try:
                async with self.stores() as (customers, users):
                    projector = EntityProjector(customers, users)
                    return await projector.apply(event, action)
            except SQLAlchemyError as e:
                # Commit failures surface here, outside the store wrappers
                raise StorageError(f"transaction failed: {e}", event_id=event.id) from e
        except SyncError as e:
            self.report(e, event_id=event.id, event_type=event.type)
            raise

    def report(self, exc: SyncError, **context: Any) -> str:
        """Send ``exc`` to telemetry and stamp it with the correlation id."""
        exc.correlation_id = self.reporter.capture(
            exc, error_code=exc.code, **{**exc.context, **context}
        )
        return exc.correlation_id
