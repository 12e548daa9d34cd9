"""
Entity Projector

Applies classified Stripe events to local customer projections.

Lookups switch key by action: subscription updates are located by
subscription id because Stripe does not reliably carry the parent customer
on them, while every other action is located by customer id. The key is an
explicit column of ``DISPATCH`` so it cannot drift silently.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from tiersync.core.errors import (
    MalformedPayload,
    ProjectionConflict,
    ProjectionNotFound,
    UserNotFound,
)
from tiersync.core.models import (
    CustomerProjection,
    CustomerRecord,
    DeletedCustomerRecord,
    ReconciliationAction,
    ReconciliationResult,
    ResultStatus,
    SubscriptionRecord,
    WebhookEvent,
)
from tiersync.db.store import CustomerStore, UserRegistry
from tiersync.reconcile.tier import resolve_tier

logger = structlog.get_logger()

RecordT = TypeVar("RecordT", bound=BaseModel)


class LookupKey(str, Enum):
    """Projection column used to locate the row an event applies to."""

    CUSTOMER_ID = "stripe_customer_id"
    SUBSCRIPTION_ID = "stripe_subscription_id"


@dataclass(frozen=True)
class ActionSpec:
    lookup: LookupKey
    handler: str


DISPATCH: dict[ReconciliationAction, ActionSpec] = {
    ReconciliationAction.CUSTOMER_CREATED: ActionSpec(LookupKey.CUSTOMER_ID, "_customer_created"),
    ReconciliationAction.CUSTOMER_DELETED: ActionSpec(LookupKey.CUSTOMER_ID, "_customer_deleted"),
    ReconciliationAction.SUBSCRIPTION_CREATED: ActionSpec(
        LookupKey.CUSTOMER_ID, "_subscription_created"
    ),
    # Located by subscription id: the update payload's customer is unreliable
    ReconciliationAction.SUBSCRIPTION_UPDATED: ActionSpec(
        LookupKey.SUBSCRIPTION_ID, "_subscription_updated"
    ),
    ReconciliationAction.SUBSCRIPTION_DELETED: ActionSpec(
        LookupKey.CUSTOMER_ID, "_subscription_deleted"
    ),
}


def decode(event: WebhookEvent, model: type[RecordT]) -> RecordT:
    """Decode ``data.object`` into a typed Stripe record."""
    try:
        return model.model_validate(event.data.obj)
    except ValidationError as e:
        raise MalformedPayload(
            f"cannot decode {event.type} payload as {model.__name__}",
            event_id=event.id,
            errors=e.error_count(),
        ) from e


class EntityProjector:
    """Reconciliation core: one state transition per action."""

    def __init__(self, customers: CustomerStore, users: UserRegistry):
        self.customers = customers
        self.users = users

    async def apply(
        self, event: WebhookEvent, action: ReconciliationAction
    ) -> ReconciliationResult:
        """Apply ``event`` once. Replays and superseded events are skipped."""
        log = logger.bind(event_id=event.id, event_type=event.type)

        if await self.customers.is_event_processed(event.id):
            log.info("Webhook event already applied")
            return ReconciliationResult(
                status=ResultStatus.DUPLICATE, action=action, event_id=event.id
            )

        spec = DISPATCH[action]
        handler: Callable[[WebhookEvent, LookupKey], Awaitable[ReconciliationResult]]
        handler = getattr(self, spec.handler)
        result = await handler(event, spec.lookup)

        if result.status is not ResultStatus.DUPLICATE:
            await self.customers.mark_event_processed(event.id, event.type)

        log.info(
            "Webhook event reconciled",
            status=result.status.value,
            customer_id=result.customer_id,
            subscription_id=result.subscription_id,
            tier=result.tier,
        )
        return result

    # ──────────────────────────────────────────────────────────
    # Lookup
    # ──────────────────────────────────────────────────────────

    async def _locate(self, key: LookupKey, value: str) -> CustomerProjection | None:
        if key is LookupKey.SUBSCRIPTION_ID:
            return await self.customers.find_by_subscription_id(value)
        return await self.customers.find_by_customer_id(value)

    async def _require(
        self, event: WebhookEvent, key: LookupKey, value: str
    ) -> CustomerProjection:
        projection = await self._locate(key, value)
        if projection is None:
            raise ProjectionNotFound(
                f"no customer projection with {key.value}={value}",
                event_id=event.id,
                lookup=key.value,
                value=value,
            )
        return projection

    @staticmethod
    def _is_stale(projection: CustomerProjection, event: WebhookEvent) -> bool:
        # Strictly older only; Stripe timestamps have one-second resolution
        return (
            projection.last_event_created is not None
            and event.created < projection.last_event_created
        )

    def _stale(
        self, event: WebhookEvent, action: ReconciliationAction, projection: CustomerProjection
    ) -> ReconciliationResult:
        logger.info(
            "Skipping superseded webhook event",
            event_id=event.id,
            event_created=event.created,
            last_event_created=projection.last_event_created,
        )
        return ReconciliationResult(
            status=ResultStatus.STALE,
            action=action,
            event_id=event.id,
            customer_id=projection.stripe_customer_id,
            subscription_id=projection.stripe_subscription_id,
            tier=projection.tier,
        )

    # ──────────────────────────────────────────────────────────
    # Customer Events
    # ──────────────────────────────────────────────────────────

    async def _customer_created(
        self, event: WebhookEvent, key: LookupKey
    ) -> ReconciliationResult:
        action = ReconciliationAction.CUSTOMER_CREATED
        customer = decode(event, CustomerRecord)

        existing = await self._locate(key, customer.id)
        if existing is not None:
            return ReconciliationResult(
                status=ResultStatus.DUPLICATE,
                action=action,
                event_id=event.id,
                customer_id=existing.stripe_customer_id,
                subscription_id=existing.stripe_subscription_id,
                tier=existing.tier,
            )

        user_id = await self.users.find_user_id_by_email(customer.email)
        if user_id is None:
            raise UserNotFound(
                f"no user with email {customer.email}",
                event_id=event.id,
                stripe_customer_id=customer.id,
            )

        try:
            projection = await self.customers.create(
                user_id, customer.id, last_event_created=event.created
            )
        except ProjectionConflict as e:
            e.context.setdefault("event_id", event.id)
            raise

        return ReconciliationResult(
            status=ResultStatus.PROCESSED,
            action=action,
            event_id=event.id,
            customer_id=projection.stripe_customer_id,
            subscription_id=None,
            tier=projection.tier,
        )

    async def _customer_deleted(
        self, event: WebhookEvent, key: LookupKey
    ) -> ReconciliationResult:
        action = ReconciliationAction.CUSTOMER_DELETED
        customer = decode(event, DeletedCustomerRecord)

        projection = await self._require(event, key, customer.id)
        await self.customers.delete(projection)

        return ReconciliationResult(
            status=ResultStatus.PROCESSED,
            action=action,
            event_id=event.id,
            customer_id=customer.id,
        )

    # ──────────────────────────────────────────────────────────
    # Subscription Events
    # ──────────────────────────────────────────────────────────

    async def _subscription_created(
        self, event: WebhookEvent, key: LookupKey
    ) -> ReconciliationResult:
        action = ReconciliationAction.SUBSCRIPTION_CREATED
        subscription = decode(event, SubscriptionRecord)
        tier = resolve_tier(subscription)

        projection = await self._require(event, key, subscription.customer)
        if self._is_stale(projection, event):
            return self._stale(event, action, projection)

        projection.stripe_subscription_id = subscription.id
        projection.tier = tier
        projection.last_event_created = event.created
        await self.customers.update(projection)

        return self._processed(event, action, projection)

    async def _subscription_updated(
        self, event: WebhookEvent, key: LookupKey
    ) -> ReconciliationResult:
        action = ReconciliationAction.SUBSCRIPTION_UPDATED
        subscription = decode(event, SubscriptionRecord)
        tier = resolve_tier(subscription)

        projection = await self._require(event, key, subscription.id)
        if self._is_stale(projection, event):
            return self._stale(event, action, projection)

        projection.tier = tier
        projection.last_event_created = event.created
        await self.customers.update(projection)

        return self._processed(event, action, projection)

    async def _subscription_deleted(
        self, event: WebhookEvent, key: LookupKey
    ) -> ReconciliationResult:
        action = ReconciliationAction.SUBSCRIPTION_DELETED
        subscription = decode(event, SubscriptionRecord)

        projection = await self._require(event, key, subscription.customer)
        if self._is_stale(projection, event):
            return self._stale(event, action, projection)

        projection.stripe_subscription_id = None
        projection.tier = 0
        projection.last_event_created = event.created
        await self.customers.update(projection)

        return self._processed(event, action, projection)

    @staticmethod
    def _processed(
        event: WebhookEvent, action: ReconciliationAction, projection: CustomerProjection
    ) -> ReconciliationResult:
        return ReconciliationResult(
            status=ResultStatus.PROCESSED,
            action=action,
            event_id=event.id,
            customer_id=projection.stripe_customer_id,
            subscription_id=projection.stripe_subscription_id,
            tier=projection.tier,
        )
