"""
tiersync Core Domain Models

Pydantic models for Stripe webhook payloads and the local customer projection.
These are used throughout the application for validation and serialization.
"""

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ══════════════════════════════════════════════════════════════
# Enums
# ══════════════════════════════════════════════════════════════


class ReconciliationAction(str, Enum):
    """Local state transition for each supported Stripe event type."""

    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_DELETED = "customer.deleted"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class ResultStatus(str, Enum):
    """Outcome of a reconciliation attempt."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    STALE = "stale"


# ══════════════════════════════════════════════════════════════
# Base Models
# ══════════════════════════════════════════════════════════════


class TiersyncModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class StripeObject(BaseModel):
    """Base for decoded Stripe objects. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ══════════════════════════════════════════════════════════════
# Webhook Envelope
# ══════════════════════════════════════════════════════════════


class EventData(StripeObject):
    """The ``data`` member of a Stripe event."""

    obj: dict[str, Any] = Field(alias="object")
    previous_attributes: dict[str, Any] | None = None


class WebhookEvent(StripeObject):
    """A verified Stripe event. ``data.object`` stays untyped until projection."""

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    created: int
    livemode: bool = False
    data: EventData


# ══════════════════════════════════════════════════════════════
# Stripe Records
# ══════════════════════════════════════════════════════════════


class CustomerRecord(StripeObject):
    """Stripe customer as carried in ``customer.*`` events."""

    id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)


class DeletedCustomerRecord(StripeObject):
    """Deleted customers may arrive without an email."""

    id: str = Field(..., min_length=1)
    email: str | None = None


class Price(StripeObject):
    id: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def null_metadata(cls, v: Any) -> Any:
        return {} if v is None else v


class SubscriptionItem(StripeObject):
    id: str | None = None
    price: Price


class SubscriptionItems(StripeObject):
    data: list[SubscriptionItem] = Field(default_factory=list)


class SubscriptionRecord(StripeObject):
    """Stripe subscription as carried in ``customer.subscription.*`` events."""

    id: str = Field(..., min_length=1)
    customer: str = Field(..., min_length=1)
    status: str | None = None
    items: SubscriptionItems = Field(default_factory=SubscriptionItems)

    @field_validator("customer", mode="before")
    @classmethod
    def unwrap_expanded_customer(cls, v: Any) -> Any:
        """Accept an expanded customer object as well as its id."""
        if isinstance(v, dict):
            return v.get("id")
        return v


# ══════════════════════════════════════════════════════════════
# Local Projection
# ══════════════════════════════════════════════════════════════


class CustomerProjection(TiersyncModel):
    """Local record mirroring a Stripe customer/subscription pair."""

    id: UUID
    user_id: UUID
    stripe_customer_id: str
    stripe_subscription_id: str | None = None
    tier: int = Field(default=0, ge=0)
    last_event_created: int | None = None


class ReconciliationResult(TiersyncModel):
    """Outcome reported back to the webhook caller."""

    status: ResultStatus
    action: ReconciliationAction
    event_id: str
    customer_id: str | None = None
    subscription_id: str | None = None
    tier: int | None = None
