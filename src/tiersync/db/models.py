"""
SQLAlchemy ORM Models

Database models for users, their Stripe customer projections and the
webhook delivery ledger.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tiersync.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════
# Mixins
# ══════════════════════════════════════════════════════════════


class TimestampMixin:
    """Mixin adding created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=_utcnow,
        nullable=True,
    )


class UUIDMixin:
    """Mixin adding UUID primary key."""

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )


# ══════════════════════════════════════════════════════════════
# User Registry
# ══════════════════════════════════════════════════════════════


class UserModel(Base, UUIDMixin, TimestampMixin):
    """User account. Owned by the wider application; read here by email."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Relationships
    customer: Mapped["CustomerModel | None"] = relationship(
        "CustomerModel",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )

    __table_args__ = (Index("ix_users_email", "email"),)


# ══════════════════════════════════════════════════════════════
# Customer Projection
# ══════════════════════════════════════════════════════════════


class CustomerModel(Base, UUIDMixin, TimestampMixin):
    """Local projection of a Stripe customer and its subscription."""

    __tablename__ = "customers"

    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # Stripe integration
    stripe_customer_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tier: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Unix seconds of the newest Stripe event applied to this row
    last_event_created: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Relationships
    user: Mapped["UserModel"] = relationship("UserModel", back_populates="customer")

    __table_args__ = (
        CheckConstraint("tier >= 0", name="ck_customers_tier_non_negative"),
        CheckConstraint(
            "stripe_subscription_id IS NOT NULL OR tier = 0",
            name="ck_customers_tier_requires_subscription",
        ),
        Index("ix_customers_stripe_subscription", "stripe_subscription_id"),
    )


# ══════════════════════════════════════════════════════════════
# Webhook Ledger
# ══════════════════════════════════════════════════════════════


class ProcessedWebhookEventModel(Base):
    """Stripe events already applied, for delivery dedupe."""

    __tablename__ = "processed_webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
