"""
Customer Store & User Registry

Protocols consumed by the projector, plus their SQLAlchemy implementations.
Each operation touches a single row and runs inside the caller's session.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Protocol
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tiersync.core.errors import ProjectionConflict, StorageError
from tiersync.core.models import CustomerProjection
from tiersync.db.models import CustomerModel, ProcessedWebhookEventModel, UserModel


# ══════════════════════════════════════════════════════════════
# Protocols
# ══════════════════════════════════════════════════════════════


class UserRegistry(Protocol):
    async def find_user_id_by_email(self, email: str) -> UUID | None: ...


class CustomerStore(Protocol):
    async def find_by_customer_id(self, stripe_customer_id: str) -> CustomerProjection | None: ...

    async def find_by_subscription_id(
        self, stripe_subscription_id: str
    ) -> CustomerProjection | None: ...

    async def create(
        self,
        user_id: UUID,
        stripe_customer_id: str,
        last_event_created: int | None = None,
    ) -> CustomerProjection: ...

    async def update(self, projection: CustomerProjection) -> CustomerProjection: ...

    async def delete(self, projection: CustomerProjection) -> None: ...

    async def is_event_processed(self, event_id: str) -> bool: ...

    async def mark_event_processed(self, event_id: str, event_type: str) -> None: ...


# ══════════════════════════════════════════════════════════════
# SQLAlchemy Implementations
# ══════════════════════════════════════════════════════════════


class SQLUserRegistry:
    """User lookups against the ``users`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_user_id_by_email(self, email: str) -> UUID | None:
        try:
            result = await self.session.execute(
                select(UserModel.id).where(UserModel.email == email).limit(1)
            )
        except SQLAlchemyError as e:
            raise StorageError(f"user lookup failed: {e}") from e
        return result.scalar_one_or_none()


class SQLCustomerStore:
    """Customer projections in the ``customers`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _find_first(self, *criteria) -> CustomerProjection | None:
        try:
            result = await self.session.execute(
                select(CustomerModel).where(*criteria).limit(1)
            )
        except SQLAlchemyError as e:
            raise StorageError(f"customer lookup failed: {e}") from e

        row = result.scalar_one_or_none()
        if row is None:
            return None
        return CustomerProjection.model_validate(row)

    async def find_by_customer_id(self, stripe_customer_id: str) -> CustomerProjection | None:
        return await self._find_first(CustomerModel.stripe_customer_id == stripe_customer_id)

    async def find_by_subscription_id(
        self, stripe_subscription_id: str
    ) -> CustomerProjection | None:
        return await self._find_first(
            CustomerModel.stripe_subscription_id == stripe_subscription_id
        )

    async def create(
        self,
        user_id: UUID,
        stripe_customer_id: str,
        last_event_created: int | None = None,
    ) -> CustomerProjection:
        row = CustomerModel(
            id=uuid4(),
            user_id=user_id,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=None,
            tier=0,
            last_event_created=last_event_created,
        )
        try:
            # Savepoint so a constraint violation leaves the outer transaction usable
            async with self.session.begin_nested():
                self.session.add(row)
                await self.session.flush()
        except IntegrityError as e:
            raise ProjectionConflict(
                "projection already exists for this user or customer",
                user_id=str(user_id),
                stripe_customer_id=stripe_customer_id,
            ) from e
        except SQLAlchemyError as e:
            raise StorageError(f"customer create failed: {e}") from e

        return CustomerProjection.model_validate(row)

    async def update(self, projection: CustomerProjection) -> CustomerProjection:
        try:
            result = await self.session.execute(
                update(CustomerModel)
                .where(CustomerModel.id == projection.id)
                .values(
                    stripe_subscription_id=projection.stripe_subscription_id,
                    tier=projection.tier,
                    last_event_created=projection.last_event_created,
                    updated_at=datetime.now(timezone.utc),
                )
            )
        except SQLAlchemyError as e:
            raise StorageError(f"customer update failed: {e}") from e

        if result.rowcount == 0:
            raise StorageError("customer vanished during update", projection_id=str(projection.id))
        return projection

    async def delete(self, projection: CustomerProjection) -> None:
        try:
            await self.session.execute(
                delete(CustomerModel).where(CustomerModel.id == projection.id)
            )
        except SQLAlchemyError as e:
            raise StorageError(f"customer delete failed: {e}") from e

    async def is_event_processed(self, event_id: str) -> bool:
        try:
            result = await self.session.execute(
                select(ProcessedWebhookEventModel.event_id).where(
                    ProcessedWebhookEventModel.event_id == event_id
                )
            )
        except SQLAlchemyError as e:
            raise StorageError(f"event ledger lookup failed: {e}") from e
        return result.scalar_one_or_none() is not None

    async def mark_event_processed(self, event_id: str, event_type: str) -> None:
        stmt = (
            pg_insert(ProcessedWebhookEventModel)
            .values(
                event_id=event_id,
                event_type=event_type,
                processed_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=["event_id"])
        )
        try:
            await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(f"event ledger write failed: {e}") from e


@asynccontextmanager
async def sql_stores() -> AsyncGenerator[tuple[CustomerStore, UserRegistry], None]:
    """One database session shared by both stores, committed on exit."""
    from tiersync.db import get_session

    async with get_session() as session:
        yield SQLCustomerStore(session), SQLUserRegistry(session)
