"""
Unit Tests for the SQL Customer Store and User Registry

Tests query results mapping and error wrapping with mocked sessions.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from tiersync.core.errors import ProjectionConflict, StorageError
from tiersync.core.models import CustomerProjection
from tiersync.db.models import CustomerModel
from tiersync.db.store import SQLCustomerStore, SQLUserRegistry, sql_stores


def _result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


@pytest.fixture
def session():
    session = AsyncMock()
    session.add = MagicMock()

    nested = AsyncMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=None)
    session.begin_nested = MagicMock(return_value=nested)
    return session


@pytest.fixture
def row():
    return CustomerModel(
        id=uuid4(),
        user_id=uuid4(),
        stripe_customer_id="cus_1",
        stripe_subscription_id="sub_1",
        tier=2,
        last_event_created=100,
    )


# ============================================================
# User Registry
# ============================================================


class TestSQLUserRegistry:
    """Test user lookups."""

    @pytest.mark.asyncio
    async def test_found(self, session):
        user_id = uuid4()
        session.execute = AsyncMock(return_value=_result(user_id))

        assert await SQLUserRegistry(session).find_user_id_by_email("a@b.com") == user_id

    @pytest.mark.asyncio
    async def test_not_found(self, session):
        session.execute = AsyncMock(return_value=_result(None))

        assert await SQLUserRegistry(session).find_user_id_by_email("a@b.com") is None

    @pytest.mark.asyncio
    async def test_database_error(self, session):
        session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))

        with pytest.raises(StorageError):
            await SQLUserRegistry(session).find_user_id_by_email("a@b.com")


# ============================================================
# Customer Store
# ============================================================


class TestSQLCustomerStoreLookups:
    """Test projection lookups."""

    @pytest.mark.asyncio
    async def test_find_by_customer_id(self, session, row):
        session.execute = AsyncMock(return_value=_result(row))

        projection = await SQLCustomerStore(session).find_by_customer_id("cus_1")

        assert isinstance(projection, CustomerProjection)
        assert projection.id == row.id
        assert projection.stripe_subscription_id == "sub_1"
        assert projection.tier == 2
        assert projection.last_event_created == 100

    @pytest.mark.asyncio
    async def test_find_by_subscription_id_queries_subscription_column(self, session, row):
        session.execute = AsyncMock(return_value=_result(row))

        await SQLCustomerStore(session).find_by_subscription_id("sub_1")

        statement = session.execute.call_args[0][0]
        assert "customers.stripe_subscription_id" in str(statement)

    @pytest.mark.asyncio
    async def test_find_missing(self, session):
        session.execute = AsyncMock(return_value=_result(None))

        assert await SQLCustomerStore(session).find_by_customer_id("cus_x") is None

    @pytest.mark.asyncio
    async def test_find_database_error(self, session):
        session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))

        with pytest.raises(StorageError):
            await SQLCustomerStore(session).find_by_customer_id("cus_1")


class TestSQLCustomerStoreWrites:
    """Test projection writes."""

    @pytest.mark.asyncio
    async def test_create(self, session):
        user_id = uuid4()

        projection = await SQLCustomerStore(session).create(user_id, "cus_1", last_event_created=7)

        session.add.assert_called_once()
        session.flush.assert_awaited_once()
        assert projection.user_id == user_id
        assert projection.stripe_customer_id == "cus_1"
        assert projection.stripe_subscription_id is None
        assert projection.tier == 0
        assert projection.last_event_created == 7

    @pytest.mark.asyncio
    async def test_create_integrity_error_is_conflict(self, session):
        session.flush = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))

        with pytest.raises(ProjectionConflict) as exc_info:
            await SQLCustomerStore(session).create(uuid4(), "cus_1")

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_create_other_error_is_storage_error(self, session):
        session.flush = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("down")))

        with pytest.raises(StorageError):
            await SQLCustomerStore(session).create(uuid4(), "cus_1")

    @pytest.mark.asyncio
    async def test_update(self, session):
        result = MagicMock()
        result.rowcount = 1
        session.execute = AsyncMock(return_value=result)
        projection = CustomerProjection(id=uuid4(), user_id=uuid4(), stripe_customer_id="cus_1", tier=1)

        assert await SQLCustomerStore(session).update(projection) is projection
        session.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_vanished_row(self, session):
        result = MagicMock()
        result.rowcount = 0
        session.execute = AsyncMock(return_value=result)
        projection = CustomerProjection(id=uuid4(), user_id=uuid4(), stripe_customer_id="cus_1")

        with pytest.raises(StorageError, match="vanished"):
            await SQLCustomerStore(session).update(projection)

    @pytest.mark.asyncio
    async def test_delete_database_error(self, session):
        session.execute = AsyncMock(side_effect=OperationalError("DELETE", {}, Exception("down")))
        projection = CustomerProjection(id=uuid4(), user_id=uuid4(), stripe_customer_id="cus_1")

        with pytest.raises(StorageError):
            await SQLCustomerStore(session).delete(projection)


class TestEventLedger:
    """Test processed event bookkeeping."""

    @pytest.mark.asyncio
    async def test_is_event_processed(self, session):
        session.execute = AsyncMock(return_value=_result("evt_1"))

        assert await SQLCustomerStore(session).is_event_processed("evt_1") is True

    @pytest.mark.asyncio
    async def test_is_event_not_processed(self, session):
        session.execute = AsyncMock(return_value=_result(None))

        assert await SQLCustomerStore(session).is_event_processed("evt_1") is False

    @pytest.mark.asyncio
    async def test_mark_event_processed_ignores_conflicts(self, session):
        await SQLCustomerStore(session).mark_event_processed("evt_1", "customer.created")

        statement = session.execute.call_args[0][0]
        assert "ON CONFLICT" in str(statement.compile(dialect=postgresql.dialect()))


# ============================================================
# Store Scope
# ============================================================


class TestSqlStores:
    """Test the shared-session scope."""

    @pytest.mark.asyncio
    async def test_shares_one_session(self):
        session = AsyncMock()
        cm = AsyncMock()
        cm.__aenter__ = AsyncMock(return_value=session)
        cm.__aexit__ = AsyncMock(return_value=None)

        with patch("tiersync.db.get_session", return_value=cm):
            async with sql_stores() as (customers, users):
                assert customers.session is session
                assert users.session is session
