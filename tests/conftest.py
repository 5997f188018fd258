"""Pytest fixtures for payroll billing tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_billing.models import (
    Base,
    Client,
    Payroll,
    PayrollCycle,
    PayrollDate,
    PayrollDateType,
)

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Clients onboarded before the tenure cutoff get only the base services
LEGACY_CREATED_AT = datetime(2023, 6, 1, tzinfo=timezone.utc)

USER_ID = uuid4()


@pytest.fixture
def user_id():
    """ID of the acting user."""
    return USER_ID


def _enable_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy, not the sqlite3 driver, control BEGIN so SAVEPOINT works."""

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    _enable_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def cycles(session: AsyncSession) -> dict[str, PayrollCycle]:
    """Seed every payroll cycle."""
    rows = {
        name: PayrollCycle(name=name)
        for name in ("weekly", "fortnightly", "bi_monthly", "monthly", "quarterly")
    }
    session.add_all(rows.values())
    await session.flush()
    return rows


@pytest_asyncio.fixture
async def date_types(session: AsyncSession) -> dict[str, PayrollDateType]:
    """Seed every payroll date type."""
    rows = {name: PayrollDateType(name=name) for name in ("eom", "som", "fixed_date", "dow")}
    session.add_all(rows.values())
    await session.flush()
    return rows


@pytest.fixture
def make_client(session: AsyncSession) -> Callable[..., Any]:
    """Factory for clients; defaults to a legacy full-month client."""

    async def _make(name: str, **fields: Any) -> Client:
        fields.setdefault("created_at", LEGACY_CREATED_AT)
        fields.setdefault("started_on", date(2023, 6, 1))
        client = Client(name=name, **fields)
        session.add(client)
        await session.flush()
        return client

    return _make


@pytest_asyncio.fixture
async def test_client(make_client) -> Client:
    """A single long-standing client."""
    return await make_client("Acme Pty Ltd")


@pytest_asyncio.fixture
async def monthly_payroll(
    session: AsyncSession,
    test_client: Client,
    cycles: dict[str, PayrollCycle],
    date_types: dict[str, PayrollDateType],
) -> Payroll:
    """Version 1 of a monthly end-of-month payroll."""
    payroll = Payroll.new_chain(
        name="Acme Monthly",
        client_id=test_client.id,
        cycle_id=cycles["monthly"].id,
        date_type_id=date_types["eom"].id,
        go_live_date=date(2025, 1, 1),
        employee_count=12,
        status="Active",
        created_by_user_id=USER_ID,
    )
    session.add(payroll)
    await session.flush()
    return payroll


@pytest_asyncio.fixture
async def payroll_date(session: AsyncSession, monthly_payroll: Payroll) -> PayrollDate:
    """A scheduled payroll date in March 2025."""
    payroll_date = PayrollDate(
        payroll_id=monthly_payroll.id,
        original_eft_date=date(2025, 3, 31),
        adjusted_eft_date=date(2025, 3, 31),
        processing_date=date(2025, 3, 25),
        status="scheduled",
    )
    session.add(payroll_date)
    await session.flush()
    return payroll_date


@pytest.fixture
def count_rows(session: AsyncSession) -> Callable[..., Any]:
    """Count rows of a model matching optional criteria."""

    async def _count(model: Any, *criteria: Any) -> int:
        query = select(func.count()).select_from(model)
        if criteria:
            query = query.where(*criteria)
        result = await session.execute(query)
        return result.scalar_one()

    return _count
