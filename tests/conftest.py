"""Pytest fixtures for estate payroll tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Iterable

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from estate_payroll.database import create_engine_for, make_session_factory
from estate_payroll.models import (
    Base,
    DeductionRegistryEntry,
    WorkOrder,
    WorkOrderItem,
    WorkOrderWorker,
    Worker,
)
from estate_payroll.registry import RateRegistry

# In-memory SQLite with SAVEPOINT support; each test gets a fresh database.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

RATES_FROM = date(2025, 1, 1)

SOCSO_RANGES = [
    {"min_wage": "0.00", "max_wage": "3400.00", "employee_amount": "16.75", "employer_amount": "58.65"},
    {"min_wage": "3400.01", "max_wage": "3500.00", "employee_amount": "17.25", "employer_amount": "60.35"},
    {"min_wage": "3500.01", "max_wage": None, "employee_amount": "29.75", "employer_amount": "104.15"},
]


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    engine = create_engine_for(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def registry(session: AsyncSession) -> RateRegistry:
    return RateRegistry(session, strict_ranges=False)


@pytest.fixture
async def workers(session: AsyncSession) -> dict[str, Worker]:
    """One worker per nationality class."""
    local = Worker(name="Ahmad bin Ali", nationality="local", is_active=True)
    foreigner = Worker(name="Budi Santoso", nationality="foreigner", is_active=True)
    no_passport = Worker(name="Rahim", nationality="foreigner_no_passport", is_active=True)
    session.add_all([local, foreigner, no_passport])
    await session.flush()
    return {"local": local, "foreigner": foreigner, "no_passport": no_passport}


@pytest.fixture
async def epf(registry: RateRegistry) -> DeductionRegistryEntry:
    """EPF at 11% employee / 13% employer for every nationality."""
    return await registry.create_entry(
        code="EPF",
        name="EPF",
        calculation_kind="percentage",
        employee_rate=Decimal("11"),
        employer_rate=Decimal("13"),
        effective_from=RATES_FROM,
    )


@pytest.fixture
async def socso(registry: RateRegistry) -> DeductionRegistryEntry:
    """SOCSO wage-range schedule."""
    return await registry.create_entry(
        code="SOCSO",
        name="SOCSO",
        calculation_kind="wage_range",
        effective_from=RATES_FROM,
        wage_ranges=SOCSO_RANGES,
    )


@pytest.fixture
async def sip(registry: RateRegistry) -> DeductionRegistryEntry:
    """SIP for local workers only."""
    return await registry.create_entry(
        code="SIP",
        name="SIP",
        calculation_kind="percentage",
        employee_rate=Decimal("0.2"),
        employer_rate=Decimal("0.2"),
        applies_to="local",
        effective_from=RATES_FROM,
    )


async def make_work_order(
    session: AsyncSession,
    assignments: Iterable[tuple[Worker, Decimal]],
    completion_date: date | None = date(2025, 11, 18),
    status: str = "pending",
    rate_type: str = "normal",
    items: Iterable[str] = (),
) -> WorkOrder:
    """Persist a work order with pre-computed worker amounts."""
    work_order = WorkOrder(
        status=status,
        rate_type=rate_type,
        rate=Decimal("100.00"),
        block_number="B-12",
        start_date=date(2025, 11, 1),
        work_month=date(2025, 11, 1),
        completion_date=completion_date,
        workers=[
            WorkOrderWorker(worker_id=worker.id, amount=Decimal(amount))
            for worker, amount in assignments
        ],
        items=[WorkOrderItem(name=name, quantity=Decimal("1")) for name in items],
    )
    session.add(work_order)
    await session.flush()
    return work_order


@pytest.fixture
def work_order_factory(session: AsyncSession):
    """Build persisted work orders bound to the test session."""

    async def factory(
        assignments: Iterable[tuple[Worker, Decimal]], **kwargs
    ) -> WorkOrder:
        return await make_work_order(session, assignments, **kwargs)

    return factory
