"""Tests for month-wide and global recalculation."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from estate_payroll.models import PayDetail
from estate_payroll.models.base import utcnow
from estate_payroll.services.pay_aggregate_service import PayAggregateService
from estate_payroll.services.pay_detail_builder import PayDetailBuilder
from estate_payroll.services.recalculation_service import (
    RecalculationService,
    RecalculationSummary,
)


@pytest.fixture
def recalculation(session, registry) -> RecalculationService:
    builder = PayDetailBuilder(session, registry=registry, currency="RM")
    return RecalculationService(session, builder=builder)


async def details_by_worker(session) -> dict[int, PayDetail]:
    result = await session.execute(select(PayDetail))
    return {d.worker_id: d for d in result.scalars().all()}


class TestRecalculateMonth:
    """Recalculating a month from completed work orders."""

    @pytest.mark.asyncio
    async def test_builds_details_for_completed_orders(
        self, session, recalculation, workers, epf, work_order_factory
    ):
        await work_order_factory([(workers["local"], "3000")], status="completed")

        summary = await recalculation.recalculate_month("2025-11")

        assert summary.months == ["2025-11"]
        assert summary.details_updated == 1
        detail = (await details_by_worker(session))[workers["local"].id]
        assert detail.employee_deductions == Decimal("330.00")

        aggregate = await PayAggregateService(session).get_for_month("2025-11")
        assert aggregate.total_employee_deductions == Decimal("330.00")

    @pytest.mark.asyncio
    async def test_discarded_order_is_excluded(
        self, session, recalculation, workers, epf, work_order_factory
    ):
        kept = await work_order_factory(
            [(workers["local"], "1000"), (workers["foreigner"], "800")], status="completed"
        )
        dropped = await work_order_factory([(workers["local"], "2000")], status="completed")
        await recalculation.recalculate_month("2025-11")

        dropped.discarded_at = utcnow()
        kept.workers[1].discarded_at = utcnow()
        await session.flush()
        summary = await recalculation.recalculate_month("2025-11")

        assert summary.details_updated == 1
        assert summary.details_removed == 1
        details = await details_by_worker(session)
        assert set(details) == {workers["local"].id}
        assert details[workers["local"].id].gross_salary == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_month_without_earnings_removes_aggregate(
        self, session, recalculation, workers, epf, work_order_factory
    ):
        order = await work_order_factory([(workers["local"], "1000")], status="completed")
        await recalculation.recalculate_month("2025-11")

        order.discarded_at = utcnow()
        await session.flush()
        summary = await recalculation.recalculate_month("2025-11")

        assert summary.details_removed == 1
        assert await PayAggregateService(session).get_for_month("2025-11") is None

    @pytest.mark.asyncio
    async def test_untouched_month_stays_empty(self, session, recalculation):
        summary = await recalculation.recalculate_month("2025-11")

        assert summary == RecalculationSummary(months=["2025-11"])
        assert await PayAggregateService(session).list_months() == []

    @pytest.mark.asyncio
    async def test_picks_up_corrected_rates_for_the_month(
        self, session, recalculation, registry, workers, epf, work_order_factory
    ):
        await work_order_factory([(workers["local"], "3000")], status="completed")
        await recalculation.recalculate_month("2025-11")

        await registry.supersede("EPF", date(2025, 11, 1), employee_rate=Decimal("9"))
        await recalculation.recalculate_month("2025-11")

        detail = (await details_by_worker(session))[workers["local"].id]
        assert detail.employee_deductions == Decimal("270.00")

    @pytest.mark.asyncio
    async def test_keep_gross_only_refreshes_deductions(
        self, session, recalculation, registry, workers, epf, work_order_factory
    ):
        order = await work_order_factory([(workers["local"], "3000")], status="completed")
        await recalculation.recalculate_month("2025-11")

        order.discarded_at = utcnow()
        await session.flush()
        await registry.supersede("EPF", date(2025, 11, 1), employee_rate=Decimal("9"))
        summary = await recalculation.recalculate_month("2025-11", refresh_gross=False)

        assert summary.details_removed == 0
        detail = (await details_by_worker(session))[workers["local"].id]
        assert detail.gross_salary == Decimal("3000.00")
        assert detail.employee_deductions == Decimal("270.00")

    @pytest.mark.asyncio
    async def test_rejects_bad_month_key(self, recalculation):
        with pytest.raises(ValueError):
            await recalculation.recalculate_month("November")


class TestRecalculateAll:
    @pytest.mark.asyncio
    async def test_walks_every_month_oldest_first(
        self, session, recalculation, workers, epf, work_order_factory
    ):
        await work_order_factory(
            [(workers["local"], "1000")], status="completed", completion_date=date(2025, 12, 5)
        )
        await work_order_factory([(workers["local"], "2000")], status="completed")
        await recalculation.recalculate_month("2025-12")
        await recalculation.recalculate_month("2025-11")

        summary = await recalculation.recalculate_all()

        assert summary.months == ["2025-11", "2025-12"]
        assert summary.details_updated == 2
        assert summary.details_removed == 0

    @pytest.mark.asyncio
    async def test_is_idempotent(
        self, session, recalculation, workers, epf, sip, work_order_factory
    ):
        await work_order_factory([(workers["local"], "3456.78")], status="completed")
        await recalculation.recalculate_month("2025-11")
        before = dict((await details_by_worker(session))[workers["local"].id].deduction_breakdown)

        await recalculation.recalculate_all()

        after = (await details_by_worker(session))[workers["local"].id].deduction_breakdown
        assert after == before
