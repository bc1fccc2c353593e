"""Tests for work order processing and reversal."""

from datetime import date
from decimal import Decimal, InvalidOperation

import pytest
from sqlalchemy import func, select

from estate_payroll.models import PayAggregate, PayDetail
from estate_payroll.models.base import utcnow
from estate_payroll.result import Err, Ok
from estate_payroll.services.earnings import completed_earnings
from estate_payroll.services.pay_aggregate_service import PayAggregateService
from estate_payroll.services.pay_detail_builder import PayDetailBuilder
from estate_payroll.services.processing import WorkOrderProcessingOrchestrator, detail_lock_key


@pytest.fixture
def orchestrator(session, registry) -> WorkOrderProcessingOrchestrator:
    builder = PayDetailBuilder(session, registry=registry, currency="RM")
    return WorkOrderProcessingOrchestrator(session, builder=builder)


async def complete(session, orchestrator, work_order):
    """Process and mark completed, as approval does."""
    result = await orchestrator.process(work_order)
    work_order.status = "completed"
    await session.flush()
    return result


async def details_by_worker(session) -> dict[int, PayDetail]:
    result = await session.execute(select(PayDetail))
    return {d.worker_id: d for d in result.scalars().all()}


class TestEarnings:
    """Gross is summed from kept assignments on completed orders."""

    @pytest.mark.asyncio
    async def test_sums_completed_orders_in_month(self, session, workers, work_order_factory):
        local = workers["local"]
        await work_order_factory([(local, "1000")], status="completed")
        await work_order_factory(
            [(local, "500"), (workers["foreigner"], "700")],
            status="completed",
            completion_date=date(2025, 11, 30),
        )
        # Other month, still pending, discarded: none count.
        await work_order_factory(
            [(local, "900")], status="completed", completion_date=date(2025, 12, 1)
        )
        await work_order_factory([(local, "800")], status="pending")
        discarded = await work_order_factory([(local, "600")], status="completed")
        discarded.discarded_at = utcnow()
        await session.flush()

        earnings = await completed_earnings(session, "2025-11")

        assert earnings == {
            local.id: Decimal("1500.00"),
            workers["foreigner"].id: Decimal("700.00"),
        }

    @pytest.mark.asyncio
    async def test_discarded_assignment_does_not_count(self, session, workers, work_order_factory):
        order = await work_order_factory(
            [(workers["local"], "1000"), (workers["foreigner"], "400")], status="completed"
        )
        order.workers[1].discarded_at = utcnow()
        await session.flush()

        earnings = await completed_earnings(session, "2025-11")

        assert earnings == {workers["local"].id: Decimal("1000.00")}


class TestProcess:
    @pytest.mark.asyncio
    async def test_monthly_gross_accumulates_across_orders(
        self, session, orchestrator, workers, epf, work_order_factory
    ):
        local = workers["local"]
        first = await work_order_factory([(local, "1000")])
        second = await work_order_factory([(local, "2000")], completion_date=date(2025, 11, 28))

        await complete(session, orchestrator, first)
        result = await complete(session, orchestrator, second)

        assert isinstance(result, Ok)
        detail = (await details_by_worker(session))[local.id]
        assert detail.gross_salary == Decimal("3000.00")
        assert detail.employee_deductions == Decimal("330.00")

        aggregate = await PayAggregateService(session).get_for_month("2025-11")
        assert aggregate.total_gross == Decimal("3000.00")
        assert aggregate.total_net == Decimal("2670.00")

    @pytest.mark.asyncio
    async def test_same_worker_twice_on_one_order(
        self, session, orchestrator, workers, epf, work_order_factory
    ):
        local = workers["local"]
        order = await work_order_factory([(local, "1200"), (local, "800")])

        result = await orchestrator.process(order)

        assert result == Ok("Processed 1 worker(s) for 2025-11")
        assert (await details_by_worker(session))[local.id].gross_salary == Decimal("2000.00")

    @pytest.mark.asyncio
    async def test_orders_route_to_completion_month(
        self, session, orchestrator, workers, epf, work_order_factory
    ):
        november = await work_order_factory([(workers["local"], "1000")])
        december = await work_order_factory(
            [(workers["local"], "1000")], completion_date=date(2025, 12, 2)
        )

        await complete(session, orchestrator, november)
        await complete(session, orchestrator, december)

        assert await PayAggregateService(session).list_months() == ["2025-11", "2025-12"]
        count = await session.scalar(select(func.count()).select_from(PayDetail))
        assert count == 2

    @pytest.mark.asyncio
    async def test_no_workers_is_noop(self, session, orchestrator, work_order_factory):
        order = await work_order_factory([], items=["Fertiliser"])

        result = await orchestrator.process(order)

        assert isinstance(result, Ok)
        assert "no assigned workers" in result.value
        assert await session.scalar(select(func.count()).select_from(PayAggregate)) == 0

    @pytest.mark.asyncio
    async def test_failure_rolls_back_everything(
        self, session, registry, workers, epf, work_order_factory
    ):
        class FailingAggregates(PayAggregateService):
            async def recompute_totals(self, aggregate):
                raise ValueError("rollup unavailable")

        builder = PayDetailBuilder(session, registry=registry, currency="RM")
        orchestrator = WorkOrderProcessingOrchestrator(
            session, builder=builder, aggregates=FailingAggregates(session)
        )
        order = await work_order_factory([(workers["local"], "3000")])

        result = await orchestrator.process(order)

        assert isinstance(result, Err)
        assert "rollup unavailable" in result.error
        assert await session.scalar(select(func.count()).select_from(PayDetail)) == 0
        assert await session.scalar(select(func.count()).select_from(PayAggregate)) == 0

    @pytest.mark.asyncio
    async def test_arithmetic_failure_returns_err(
        self, session, registry, workers, epf, work_order_factory
    ):
        class BrokenAggregates(PayAggregateService):
            async def recompute_totals(self, aggregate):
                raise InvalidOperation("cannot total")

        builder = PayDetailBuilder(session, registry=registry, currency="RM")
        orchestrator = WorkOrderProcessingOrchestrator(
            session, builder=builder, aggregates=BrokenAggregates(session)
        )
        order = await work_order_factory([(workers["local"], "3000")])

        result = await orchestrator.process(order)

        assert isinstance(result, Err)
        assert await session.scalar(select(func.count()).select_from(PayDetail)) == 0

    def test_detail_lock_key(self):
        assert detail_lock_key(7, "2025-11") == "pay_detail:7:2025-11"


class TestReverse:
    @pytest.mark.asyncio
    async def test_reverse_removes_worker_without_other_earnings(
        self, session, orchestrator, workers, epf, work_order_factory
    ):
        local, foreigner = workers["local"], workers["foreigner"]
        shared = await work_order_factory([(local, "1000"), (foreigner, "500")])
        other = await work_order_factory([(local, "2000")])
        await complete(session, orchestrator, shared)
        await complete(session, orchestrator, other)

        result = await orchestrator.reverse(shared)

        assert result == Ok(f"Reversed work order {shared.id}: 1 updated, 1 removed")
        details = await details_by_worker(session)
        assert set(details) == {local.id}
        assert details[local.id].gross_salary == Decimal("2000.00")

        aggregate = await PayAggregateService(session).get_for_month("2025-11")
        assert aggregate.total_gross == Decimal("2000.00")

    @pytest.mark.asyncio
    async def test_reverse_last_order_removes_aggregate(
        self, session, orchestrator, workers, epf, work_order_factory
    ):
        order = await work_order_factory([(workers["local"], "1000")])
        await complete(session, orchestrator, order)

        result = await orchestrator.reverse(order)

        assert isinstance(result, Ok)
        assert await PayAggregateService(session).get_for_month("2025-11") is None

    @pytest.mark.asyncio
    async def test_reverse_without_aggregate_is_noop(
        self, session, orchestrator, workers, work_order_factory
    ):
        order = await work_order_factory([(workers["local"], "1000")], status="completed")

        result = await orchestrator.reverse(order)

        assert result == Ok("No pay aggregate for 2025-11; nothing to reverse")

    @pytest.mark.asyncio
    async def test_unexpected_failure_keeps_details(
        self, session, registry, workers, epf, work_order_factory
    ):
        builder = PayDetailBuilder(session, registry=registry, currency="RM")
        order = await work_order_factory([(workers["local"], "1000")])
        await complete(session, WorkOrderProcessingOrchestrator(session, builder=builder), order)

        class BrokenAggregates(PayAggregateService):
            async def delete_if_empty(self, aggregate):
                raise TypeError("unexpected aggregate")

        orchestrator = WorkOrderProcessingOrchestrator(
            session, builder=builder, aggregates=BrokenAggregates(session)
        )

        result = await orchestrator.reverse(order)

        assert isinstance(result, Err)
        assert "unexpected aggregate" in result.error
        assert await session.scalar(select(func.count()).select_from(PayDetail)) == 1
