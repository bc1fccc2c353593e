"""Monthly pay aggregate lookup and rollup."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from estate_payroll.calculators.types import ZERO, to_cents, validate_month_key
from estate_payroll.models import PayAggregate, PayDetail

logger = logging.getLogger(__name__)


class PayAggregateService:
    """Finds, creates and re-totals the aggregate for a month.

    Totals are only ever overwritten by a full recomputation over the
    month's details; callers mutate details first, then roll up.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_month(self, month: str, lock: bool = False) -> PayAggregate | None:
        query = select(PayAggregate).where(PayAggregate.month_year == validate_month_key(month))
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_or_create_for_month(self, month: str) -> PayAggregate:
        """Return the month's aggregate, creating it on first reference.

        A concurrent insert of the same month loses on the unique
        month_year constraint; the loser re-reads the winner's row.
        """
        aggregate = await self.get_for_month(month, lock=True)
        if aggregate is not None:
            return aggregate

        aggregate = PayAggregate(month_year=month, details=[])
        try:
            async with self.session.begin_nested():
                self.session.add(aggregate)
                await self.session.flush()
        except IntegrityError:
            logger.info("Pay aggregate for %s created concurrently, reloading", month)
            existing = await self.get_for_month(month, lock=True)
            if existing is None:
                raise
            return existing
        return aggregate

    async def list_months(self) -> list[str]:
        result = await self.session.execute(
            select(PayAggregate.month_year).order_by(PayAggregate.month_year)
        )
        return list(result.scalars().all())

    async def details_for(self, aggregate: PayAggregate) -> list[PayDetail]:
        result = await self.session.execute(
            select(PayDetail)
            .where(PayDetail.pay_aggregate_id == aggregate.id)
            .order_by(PayDetail.worker_id)
        )
        return list(result.scalars().all())

    async def recompute_totals(self, aggregate: PayAggregate) -> PayAggregate:
        """Overwrite the four totals with sums over the month's details."""
        await self.session.flush()
        details = await self.details_for(aggregate)

        def total(values: list[Decimal | None]) -> Decimal:
            return to_cents(sum((v or ZERO for v in values), ZERO))

        aggregate.total_gross = total([d.gross_salary for d in details])
        aggregate.total_employee_deductions = total([d.employee_deductions for d in details])
        aggregate.total_employer_deductions = total([d.employer_deductions for d in details])
        aggregate.total_net = total([d.net_salary for d in details])
        await self.session.flush()
        return aggregate

    async def delete_if_empty(self, aggregate: PayAggregate) -> bool:
        """Remove an aggregate whose month has no details left."""
        await self.session.flush()
        count = await self.session.scalar(
            select(func.count())
            .select_from(PayDetail)
            .where(PayDetail.pay_aggregate_id == aggregate.id)
        )
        if count:
            return False
        await self.session.delete(aggregate)
        await self.session.flush()
        logger.info("Removed empty pay aggregate for %s", aggregate.month_year)
        return True
