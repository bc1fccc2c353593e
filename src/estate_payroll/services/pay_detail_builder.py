"""Per-worker monthly deduction snapshot builder."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from estate_payroll.calculators import DeductionCalculator
from estate_payroll.calculators.types import first_day_of_month, to_cents
from estate_payroll.config import get_settings
from estate_payroll.errors import NotFoundError
from estate_payroll.models import PayAggregate, PayDetail, Worker
from estate_payroll.registry import RateRegistry

logger = logging.getLogger(__name__)


class PayDetailBuilder:
    """Builds and refreshes one worker's PayDetail for a month.

    Rates are always read as of the first day of the detail's own month,
    never today, so recalculating a past month reproduces its amounts.
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: RateRegistry | None = None,
        currency: str | None = None,
    ):
        self.session = session
        self.registry = registry or RateRegistry(session)
        self.currency = currency or get_settings().currency
        self.calculator = DeductionCalculator(self.currency)

    async def find_detail(
        self, aggregate_id: int, worker_id: int, lock: bool = False
    ) -> PayDetail | None:
        query = select(PayDetail).where(
            PayDetail.pay_aggregate_id == aggregate_id,
            PayDetail.worker_id == worker_id,
        )
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def build(
        self, aggregate: PayAggregate, worker_id: int, gross_salary: Decimal
    ) -> PayDetail:
        """Find or create the (month, worker) detail, set gross, recalculate."""
        detail = await self.find_detail(aggregate.id, worker_id, lock=True)
        if detail is None:
            detail = PayDetail(
                pay_aggregate_id=aggregate.id,
                worker_id=worker_id,
                gross_salary=to_cents(gross_salary),
                currency=self.currency,
                deduction_breakdown={},
            )
            try:
                async with self.session.begin_nested():
                    self.session.add(detail)
                    await self.session.flush()
            except IntegrityError:
                detail = await self.find_detail(aggregate.id, worker_id, lock=True)
                if detail is None:
                    raise

        detail.gross_salary = to_cents(gross_salary)
        return await self.recalculate(detail, month=aggregate.month_year)

    async def recalculate(self, detail: PayDetail, month: str | None = None) -> PayDetail:
        """Rewrite breakdown and totals from the registry as of the detail's month.

        Idempotent: the same gross and registry state give identical values.
        """
        if month is None:
            month = await self.session.scalar(
                select(PayAggregate.month_year).where(PayAggregate.id == detail.pay_aggregate_id)
            )
            if month is None:
                raise NotFoundError(f"Pay aggregate {detail.pay_aggregate_id} not found")

        nationality = await self._nationality_of(detail.worker_id)
        entries = await self.registry.applicable_on(first_day_of_month(month), nationality)
        result = self.calculator.calculate(entries, detail.gross_salary)

        detail.gross_salary = result.gross_salary
        detail.deduction_breakdown = result.breakdown.to_json()
        detail.employee_deductions = result.employee_total
        detail.employer_deductions = result.employer_total
        detail.net_salary = result.net_salary
        await self.session.flush()

        logger.debug(
            "Recalculated pay detail worker=%s month=%s gross=%s net=%s",
            detail.worker_id,
            month,
            detail.gross_salary,
            detail.net_salary,
        )
        return detail

    async def _nationality_of(self, worker_id: int) -> str | None:
        result = await self.session.execute(
            select(Worker.id, Worker.nationality).where(Worker.id == worker_id)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError(f"Worker {worker_id} not found")
        return row.nationality
