"""Month-wide and global payroll recalculation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from estate_payroll.calculators.types import ZERO, validate_month_key
from estate_payroll.services.earnings import completed_earnings
from estate_payroll.services.pay_aggregate_service import PayAggregateService
from estate_payroll.services.pay_detail_builder import PayDetailBuilder

logger = logging.getLogger(__name__)


@dataclass
class RecalculationSummary:
    """Counts from a recalculation run."""

    months: list[str] = field(default_factory=list)
    details_updated: int = 0
    details_removed: int = 0

    def merge(self, other: RecalculationSummary) -> None:
        self.months.extend(other.months)
        self.details_updated += other.details_updated
        self.details_removed += other.details_removed


class RecalculationService:
    """Re-derives pay details for whole months.

    Details are processed one at a time and every update is idempotent,
    so an interrupted run can simply be started again.
    """

    def __init__(
        self,
        session: AsyncSession,
        builder: PayDetailBuilder | None = None,
        aggregates: PayAggregateService | None = None,
    ):
        self.session = session
        self.builder = builder or PayDetailBuilder(session)
        self.aggregates = aggregates or PayAggregateService(session)

    async def recalculate_month(
        self, month: str, refresh_gross: bool = True
    ) -> RecalculationSummary:
        """Recalculate every detail of a month, then roll up.

        With refresh_gross, each worker's gross is first re-summed from kept,
        completed work orders; workers left with nothing are removed and
        workers missing a detail get one.
        """
        validate_month_key(month)
        summary = RecalculationSummary(months=[month])

        if refresh_gross:
            earnings = await completed_earnings(self.session, month)
            if earnings:
                aggregate = await self.aggregates.find_or_create_for_month(month)
            else:
                aggregate = await self.aggregates.get_for_month(month, lock=True)
        else:
            earnings = {}
            aggregate = await self.aggregates.get_for_month(month, lock=True)
        if aggregate is None:
            return summary

        async with self.session.begin_nested():
            seen: set[int] = set()
            for detail in await self.aggregates.details_for(aggregate):
                seen.add(detail.worker_id)
                if refresh_gross:
                    gross = earnings.get(detail.worker_id, ZERO)
                    if gross <= ZERO:
                        await self.session.delete(detail)
                        summary.details_removed += 1
                        continue
                    detail.gross_salary = gross
                await self.builder.recalculate(detail, month=month)
                summary.details_updated += 1

            for worker_id in sorted(set(earnings) - seen):
                if earnings[worker_id] > ZERO:
                    await self.builder.build(aggregate, worker_id, earnings[worker_id])
                    summary.details_updated += 1

            if not await self.aggregates.delete_if_empty(aggregate):
                await self.aggregates.recompute_totals(aggregate)

        logger.info(
            "Recalculated %s: %d details updated, %d removed",
            month,
            summary.details_updated,
            summary.details_removed,
        )
        return summary

    async def recalculate_all(self, refresh_gross: bool = True) -> RecalculationSummary:
        """Recalculate every month that has an aggregate, oldest first."""
        summary = RecalculationSummary()
        for month in await self.aggregates.list_months():
            summary.merge(await self.recalculate_month(month, refresh_gross=refresh_gross))
        return summary
