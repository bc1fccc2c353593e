"""Work order processing: turns approved work into monthly pay details."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from estate_payroll.calculators.types import ZERO, month_key, to_cents
from estate_payroll.calculators.gross_salary import GrossSalaryCalculator
from estate_payroll.database import acquire_xact_lock
from estate_payroll.models import WorkOrder
from estate_payroll.result import Err, Ok, Result
from estate_payroll.services.earnings import completed_earnings
from estate_payroll.services.pay_aggregate_service import PayAggregateService
from estate_payroll.services.pay_detail_builder import PayDetailBuilder

logger = logging.getLogger(__name__)


def detail_lock_key(worker_id: int, month: str) -> str:
    return f"pay_detail:{worker_id}:{month}"


class WorkOrderProcessingOrchestrator:
    """Coordinates aggregate, detail builds and rollup for one work order.

    Each call runs inside a SAVEPOINT: either every detail and the rollup
    are written, or nothing is. Failures come back as Err, not exceptions.
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

    async def process(self, work_order: WorkOrder) -> Result[str, str]:
        """Build pay details for every worker on an approved work order.

        Each worker's gross is the sum of their kept assignments on every
        completed order in the month, this one included.
        """
        if work_order.is_resource_only:
            return Ok(f"Work order {work_order.id} uses resources only; no pay to process")

        this_order = GrossSalaryCalculator.total_by_worker(work_order.kept_workers)
        if not this_order:
            return Ok(f"Work order {work_order.id} has no assigned workers; no pay to process")

        month = month_key(work_order.completion_date)
        worker_ids = sorted(this_order)
        try:
            async with self.session.begin_nested():
                aggregate = await self.aggregates.find_or_create_for_month(month)
                for worker_id in worker_ids:
                    await acquire_xact_lock(self.session, detail_lock_key(worker_id, month))
                earlier = await completed_earnings(
                    self.session,
                    month,
                    worker_ids=worker_ids,
                    exclude_work_order_id=work_order.id,
                )
                for worker_id in worker_ids:
                    gross = to_cents(earlier.get(worker_id, ZERO) + this_order[worker_id])
                    await self.builder.build(aggregate, worker_id, gross)
                await self.aggregates.recompute_totals(aggregate)
        except Exception as exc:
            logger.exception("Processing work order %s failed", work_order.id)
            return Err(f"Failed to process work order {work_order.id}: {exc}")

        logger.info(
            "Processed work order %s: %d workers for %s", work_order.id, len(worker_ids), month
        )
        return Ok(f"Processed {len(worker_ids)} worker(s) for {month}")

    async def reverse(self, work_order: WorkOrder) -> Result[str, str]:
        """Remove a work order's contribution from its month.

        Affected workers are recomputed from the remaining kept, completed
        orders. Details left with no earnings are deleted, and so is the
        aggregate once its last detail is gone.
        """
        if work_order.is_resource_only:
            return Ok(f"Work order {work_order.id} uses resources only; nothing to reverse")
        if work_order.completion_date is None:
            return Ok(f"Work order {work_order.id} has no completion date; nothing to reverse")

        worker_ids = sorted({w.worker_id for w in work_order.workers})
        if not worker_ids:
            return Ok(f"Work order {work_order.id} has no assigned workers; nothing to reverse")

        month = month_key(work_order.completion_date)
        aggregate = await self.aggregates.get_for_month(month, lock=True)
        if aggregate is None:
            return Ok(f"No pay aggregate for {month}; nothing to reverse")

        removed = updated = 0
        try:
            async with self.session.begin_nested():
                for worker_id in worker_ids:
                    await acquire_xact_lock(self.session, detail_lock_key(worker_id, month))
                remaining = await completed_earnings(
                    self.session,
                    month,
                    worker_ids=worker_ids,
                    exclude_work_order_id=work_order.id,
                )
                for worker_id in worker_ids:
                    detail = await self.builder.find_detail(aggregate.id, worker_id, lock=True)
                    if detail is None:
                        continue
                    gross: Decimal = remaining.get(worker_id, ZERO)
                    if gross <= ZERO:
                        await self.session.delete(detail)
                        removed += 1
                        logger.info("Removed pay detail worker=%s month=%s", worker_id, month)
                        continue
                    await self.builder.build(aggregate, worker_id, gross)
                    updated += 1

                if not await self.aggregates.delete_if_empty(aggregate):
                    await self.aggregates.recompute_totals(aggregate)
        except Exception as exc:
            logger.exception("Reversing work order %s failed", work_order.id)
            return Err(f"Failed to reverse work order {work_order.id}: {exc}")

        return Ok(f"Reversed work order {work_order.id}: {updated} updated, {removed} removed")
