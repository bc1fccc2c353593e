"""Gross earnings from completed work orders."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from estate_payroll.calculators.types import ZERO, month_bounds, to_cents
from estate_payroll.models import WorkOrder, WorkOrderWorker
from estate_payroll.services.state_machine import WorkOrderStatus


async def completed_earnings(
    session: AsyncSession,
    month: str,
    worker_ids: Iterable[int] | None = None,
    exclude_work_order_id: int | None = None,
) -> dict[int, Decimal]:
    """Per-worker sum of kept assignments on kept, completed orders in a month.

    Discarded orders and discarded assignments never count.
    """
    start, end = month_bounds(month)
    query = (
        select(WorkOrderWorker.worker_id, WorkOrderWorker.amount)
        .join(WorkOrder, WorkOrder.id == WorkOrderWorker.work_order_id)
        .where(
            WorkOrder.status == WorkOrderStatus.COMPLETED.value,
            WorkOrder.discarded_at.is_(None),
            WorkOrder.completion_date >= start,
            WorkOrder.completion_date <= end,
            WorkOrderWorker.discarded_at.is_(None),
        )
    )
    if worker_ids is not None:
        query = query.where(WorkOrderWorker.worker_id.in_(list(worker_ids)))
    if exclude_work_order_id is not None:
        query = query.where(WorkOrder.id != exclude_work_order_id)

    totals: dict[int, Decimal] = {}
    for worker_id, amount in (await session.execute(query)).all():
        totals[worker_id] = totals.get(worker_id, ZERO) + (amount or ZERO)
    return {worker_id: to_cents(total) for worker_id, total in totals.items()}
