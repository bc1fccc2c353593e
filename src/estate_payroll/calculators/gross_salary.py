"""Gross contribution of a worker assignment on a work order."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Iterable

from estate_payroll.calculators.types import ZERO, to_cents

if TYPE_CHECKING:
    from estate_payroll.models import WorkOrder, WorkOrderWorker


class GrossSalaryCalculator:
    """Gross pay earned on work orders.

    Work-days orders pay rate x days worked; every other rate type pays
    rate x area worked.
    """

    WORK_DAYS = "work_days"

    @classmethod
    def contribution(
        cls,
        rate_type: str,
        rate: Decimal | None,
        work_days: int | None = None,
        work_area_size: Decimal | None = None,
    ) -> Decimal:
        if rate is None:
            return to_cents(ZERO)
        rate_type = getattr(rate_type, "value", rate_type)
        if rate_type == cls.WORK_DAYS:
            quantity = Decimal(work_days or 0)
        else:
            quantity = Decimal(work_area_size or 0)
        return to_cents(Decimal(rate) * quantity)

    @classmethod
    def for_assignment(cls, work_order: WorkOrder, assignment: WorkOrderWorker) -> Decimal:
        """Contribution for one assignment; its own rate wins over the order's."""
        rate = assignment.rate if assignment.rate is not None else work_order.rate
        return cls.contribution(
            work_order.rate_type, rate, assignment.work_days, assignment.work_area_size
        )

    @staticmethod
    def total_by_worker(assignments: Iterable[WorkOrderWorker]) -> dict[int, Decimal]:
        """Sum kept assignment amounts per worker."""
        totals: dict[int, Decimal] = {}
        for assignment in assignments:
            if assignment.discarded_at is not None:
                continue
            totals[assignment.worker_id] = (
                totals.get(assignment.worker_id, ZERO) + (assignment.amount or ZERO)
            )
        return {worker_id: to_cents(total) for worker_id, total in totals.items()}
