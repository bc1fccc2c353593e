"""Work order lifecycle service."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from estate_payroll.calculators.gross_salary import GrossSalaryCalculator
from estate_payroll.calculators.types import enum_value
from estate_payroll.errors import NotFoundError, ValidationError
from estate_payroll.models import (
    WorkOrder,
    WorkOrderHistory,
    WorkOrderItem,
    WorkOrderWorker,
    Worker,
)
from estate_payroll.models.base import utcnow
from estate_payroll.result import Err, Ok, Result
from estate_payroll.services.processing import WorkOrderProcessingOrchestrator
from estate_payroll.services.state_machine import (
    WorkOrderEvent,
    WorkOrderStateMachine,
    WorkOrderStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_REMARKS: dict[str, str] = {
    WorkOrderEvent.SUBMIT.value: "Work order submitted for approval",
    WorkOrderEvent.APPROVE.value: "Work order approved and completed",
    WorkOrderEvent.REQUEST_AMENDMENT.value: "Amendment requested by approver",
    WorkOrderEvent.REOPEN.value: "Work order resubmitted after amendments",
}

# Assignments and resources may only change before approval is requested.
EDITABLE_STATUSES = {WorkOrderStatus.ONGOING.value, WorkOrderStatus.AMENDMENT_REQUIRED.value}


class WorkOrderService:
    """Service for work order transitions and assignments.

    Every transition takes the acting user explicitly and appends one
    WorkOrderHistory row. Approval drives payroll processing.
    """

    def __init__(
        self,
        session: AsyncSession,
        orchestrator: WorkOrderProcessingOrchestrator | None = None,
    ):
        self.session = session
        self.orchestrator = orchestrator or WorkOrderProcessingOrchestrator(session)

    async def get_work_order(self, work_order_id: int, lock: bool = False) -> WorkOrder:
        query = select(WorkOrder).where(WorkOrder.id == work_order_id)
        if lock:
            query = query.with_for_update()
        work_order = (await self.session.execute(query)).scalar_one_or_none()
        if work_order is None:
            raise NotFoundError(f"Work order {work_order_id} not found")
        return work_order

    async def submit(
        self, work_order: WorkOrder, actor: str, remarks: str | None = None
    ) -> WorkOrder:
        return await self._fire(work_order, WorkOrderEvent.SUBMIT, actor, remarks)

    async def request_amendment(
        self, work_order: WorkOrder, actor: str, remarks: str | None = None
    ) -> WorkOrder:
        return await self._fire(work_order, WorkOrderEvent.REQUEST_AMENDMENT, actor, remarks)

    async def reopen(
        self, work_order: WorkOrder, actor: str, remarks: str | None = None
    ) -> WorkOrder:
        return await self._fire(work_order, WorkOrderEvent.REOPEN, actor, remarks)

    async def approve(
        self, work_order: WorkOrder, actor: str, remarks: str | None = None
    ) -> Result[str, str]:
        """Approve a pending work order and process its payroll.

        Raises InvalidTransitionError if the order cannot be approved. If
        processing fails the order stays pending and the Err is returned.
        """
        WorkOrderStateMachine.validate(work_order, WorkOrderEvent.APPROVE)

        result = await self.orchestrator.process(work_order)
        if isinstance(result, Err):
            logger.warning("Approval of work order %s rolled back: %s", work_order.id, result.error)
            return result

        work_order.approved_by = actor
        work_order.approved_at = utcnow()
        await self._fire(work_order, WorkOrderEvent.APPROVE, actor, remarks)
        return Ok(result.value)

    async def assign_worker(
        self,
        work_order: WorkOrder,
        worker_id: int,
        rate: Decimal | None = None,
        work_days: int | None = None,
        work_area_size: Decimal | None = None,
        remarks: str | None = None,
    ) -> WorkOrderWorker:
        """Assign a worker and compute their gross contribution."""
        self._ensure_editable(work_order)
        if await self.session.get(Worker, worker_id) is None:
            raise NotFoundError(f"Worker {worker_id} not found")

        assignment = WorkOrderWorker(
            worker_id=worker_id,
            rate=rate,
            work_days=work_days,
            work_area_size=work_area_size,
            remarks=remarks,
        )
        assignment.amount = GrossSalaryCalculator.for_assignment(work_order, assignment)
        work_order.workers.append(assignment)
        await self.session.flush()
        return assignment

    async def add_item(self, work_order: WorkOrder, name: str, quantity: Decimal) -> WorkOrderItem:
        self._ensure_editable(work_order)
        item = WorkOrderItem(name=name, quantity=quantity)
        work_order.items.append(item)
        await self.session.flush()
        return item

    async def discard(self, work_order: WorkOrder, actor: str) -> Result[str, str]:
        """Soft-delete a work order, reversing its payroll if it was completed."""
        if work_order.discarded_at is not None:
            return Ok(f"Work order {work_order.id} already discarded")

        if enum_value(work_order.status) == WorkOrderStatus.COMPLETED.value:
            result = await self.orchestrator.reverse(work_order)
            if isinstance(result, Err):
                return result
            message = result.value
        else:
            message = f"Work order {work_order.id} discarded"

        discarded_at = utcnow()
        work_order.discarded_at = discarded_at
        for assignment in work_order.workers:
            if assignment.discarded_at is None:
                assignment.discarded_at = discarded_at
        await self.session.flush()
        logger.info("Work order %s discarded by %s", work_order.id, actor)
        return Ok(message)

    async def history(self, work_order_id: int) -> list[WorkOrderHistory]:
        result = await self.session.execute(
            select(WorkOrderHistory)
            .where(WorkOrderHistory.work_order_id == work_order_id)
            .order_by(WorkOrderHistory.created_at, WorkOrderHistory.id)
        )
        return list(result.scalars().all())

    async def _fire(
        self,
        work_order: WorkOrder,
        event: WorkOrderEvent,
        actor: str,
        remarks: str | None,
    ) -> WorkOrder:
        transition = WorkOrderStateMachine.validate(work_order, event)
        from_status = enum_value(work_order.status)
        work_order.status = transition.to_status.value

        self.session.add(
            WorkOrderHistory(
                work_order_id=work_order.id,
                action=event.value,
                from_state=from_status,
                to_state=transition.to_status.value,
                actor=actor,
                remarks=remarks or DEFAULT_REMARKS[event.value],
                created_at=utcnow(),
            )
        )
        await self.session.flush()
        logger.info(
            "Work order %s %s: %s -> %s by %s",
            work_order.id,
            event.value,
            from_status,
            transition.to_status.value,
            actor,
        )
        return work_order

    @staticmethod
    def _ensure_editable(work_order: WorkOrder) -> None:
        if enum_value(work_order.status) not in EDITABLE_STATUSES:
            raise ValidationError(
                f"Work order {work_order.id} is {work_order.status}; assignments are locked"
            )
