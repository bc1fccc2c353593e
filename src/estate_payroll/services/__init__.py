"""Estate payroll services."""

from estate_payroll.services.pay_aggregate_service import PayAggregateService
from estate_payroll.services.pay_detail_builder import PayDetailBuilder
from estate_payroll.services.processing import WorkOrderProcessingOrchestrator
from estate_payroll.services.recalculation_service import (
    RecalculationService,
    RecalculationSummary,
)
from estate_payroll.services.state_machine import (
    InvalidTransitionError,
    WorkOrderEvent,
    WorkOrderStateMachine,
    WorkOrderStatus,
)
from estate_payroll.services.work_order_service import WorkOrderService

__all__ = [
    "InvalidTransitionError",
    "PayAggregateService",
    "PayDetailBuilder",
    "RecalculationService",
    "RecalculationSummary",
    "WorkOrderEvent",
    "WorkOrderProcessingOrchestrator",
    "WorkOrderService",
    "WorkOrderStateMachine",
    "WorkOrderStatus",
]
