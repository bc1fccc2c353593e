"""ORM models for the estate payroll engine."""

from estate_payroll.models.base import Base, TimestampMixin
from estate_payroll.models.deduction import DeductionRegistryEntry, WageRange
from estate_payroll.models.payroll import PayAggregate, PayDetail
from estate_payroll.models.work_order import (
    WorkOrder,
    WorkOrderHistory,
    WorkOrderItem,
    WorkOrderRateType,
    WorkOrderWorker,
    Worker,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "DeductionRegistryEntry",
    "WageRange",
    "PayAggregate",
    "PayDetail",
    "Worker",
    "WorkOrder",
    "WorkOrderHistory",
    "WorkOrderItem",
    "WorkOrderRateType",
    "WorkOrderWorker",
]
