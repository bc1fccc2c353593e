"""Work order approval state machine with guarded transitions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from estate_payroll.calculators.types import enum_value
from estate_payroll.errors import PayrollError
from estate_payroll.models.work_order import WorkOrderRateType

if TYPE_CHECKING:
    from estate_payroll.models import WorkOrder


class WorkOrderStatus(str, Enum):
    """Work order status values."""

    ONGOING = "ongoing"
    PENDING = "pending"
    AMENDMENT_REQUIRED = "amendment_required"
    COMPLETED = "completed"


class WorkOrderEvent(str, Enum):
    """Events that move a work order between statuses."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REQUEST_AMENDMENT = "request_amendment"
    REOPEN = "reopen"


class InvalidTransitionError(PayrollError):
    """Raised when an event cannot fire from the current status."""

    def __init__(self, from_status: str, event: str, reason: str | None = None):
        self.from_status = from_status
        self.event = event
        self.reason = reason
        msg = f"Cannot {event} a work order in '{from_status}' status"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


Guard = Callable[["WorkOrder"], list[str]]


def required_fields_errors(work_order: WorkOrder) -> list[str]:
    """Fields each rate type needs before it can be submitted."""
    errors: list[str] = []
    rate_type = enum_value(work_order.rate_type)
    if rate_type == WorkOrderRateType.NORMAL.value:
        if work_order.start_date is None:
            errors.append("start date is required")
        if not work_order.block_number:
            errors.append("block is required")
    elif rate_type == WorkOrderRateType.WORK_DAYS.value:
        if work_order.work_month is None:
            errors.append("work month is required")
    return errors


def required_associations_errors(work_order: WorkOrder) -> list[str]:
    """Workers and resources each rate type needs."""
    rate_type = enum_value(work_order.rate_type)
    has_workers = bool(work_order.kept_workers)
    has_items = bool(work_order.items)

    if rate_type == WorkOrderRateType.NORMAL.value and not (has_workers or has_items):
        return ["at least one worker or resource is required"]
    if rate_type == WorkOrderRateType.WORK_DAYS.value and not has_workers:
        return ["at least one worker is required"]
    if rate_type == WorkOrderRateType.RESOURCES.value and not has_items:
        return ["at least one resource is required"]
    return []


def submission_errors(work_order: WorkOrder) -> list[str]:
    return required_fields_errors(work_order) + required_associations_errors(work_order)


def approval_errors(work_order: WorkOrder) -> list[str]:
    """Payroll processing needs the month the work was completed in."""
    if work_order.is_resource_only or not work_order.kept_workers:
        return []
    if work_order.completion_date is None:
        return ["completion date is required to process payroll"]
    return []


@dataclass(frozen=True)
class Transition:
    """One row of the transition table."""

    from_status: WorkOrderStatus
    event: WorkOrderEvent
    to_status: WorkOrderStatus
    guard: Guard | None = None

    def errors(self, work_order: WorkOrder) -> list[str]:
        if self.guard is None:
            return []
        return self.guard(work_order)


class WorkOrderStateMachine:
    """State machine for work order approval.

    Allowed transitions:
    - ongoing → pending (submit)
    - pending → completed (approve)
    - pending → amendment_required (request_amendment)
    - amendment_required → pending (reopen)

    Completed is terminal.
    """

    TRANSITIONS: tuple[Transition, ...] = (
        Transition(
            WorkOrderStatus.ONGOING,
            WorkOrderEvent.SUBMIT,
            WorkOrderStatus.PENDING,
            submission_errors,
        ),
        Transition(
            WorkOrderStatus.PENDING,
            WorkOrderEvent.APPROVE,
            WorkOrderStatus.COMPLETED,
            approval_errors,
        ),
        Transition(
            WorkOrderStatus.PENDING,
            WorkOrderEvent.REQUEST_AMENDMENT,
            WorkOrderStatus.AMENDMENT_REQUIRED,
        ),
        Transition(
            WorkOrderStatus.AMENDMENT_REQUIRED,
            WorkOrderEvent.REOPEN,
            WorkOrderStatus.PENDING,
            submission_errors,
        ),
    )

    TERMINAL = {WorkOrderStatus.COMPLETED.value}

    @classmethod
    def transition_for(cls, status: str, event: str) -> Transition | None:
        status, event = enum_value(status), enum_value(event)
        for transition in cls.TRANSITIONS:
            if transition.from_status.value == status and transition.event.value == event:
                return transition
        return None

    @classmethod
    def next_status(cls, status: str, event: str) -> str | None:
        transition = cls.transition_for(status, event)
        return transition.to_status.value if transition else None

    @classmethod
    def available_events(cls, status: str) -> list[str]:
        """Events defined for a status, guards not evaluated."""
        status = enum_value(status)
        return [t.event.value for t in cls.TRANSITIONS if t.from_status.value == status]

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return enum_value(status) in cls.TERMINAL

    @classmethod
    def can_fire(cls, work_order: WorkOrder, event: str) -> bool:
        transition = cls.transition_for(work_order.status, event)
        return transition is not None and not transition.errors(work_order)

    @classmethod
    def validate(cls, work_order: WorkOrder, event: str) -> Transition:
        """Return the transition for an event, raising if it cannot fire."""
        transition = cls.transition_for(work_order.status, event)
        if transition is None:
            raise InvalidTransitionError(enum_value(work_order.status), enum_value(event))

        errors = transition.errors(work_order)
        if errors:
            raise InvalidTransitionError(
                enum_value(work_order.status), enum_value(event), "; ".join(errors)
            )
        return transition
