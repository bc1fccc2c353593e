"""Worker and work-order collaborator models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from estate_payroll.errors import ImmutableRecordError
from estate_payroll.models.base import Base, Money, TimestampMixin, utcnow


class WorkOrderRateType(str, Enum):
    """Rate type of a work order."""

    NORMAL = "normal"
    WORK_DAYS = "work_days"
    RESOURCES = "resources"


class Worker(Base, TimestampMixin):
    """Plantation worker."""

    __tablename__ = "worker"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    nationality: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "nationality IS NULL OR nationality IN ('local', 'foreigner', 'foreigner_no_passport')",
            name="worker_nationality_check",
        ),
    )


class WorkOrder(Base, TimestampMixin):
    """Field work order whose approval feeds payroll."""

    __tablename__ = "work_order"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="ongoing")
    rate_type: Mapped[str] = mapped_column(
        String, nullable=False, default=WorkOrderRateType.NORMAL.value
    )
    rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    block_number: Mapped[str | None] = mapped_column(String, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    work_month: Mapped[date | None] = mapped_column(Date, nullable=True)
    completion_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    discarded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('ongoing', 'pending', 'amendment_required', 'completed')",
            name="work_order_status_check",
        ),
        CheckConstraint(
            "rate_type IN ('normal', 'work_days', 'resources')",
            name="work_order_rate_type_check",
        ),
    )

    # Relationships
    workers: Mapped[list[WorkOrderWorker]] = relationship(
        back_populates="work_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    items: Mapped[list[WorkOrderItem]] = relationship(
        back_populates="work_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_kept(self) -> bool:
        return self.discarded_at is None

    @property
    def is_resource_only(self) -> bool:
        return self.rate_type == WorkOrderRateType.RESOURCES.value

    @property
    def kept_workers(self) -> list[WorkOrderWorker]:
        return [w for w in self.workers if w.discarded_at is None]


class WorkOrderWorker(Base, TimestampMixin):
    """Worker assignment on a work order with its gross contribution."""

    __tablename__ = "work_order_worker"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    work_order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("work_order.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    worker_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("worker.id"),
        nullable=False,
        index=True,
    )
    rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    work_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    work_area_size: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    discarded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    work_order: Mapped[WorkOrder] = relationship(back_populates="workers")
    worker: Mapped[Worker] = relationship()


class WorkOrderItem(Base, TimestampMixin):
    """Resource consumed by a work order."""

    __tablename__ = "work_order_item"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    work_order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("work_order.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)

    # Relationships
    work_order: Mapped[WorkOrder] = relationship(back_populates="items")


class WorkOrderHistory(Base):
    """Append-only audit record of a work-order transition."""

    __tablename__ = "work_order_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    work_order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("work_order.id"),
        nullable=False,
        index=True,
    )
    action: Mapped[str] = mapped_column(String, nullable=False)
    from_state: Mapped[str] = mapped_column(String, nullable=False)
    to_state: Mapped[str] = mapped_column(String, nullable=False)
    actor: Mapped[str | None] = mapped_column(String, nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    @property
    def transition_description(self) -> str:
        return (
            f"{self.from_state.replace('_', ' ').title()} → "
            f"{self.to_state.replace('_', ' ').title()}"
        )


@event.listens_for(WorkOrderHistory, "before_update")
def _forbid_history_update(mapper, connection, target: WorkOrderHistory) -> None:  # type: ignore[no-untyped-def]
    raise ImmutableRecordError(f"Work order history {target.id} is append-only")


@event.listens_for(WorkOrderHistory, "before_delete")
def _forbid_history_delete(mapper, connection, target: WorkOrderHistory) -> None:  # type: ignore[no-untyped-def]
    raise ImmutableRecordError(f"Work order history {target.id} is append-only")
