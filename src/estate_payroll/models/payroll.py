"""Monthly pay aggregate and per-worker pay detail models."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from estate_payroll.calculators.types import ZERO, DeductionBreakdown
from estate_payroll.models.base import Base, JSONType, Money, TimestampMixin

if TYPE_CHECKING:
    from estate_payroll.models.work_order import Worker


class PayAggregate(Base, TimestampMixin):
    """Totals for one calendar month, keyed by YYYY-MM."""

    __tablename__ = "pay_aggregate"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    month_year: Mapped[str] = mapped_column(String(7), nullable=False, unique=True)
    total_gross: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    total_employee_deductions: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    total_employer_deductions: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    total_net: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)

    # Relationships
    details: Mapped[list[PayDetail]] = relationship(
        back_populates="pay_aggregate",
        cascade="save-update, merge, delete",
        passive_deletes=True,
    )


class PayDetail(Base, TimestampMixin):
    """One worker's frozen deduction snapshot for one month."""

    __tablename__ = "pay_detail"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pay_aggregate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pay_aggregate.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    worker_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("worker.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    gross_salary: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    employee_deductions: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    employer_deductions: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    net_salary: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="RM")
    deduction_breakdown: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    __table_args__ = (
        UniqueConstraint("pay_aggregate_id", "worker_id", name="pay_detail_aggregate_worker_unique"),
    )

    # Relationships
    pay_aggregate: Mapped[PayAggregate] = relationship(back_populates="details")
    worker: Mapped[Worker] = relationship()

    @property
    def breakdown(self) -> DeductionBreakdown:
        """Structured view of the stored breakdown snapshot."""
        return DeductionBreakdown.from_json(self.deduction_breakdown)
