"""Deduction registry models: effective-dated entries and wage ranges."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, object_session, relationship

from estate_payroll.calculators.types import (
    ZERO,
    Applicability,
    CalculationKind,
    ContributionField,
    RangeMethod,
    RoundingMethod,
    enum_value,
    round_amount,
    to_cents,
)
from estate_payroll.errors import ImmutableRecordError
from estate_payroll.models.base import Base, Money, Rate, TimestampMixin

DEFAULT_ROUNDING_PRECISION = 2
HUNDRED = Decimal("100")


class DeductionRegistryEntry(Base, TimestampMixin):
    """One effective-dated version of a statutory deduction code."""

    __tablename__ = "deduction_registry_entry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    calculation_kind: Mapped[str] = mapped_column(
        String, nullable=False, default=CalculationKind.PERCENTAGE.value
    )
    employee_rate: Mapped[Decimal | None] = mapped_column(Rate, nullable=True)
    employer_rate: Mapped[Decimal | None] = mapped_column(Rate, nullable=True)
    applies_to: Mapped[str] = mapped_column(
        String, nullable=False, default=Applicability.ALL.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    rounding_precision: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_ROUNDING_PRECISION
    )
    rounding_method: Mapped[str] = mapped_column(
        String, nullable=False, default=RoundingMethod.ROUND.value
    )

    __table_args__ = (
        CheckConstraint(
            "calculation_kind IN ('percentage', 'fixed', 'wage_range')",
            name="deduction_entry_kind_check",
        ),
        CheckConstraint(
            "applies_to IN ('all', 'local', 'foreigner')",
            name="deduction_entry_applies_to_check",
        ),
        CheckConstraint(
            "effective_until IS NULL OR effective_until >= effective_from",
            name="deduction_entry_dates_check",
        ),
        # At most one open entry per code.
        Index(
            "deduction_entry_one_open_per_code",
            "code",
            unique=True,
            postgresql_where=text("effective_until IS NULL"),
            sqlite_where=text("effective_until IS NULL"),
        ),
        Index("deduction_entry_code_dates", "code", "effective_from", "effective_until"),
    )

    # Relationships
    wage_ranges: Mapped[list[WageRange]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="WageRange.min_wage",
        lazy="selectin",
    )

    @property
    def is_open(self) -> bool:
        return self.effective_until is None

    @property
    def kind(self) -> CalculationKind:
        return CalculationKind(self.calculation_kind)

    @property
    def precision(self) -> int:
        if self.rounding_precision is None:
            return DEFAULT_ROUNDING_PRECISION
        return self.rounding_precision

    @property
    def method(self) -> RoundingMethod:
        return RoundingMethod(self.rounding_method or RoundingMethod.ROUND.value)

    def rate_for(self, field: ContributionField | str) -> Decimal | None:
        """Employee or employer rate/amount."""
        if ContributionField(field) is ContributionField.EMPLOYEE:
            return self.employee_rate
        return self.employer_rate

    def is_active_on(self, as_of_date: date) -> bool:
        """Check if the entry applies on a given date."""
        if not self.is_active:
            return False
        if self.effective_from > as_of_date:
            return False
        if self.effective_until is not None and self.effective_until < as_of_date:
            return False
        return True

    def overlaps(self, start: date, end: date | None) -> bool:
        """Check whether [start, end] intersects this entry's interval."""
        if end is not None and end < self.effective_from:
            return False
        if self.effective_until is not None and self.effective_until < start:
            return False
        return True

    def calculate_amount(
        self, gross_salary: Decimal, field: ContributionField | str = ContributionField.EMPLOYEE
    ) -> Decimal:
        """Calculate the deduction amount for a gross salary."""
        from estate_payroll.calculators.dispatcher import StrategyDispatcher

        return StrategyDispatcher.for_entry(self).calculate(gross_salary, field)

    def find_wage_range(self, salary: Decimal) -> WageRange | None:
        """Lowest bracket containing the salary (inclusive at both ends)."""
        for wage_range in sorted(self.wage_ranges, key=lambda r: r.min_wage):
            if wage_range.contains(salary):
                return wage_range
        return None

    def validation_errors(self) -> list[str]:
        """Return a list of validation messages (empty if valid)."""
        errors: list[str] = []
        if not self.code:
            errors.append("code is required")
        if not self.name:
            errors.append("name is required")
        if self.effective_from is None:
            errors.append("effective_from is required")
        elif self.effective_until is not None and self.effective_until < self.effective_from:
            errors.append("effective_until must be on or after effective_from")

        try:
            kind = CalculationKind(self.calculation_kind)
        except ValueError:
            errors.append(f"unknown calculation kind {self.calculation_kind!r}")
            kind = None

        if enum_value(self.applies_to) not in {None, *(a.value for a in Applicability)}:
            errors.append(f"unknown nationality applicability {self.applies_to!r}")
        if enum_value(self.rounding_method) not in {None, *(m.value for m in RoundingMethod)}:
            errors.append(f"unknown rounding method {self.rounding_method!r}")
        if not 0 <= self.precision <= 4:
            errors.append("rounding_precision must be between 0 and 4")

        for label, value in (
            ("employee_rate", self.employee_rate),
            ("employer_rate", self.employer_rate),
        ):
            if value is None:
                continue
            if value < 0:
                errors.append(f"{label} must be greater than or equal to 0")
            elif kind is CalculationKind.PERCENTAGE and value > HUNDRED:
                errors.append(f"{label} must be a percentage between 0 and 100")
        return errors


class WageRange(Base, TimestampMixin):
    """Salary bracket with its own fixed or percentage contribution."""

    __tablename__ = "wage_range"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("deduction_registry_entry.id", ondelete="CASCADE"),
        nullable=False,
    )
    min_wage: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_wage: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    calculation_method: Mapped[str] = mapped_column(
        String, nullable=False, default=RangeMethod.FIXED.value
    )
    employee_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    employer_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    employee_percentage: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=ZERO)
    employer_percentage: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=ZERO)

    __table_args__ = (
        UniqueConstraint("entry_id", "min_wage", name="wage_range_entry_min_unique"),
        CheckConstraint(
            "calculation_method IN ('fixed', 'percentage')",
            name="wage_range_method_check",
        ),
        CheckConstraint(
            "max_wage IS NULL OR max_wage >= min_wage",
            name="wage_range_bounds_check",
        ),
        Index("wage_range_salary_lookup", "entry_id", "min_wage", "max_wage"),
    )

    # Relationships
    entry: Mapped[DeductionRegistryEntry] = relationship(back_populates="wage_ranges")

    def contains(self, salary: Decimal) -> bool:
        """Inclusive at both boundaries; open-ended when max_wage is null."""
        if salary < self.min_wage:
            return False
        return self.max_wage is None or salary <= self.max_wage

    def overlaps(self, other: WageRange) -> bool:
        if self.max_wage is not None and self.max_wage < other.min_wage:
            return False
        if other.max_wage is not None and other.max_wage < self.min_wage:
            return False
        return True

    def calculate_for(
        self, gross_salary: Decimal, field: ContributionField | str = ContributionField.EMPLOYEE
    ) -> Decimal:
        """Deduction for this bracket: fixed pair or percentage of gross."""
        employee = ContributionField(field) is ContributionField.EMPLOYEE
        if enum_value(self.calculation_method) == RangeMethod.PERCENTAGE.value:
            percentage = self.employee_percentage if employee else self.employer_percentage
            if not percentage:
                return to_cents(ZERO)
            return round_amount(Decimal(gross_salary) * percentage / HUNDRED)
        amount = self.employee_amount if employee else self.employer_amount
        return to_cents(amount or ZERO)

    def display(self, currency: str = "RM") -> str:
        """Human-readable bracket, e.g. 'RM 3,400.01 - RM 3,500.00'."""
        low = f"{currency} {self.min_wage:,.2f}"
        if self.max_wage is None:
            return f"{low} and above"
        return f"{low} - {currency} {self.max_wage:,.2f}"

    def validation_errors(self) -> list[str]:
        """Return a list of validation messages (empty if valid)."""
        errors: list[str] = []
        if self.min_wage is None:
            errors.append("min_wage is required")
        elif self.min_wage < 0:
            errors.append("min_wage must be greater than or equal to 0")
        if self.max_wage is not None:
            if self.max_wage < 0:
                errors.append("max_wage must be greater than or equal to 0")
            elif self.min_wage is not None and self.max_wage < self.min_wage:
                errors.append("max_wage must be greater than or equal to min_wage")
        if enum_value(self.calculation_method) not in {m.value for m in RangeMethod}:
            errors.append(f"unknown calculation method {self.calculation_method!r}")
        for label in ("employee_amount", "employer_amount"):
            value = getattr(self, label)
            if value is not None and value < 0:
                errors.append(f"{label} must be greater than or equal to 0")
        for label in ("employee_percentage", "employer_percentage"):
            value = getattr(self, label)
            if value is not None and not ZERO <= value <= HUNDRED:
                errors.append(f"{label} must be between 0 and 100")
        return errors


_FROZEN_ENTRY_ATTRS = (
    "code",
    "name",
    "calculation_kind",
    "employee_rate",
    "employer_rate",
    "applies_to",
    "effective_from",
    "rounding_precision",
    "rounding_method",
)


@event.listens_for(DeductionRegistryEntry, "before_update")
def _guard_entry_mutation(mapper, connection, target: DeductionRegistryEntry) -> None:  # type: ignore[no-untyped-def]
    """Rates change by close-and-create, never in place."""
    state = inspect(target)
    changed = [name for name in _FROZEN_ENTRY_ATTRS if state.attrs[name].history.has_changes()]
    if changed:
        raise ImmutableRecordError(
            f"Deduction entry {target.code} cannot be modified in place "
            f"({', '.join(changed)}); supersede it instead"
        )

    until_history = state.attrs.effective_until.history
    previous_until = until_history.deleted[0] if until_history.deleted else target.effective_until
    if previous_until is not None and until_history.has_changes():
        raise ImmutableRecordError(
            f"Deduction entry {target.code} was closed on {previous_until} and is immutable"
        )
    if previous_until is not None and state.attrs.is_active.history.has_changes():
        raise ImmutableRecordError(
            f"Deduction entry {target.code} was closed on {previous_until} and is immutable"
        )


RANGE_FIELDS = (
    "min_wage",
    "max_wage",
    "calculation_method",
    "employee_amount",
    "employer_amount",
    "employee_percentage",
    "employer_percentage",
)


@event.listens_for(WageRange, "before_update")
def _guard_range_mutation(mapper, connection, target: WageRange) -> None:  # type: ignore[no-untyped-def]
    """A bracket's amounts are its entry's rates, so they are frozen too."""
    state = inspect(target)
    changed = [
        name for name in (*RANGE_FIELDS, "entry_id") if state.attrs[name].history.has_changes()
    ]
    if changed:
        raise ImmutableRecordError(
            f"Wage range {target.display()} cannot be modified in place "
            f"({', '.join(changed)}); supersede its deduction entry instead"
        )


@event.listens_for(WageRange, "before_delete")
def _guard_range_delete(mapper, connection, target: WageRange) -> None:  # type: ignore[no-untyped-def]
    """Ranges only go away together with their entry."""
    session = object_session(target)
    if session is not None and any(
        isinstance(obj, DeductionRegistryEntry) and obj.id == target.entry_id
        for obj in session.deleted
    ):
        return
    raise ImmutableRecordError(
        f"Wage range {target.display()} cannot be removed from its deduction entry"
    )
