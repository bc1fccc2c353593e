"""Deduction calculation strategies.

Each strategy turns a gross salary into one side (employee or employer) of
a registry entry's contribution. Strategies are pure: they read the entry
and its already-loaded wage ranges and never touch the database.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING

from estate_payroll.calculators.types import (
    ZERO,
    ContributionField,
    round_amount,
    to_cents,
)

if TYPE_CHECKING:
    from estate_payroll.models import DeductionRegistryEntry, WageRange

HUNDRED = Decimal("100")


class DeductionStrategy(ABC):
    """Common interface for calculation strategies."""

    def __init__(self, entry: DeductionRegistryEntry):
        self.entry = entry

    @abstractmethod
    def calculate(
        self, gross_salary: Decimal, field: ContributionField | str = ContributionField.EMPLOYEE
    ) -> Decimal:
        """Return the contribution amount, rounded to cents."""

    def contribution_rate(self, field: ContributionField | str) -> Decimal | None:
        return self.entry.rate_for(field)

    @staticmethod
    def has_rate(rate: Decimal | None) -> bool:
        return rate is not None and rate != 0


class PercentageStrategy(DeductionStrategy):
    """Percentage of gross salary, e.g. EPF employee 11%."""

    def calculate(
        self, gross_salary: Decimal, field: ContributionField | str = ContributionField.EMPLOYEE
    ) -> Decimal:
        rate = self.contribution_rate(field)
        if not self.has_rate(rate):
            return to_cents(ZERO)
        assert rate is not None
        raw = Decimal(gross_salary) * rate / HUNDRED
        return round_amount(raw, self.entry.precision, self.entry.method)


class FixedStrategy(DeductionStrategy):
    """Constant amount regardless of salary."""

    def calculate(
        self, gross_salary: Decimal, field: ContributionField | str = ContributionField.EMPLOYEE
    ) -> Decimal:
        rate = self.contribution_rate(field)
        if not self.has_rate(rate):
            return to_cents(ZERO)
        assert rate is not None
        return to_cents(rate)


class WageRangeStrategy(DeductionStrategy):
    """Lookup in the entry's salary brackets.

    A salary outside every bracket yields zero rather than an error.
    """

    def calculate(
        self, gross_salary: Decimal, field: ContributionField | str = ContributionField.EMPLOYEE
    ) -> Decimal:
        wage_range = self.matching_range(gross_salary)
        if wage_range is None:
            return to_cents(ZERO)
        return wage_range.calculate_for(gross_salary, field)

    def matching_range(self, gross_salary: Decimal) -> WageRange | None:
        return self.entry.find_wage_range(Decimal(gross_salary))
