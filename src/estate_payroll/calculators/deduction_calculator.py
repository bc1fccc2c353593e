"""Apply a set of registry entries to one gross salary."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Iterable

from estate_payroll.calculators.dispatcher import StrategyDispatcher
from estate_payroll.calculators.strategies import WageRangeStrategy
from estate_payroll.calculators.types import (
    ZERO,
    BreakdownEntry,
    CalculationKind,
    ContributionField,
    DeductionBreakdown,
    DeductionResult,
    to_cents,
)

if TYPE_CHECKING:
    from estate_payroll.models import DeductionRegistryEntry


class DeductionCalculator:
    """Computes every applicable deduction for a gross salary.

    The calculator is pure: entries must already be filtered for the
    month and the worker's nationality, with wage ranges loaded.
    """

    def __init__(self, currency: str = "RM"):
        self.currency = currency

    def calculate(
        self,
        entries: Iterable[DeductionRegistryEntry],
        gross_salary: Decimal,
    ) -> DeductionResult:
        gross = to_cents(gross_salary)
        records = [self.calculate_entry(entry, gross) for entry in entries]
        breakdown = DeductionBreakdown(records)

        return DeductionResult(
            gross_salary=gross,
            breakdown=breakdown,
            employee_total=to_cents(breakdown.employee_total),
            employer_total=to_cents(breakdown.employer_total),
        )

    def calculate_entry(
        self, entry: DeductionRegistryEntry, gross_salary: Decimal
    ) -> BreakdownEntry:
        """Both sides of one entry plus the rates used."""
        strategy = StrategyDispatcher.for_entry(entry)
        employee_amount = strategy.calculate(gross_salary, ContributionField.EMPLOYEE)
        employer_amount = strategy.calculate(gross_salary, ContributionField.EMPLOYER)

        wage_range_label = None
        employee_rate = entry.employee_rate
        employer_rate = entry.employer_rate
        if isinstance(strategy, WageRangeStrategy):
            # Rates live on the bracket; the snapshot records which one matched.
            employee_rate = employer_rate = None
            matched = strategy.matching_range(gross_salary)
            if matched is not None:
                wage_range_label = matched.display(self.currency)

        return BreakdownEntry(
            code=entry.code,
            name=entry.name,
            calculation_kind=CalculationKind(entry.calculation_kind),
            employee_rate=employee_rate,
            employer_rate=employer_rate,
            employee_amount=employee_amount or to_cents(ZERO),
            employer_amount=employer_amount or to_cents(ZERO),
            wage_range=wage_range_label,
        )
