"""Deduction calculation: strategies, dispatch and breakdown snapshots."""

from estate_payroll.calculators.deduction_calculator import DeductionCalculator
from estate_payroll.calculators.dispatcher import StrategyDispatcher
from estate_payroll.calculators.gross_salary import GrossSalaryCalculator
from estate_payroll.calculators.strategies import (
    DeductionStrategy,
    FixedStrategy,
    PercentageStrategy,
    WageRangeStrategy,
)
from estate_payroll.calculators.types import (
    BreakdownEntry,
    CalculationKind,
    ContributionField,
    DeductionBreakdown,
    DeductionResult,
    first_day_of_month,
    month_bounds,
    month_key,
)

__all__ = [
    "BreakdownEntry",
    "CalculationKind",
    "ContributionField",
    "DeductionBreakdown",
    "DeductionCalculator",
    "DeductionResult",
    "DeductionStrategy",
    "FixedStrategy",
    "GrossSalaryCalculator",
    "PercentageStrategy",
    "StrategyDispatcher",
    "WageRangeStrategy",
    "first_day_of_month",
    "month_bounds",
    "month_key",
]
