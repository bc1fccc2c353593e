"""Strategy selection by calculation kind."""

from __future__ import annotations

from typing import TYPE_CHECKING

from estate_payroll.calculators.strategies import (
    DeductionStrategy,
    FixedStrategy,
    PercentageStrategy,
    WageRangeStrategy,
)
from estate_payroll.calculators.types import CalculationKind

if TYPE_CHECKING:
    from estate_payroll.models import DeductionRegistryEntry


class StrategyDispatcher:
    """Maps an entry's calculation kind to its strategy.

    A new kind needs one strategy class and one entry in STRATEGIES.
    """

    STRATEGIES: dict[str, type[DeductionStrategy]] = {
        CalculationKind.PERCENTAGE.value: PercentageStrategy,
        CalculationKind.FIXED.value: FixedStrategy,
        CalculationKind.WAGE_RANGE.value: WageRangeStrategy,
    }

    @classmethod
    def for_entry(cls, entry: DeductionRegistryEntry) -> DeductionStrategy:
        """Build the strategy for a registry entry.

        Raises:
            ValueError: If the entry's calculation kind is unknown
        """
        kind = entry.calculation_kind
        if isinstance(kind, CalculationKind):
            kind = kind.value
        strategy_class = cls.STRATEGIES.get(kind)
        if strategy_class is None:
            raise ValueError(
                f"Unknown calculation kind: {entry.calculation_kind}. "
                f"Valid kinds: {', '.join(cls.supported_kinds())}"
            )
        return strategy_class(entry)

    @classmethod
    def supports(cls, kind: str) -> bool:
        if isinstance(kind, CalculationKind):
            kind = kind.value
        return kind in cls.STRATEGIES

    @classmethod
    def supported_kinds(cls) -> list[str]:
        return list(cls.STRATEGIES)
