"""Type definitions for the deduction calculation pipeline."""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping

ZERO = Decimal("0")
CENTS = Decimal("0.01")

MONTH_KEY_FORMAT = "%Y-%m"
_MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class CalculationKind(str, Enum):
    """How a registry entry turns gross salary into an amount."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"
    WAGE_RANGE = "wage_range"


class RangeMethod(str, Enum):
    """Sub-calculation used inside a single wage range."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"


class ContributionField(str, Enum):
    """Which side of a contribution is being computed."""

    EMPLOYEE = "employee"
    EMPLOYER = "employer"


class Applicability(str, Enum):
    """Nationality tag on a registry entry."""

    ALL = "all"
    LOCAL = "local"
    FOREIGNER = "foreigner"


class NationalityClass(str, Enum):
    """Nationality class of a worker."""

    LOCAL = "local"
    FOREIGNER = "foreigner"
    FOREIGNER_NO_PASSPORT = "foreigner_no_passport"


class RoundingMethod(str, Enum):
    """Rounding applied to computed percentage amounts."""

    ROUND = "round"
    CEIL = "ceil"
    FLOOR = "floor"


_ROUNDING_MODES = {
    RoundingMethod.ROUND: ROUND_HALF_UP,
    RoundingMethod.CEIL: ROUND_CEILING,
    RoundingMethod.FLOOR: ROUND_FLOOR,
}


def round_amount(
    amount: Decimal,
    precision: int = 2,
    method: RoundingMethod | str = RoundingMethod.ROUND,
) -> Decimal:
    """Round to `precision` decimal places using the given method."""
    quantum = Decimal(1).scaleb(-precision)
    rounded = Decimal(amount).quantize(quantum, rounding=_ROUNDING_MODES[RoundingMethod(method)])
    # Persisted money columns carry two decimal places.
    return rounded.quantize(CENTS)


def to_cents(amount: Decimal | int | str) -> Decimal:
    """Round amount to 2 decimal places (cents)."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


# ===== Month keys =====


def month_key(value: date) -> str:
    """Month key (YYYY-MM) for a date."""
    return value.strftime(MONTH_KEY_FORMAT)


def validate_month_key(key: str) -> str:
    if not _MONTH_KEY_RE.match(key):
        raise ValueError(f"Invalid month key {key!r}, expected YYYY-MM")
    return key


def first_day_of_month(key: str) -> date:
    """First calendar day of a YYYY-MM month key."""
    validate_month_key(key)
    year, month = (int(part) for part in key.split("-"))
    return date(year, month, 1)


def month_bounds(key: str) -> tuple[date, date]:
    """Inclusive first and last day of a month key."""
    start = first_day_of_month(key)
    last = calendar.monthrange(start.year, start.month)[1]
    return start, date(start.year, start.month, last)


# ===== Breakdown snapshot =====


def _decimal_or_none(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _str_or_none(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


@dataclass(frozen=True)
class BreakdownEntry:
    """Frozen per-code record of how one deduction was computed."""

    code: str
    name: str
    calculation_kind: CalculationKind
    employee_rate: Decimal | None
    employer_rate: Decimal | None
    employee_amount: Decimal
    employer_amount: Decimal
    wage_range: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "calculation_kind": self.calculation_kind.value,
            "employee_rate": _str_or_none(self.employee_rate),
            "employer_rate": _str_or_none(self.employer_rate),
            "employee_amount": str(self.employee_amount),
            "employer_amount": str(self.employer_amount),
            "wage_range": self.wage_range,
        }

    @classmethod
    def from_dict(cls, code: str, data: Mapping[str, Any]) -> BreakdownEntry:
        return cls(
            code=code,
            name=data["name"],
            calculation_kind=CalculationKind(data["calculation_kind"]),
            employee_rate=_decimal_or_none(data.get("employee_rate")),
            employer_rate=_decimal_or_none(data.get("employer_rate")),
            employee_amount=Decimal(str(data["employee_amount"])),
            employer_amount=Decimal(str(data["employer_amount"])),
            wage_range=data.get("wage_range"),
        )


def breakdown_sort_key(code: str) -> tuple[int, str]:
    """Display order: EPF*, SOCSO, EIS*, then everything else by code."""
    upper = code.upper()
    if upper.startswith("EPF"):
        priority = 0
    elif upper == "SOCSO":
        priority = 1
    elif upper.startswith("EIS"):
        priority = 2
    else:
        priority = 3
    return priority, code


class DeductionBreakdown:
    """Ordered, immutable map of deduction code to BreakdownEntry."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[BreakdownEntry] = ()):
        ordered = sorted(entries, key=lambda e: breakdown_sort_key(e.code))
        self._entries: dict[str, BreakdownEntry] = {e.code: e for e in ordered}

    def __iter__(self) -> Iterator[BreakdownEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, code: object) -> bool:
        return code in self._entries

    def __getitem__(self, code: str) -> BreakdownEntry:
        return self._entries[code]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeductionBreakdown):
            return NotImplemented
        return list(self._entries.items()) == list(other._entries.items())

    def __repr__(self) -> str:
        return f"DeductionBreakdown({list(self._entries)})"

    def codes(self) -> list[str]:
        return list(self._entries)

    @property
    def employee_total(self) -> Decimal:
        return sum((e.employee_amount for e in self), ZERO)

    @property
    def employer_total(self) -> Decimal:
        return sum((e.employer_amount for e in self), ZERO)

    def to_json(self) -> dict[str, dict[str, Any]]:
        """Serialize with Decimal values as strings (exact round trip)."""
        return {code: entry.to_dict() for code, entry in self._entries.items()}

    @classmethod
    def from_json(cls, data: Mapping[str, Mapping[str, Any]] | None) -> DeductionBreakdown:
        if not data:
            return cls()
        return cls(BreakdownEntry.from_dict(code, value) for code, value in data.items())


@dataclass
class DeductionResult:
    """Outcome of applying a set of registry entries to one gross salary."""

    gross_salary: Decimal
    breakdown: DeductionBreakdown = field(default_factory=DeductionBreakdown)
    employee_total: Decimal = ZERO
    employer_total: Decimal = ZERO

    @property
    def net_salary(self) -> Decimal:
        return to_cents(self.gross_salary - self.employee_total)


def enum_value(value: Any) -> Any:
    """Plain value of an Enum member; other values pass through."""
    return value.value if isinstance(value, Enum) else value
