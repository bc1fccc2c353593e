"""Effective-dated deduction rate registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from estate_payroll.calculators.types import (
    CENTS,
    ZERO,
    Applicability,
    CalculationKind,
    NationalityClass,
    enum_value,
)
from estate_payroll.config import get_settings
from estate_payroll.database import acquire_xact_lock
from estate_payroll.errors import (
    ConflictError,
    ImmutableRecordError,
    NotFoundError,
    ValidationError,
)
from estate_payroll.models import DeductionRegistryEntry, WageRange
from estate_payroll.models.deduction import RANGE_FIELDS

logger = logging.getLogger(__name__)

ON_CONFLICT_REJECT = "reject"
ON_CONFLICT_VERSION = "version"

# Fields a superseding entry may override.
SUPERSEDE_FIELDS = (
    "name",
    "description",
    "calculation_kind",
    "employee_rate",
    "employer_rate",
    "applies_to",
    "is_active",
    "effective_until",
    "rounding_precision",
    "rounding_method",
)

_DECIMAL_RANGE_FIELDS = frozenset(RANGE_FIELDS) - {"calculation_method"}


@dataclass(frozen=True)
class ImportSummary:
    """Outcome of a bulk import."""

    created: int = 0
    superseded: int = 0


def _decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _range_values(data: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(data) - set(RANGE_FIELDS)
    if unknown:
        raise ValidationError(f"unknown wage range fields: {', '.join(sorted(unknown))}")
    values: dict[str, Any] = {}
    for name, value in data.items():
        if name in _DECIMAL_RANGE_FIELDS:
            value = _decimal(value)
            if value is None and name != "max_wage":
                continue
        else:
            value = enum_value(value)
        values[name] = value
    if values.get("calculation_method") is None:
        values["calculation_method"] = "fixed"
    return values


class RateRegistry:
    """Answers which deduction rates applied on a date, and versions them.

    Rates are never edited in place: a change closes the open entry and
    opens a new one, so readers always see complete historical records.
    """

    def __init__(self, session: AsyncSession, strict_ranges: bool | None = None):
        self.session = session
        if strict_ranges is None:
            strict_ranges = get_settings().strict_wage_ranges
        self.strict_ranges = strict_ranges

    # ===== Queries =====

    async def active_on(self, as_of: date) -> list[DeductionRegistryEntry]:
        """Active entries whose effective interval contains the date."""
        result = await self.session.execute(
            select(DeductionRegistryEntry)
            .where(
                DeductionRegistryEntry.is_active.is_(True),
                DeductionRegistryEntry.effective_from <= as_of,
                or_(
                    DeductionRegistryEntry.effective_until.is_(None),
                    DeductionRegistryEntry.effective_until >= as_of,
                ),
            )
            .order_by(DeductionRegistryEntry.code, DeductionRegistryEntry.effective_from)
        )
        return list(result.scalars().all())

    @staticmethod
    def for_nationality(
        entries: Iterable[DeductionRegistryEntry],
        nationality: NationalityClass | str | None,
    ) -> list[DeductionRegistryEntry]:
        """Entries tagged 'all' or exactly matching the nationality.

        Foreigners without a passport receive no statutory deductions.
        """
        nationality = enum_value(nationality)
        if nationality == NationalityClass.FOREIGNER_NO_PASSPORT.value:
            return []
        return [
            entry
            for entry in entries
            if entry.applies_to == Applicability.ALL.value
            or (nationality is not None and entry.applies_to == nationality)
        ]

    async def applicable_on(
        self, as_of: date, nationality: NationalityClass | str | None
    ) -> list[DeductionRegistryEntry]:
        return self.for_nationality(await self.active_on(as_of), nationality)

    async def current(self, code: str, lock: bool = False) -> DeductionRegistryEntry | None:
        """The open entry for a code, if any."""
        query = select(DeductionRegistryEntry).where(
            DeductionRegistryEntry.code == code,
            DeductionRegistryEntry.effective_until.is_(None),
        )
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def history(self, code: str) -> list[DeductionRegistryEntry]:
        """Every version of a code, oldest first."""
        result = await self.session.execute(
            select(DeductionRegistryEntry)
            .where(DeductionRegistryEntry.code == code)
            .order_by(DeductionRegistryEntry.effective_from)
        )
        return list(result.scalars().all())

    # ===== Writes =====

    async def create_entry(
        self,
        code: str,
        name: str,
        calculation_kind: CalculationKind | str,
        effective_from: date,
        employee_rate: Decimal | None = None,
        employer_rate: Decimal | None = None,
        applies_to: Applicability | str = Applicability.ALL,
        effective_until: date | None = None,
        description: str | None = None,
        is_active: bool = True,
        rounding_precision: int = 2,
        rounding_method: str = "round",
        wage_ranges: Iterable[Mapping[str, Any]] | None = None,
    ) -> DeductionRegistryEntry:
        """Create one registry entry, optionally with its wage ranges.

        Raises:
            ValidationError: If rates, dates or ranges are malformed
            ConflictError: If the code already has an open entry or the
                interval overlaps an existing version
        """
        entry = self._prepare_entry(
            code=code,
            name=name,
            calculation_kind=calculation_kind,
            effective_from=effective_from,
            employee_rate=employee_rate,
            employer_rate=employer_rate,
            applies_to=applies_to,
            effective_until=effective_until,
            description=description,
            is_active=is_active,
            rounding_precision=rounding_precision,
            rounding_method=rounding_method,
            wage_ranges=wage_ranges,
        )

        await acquire_xact_lock(self.session, f"deduction_entry:{code}")
        for existing in await self.history(code):
            if entry.is_open and existing.is_open:
                raise ConflictError(
                    f"Deduction {code} already has an open entry from "
                    f"{existing.effective_from}; close it before opening another"
                )
            if existing.overlaps(entry.effective_from, entry.effective_until):
                raise ConflictError(
                    f"Deduction {code} entry from {entry.effective_from} overlaps "
                    f"the entry effective {existing.effective_from}"
                    f" to {existing.effective_until or 'open'}"
                )

        try:
            async with self.session.begin_nested():
                self.session.add(entry)
                await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Deduction {code} conflicts with an existing entry") from exc
        return entry

    async def close_entry(self, code: str, effective_until: date) -> DeductionRegistryEntry:
        """Close the open entry for a code on the given (inclusive) date."""
        await acquire_xact_lock(self.session, f"deduction_entry:{code}")
        entry = await self.current(code, lock=True)
        if entry is None:
            raise NotFoundError(f"Deduction {code} has no open entry")
        effective_until = _date(effective_until)
        if effective_until < entry.effective_from:
            raise ValidationError(
                f"effective_until {effective_until} is before effective_from {entry.effective_from}"
            )
        entry.effective_until = effective_until
        await self.session.flush()
        logger.info("Closed deduction %s on %s", code, effective_until)
        return entry

    async def supersede(
        self,
        code: str,
        effective_from: date,
        wage_ranges: Iterable[Mapping[str, Any]] | None = None,
        **changes: Any,
    ) -> DeductionRegistryEntry:
        """Close the open entry the day before and open a new version.

        The new entry carries the old values overridden by `changes`.
        Wage ranges are copied unless new ones are supplied.
        """
        unknown = set(changes) - set(SUPERSEDE_FIELDS)
        if unknown:
            raise ValidationError(f"cannot supersede fields: {', '.join(sorted(unknown))}")

        effective_from = _date(effective_from)
        previous = await self.current(code, lock=True)
        if previous is None:
            raise NotFoundError(f"Deduction {code} has no open entry to supersede")
        if effective_from <= previous.effective_from:
            raise ValidationError(
                f"new effective_from {effective_from} must be after "
                f"{previous.effective_from}"
            )

        values = {name: getattr(previous, name) for name in SUPERSEDE_FIELDS}
        values["effective_until"] = None
        values.update(changes)
        if wage_ranges is None:
            wage_ranges = [
                {name: getattr(wage_range, name) for name in RANGE_FIELDS}
                for wage_range in previous.wage_ranges
            ]
        else:
            wage_ranges = list(wage_ranges)

        # Reject a malformed version before the open entry is touched.
        self._prepare_entry(
            code=code, effective_from=effective_from, wage_ranges=wage_ranges, **values
        )
        async with self.session.begin_nested():
            await self.close_entry(code, effective_from - timedelta(days=1))
            entry = await self.create_entry(
                code=code,
                effective_from=effective_from,
                wage_ranges=wage_ranges,
                **values,
            )
        logger.info(
            "Superseded deduction %s: entry %s closed, entry %s effective %s",
            code,
            previous.id,
            entry.id,
            effective_from,
        )
        return entry

    async def add_wage_range(
        self,
        entry: DeductionRegistryEntry,
        min_wage: Decimal,
        max_wage: Decimal | None = None,
        calculation_method: str = "fixed",
        employee_amount: Decimal | None = None,
        employer_amount: Decimal | None = None,
        employee_percentage: Decimal | None = None,
        employer_percentage: Decimal | None = None,
    ) -> WageRange:
        """Add a bracket to an open wage_range entry."""
        if not entry.is_open:
            raise ImmutableRecordError(
                f"Deduction entry {entry.code} was closed on {entry.effective_until}"
            )
        if entry.calculation_kind != CalculationKind.WAGE_RANGE.value:
            raise ValidationError(f"Deduction {entry.code} is not a wage_range entry")

        wage_range = WageRange(
            **_range_values(
                {
                    "min_wage": min_wage,
                    "max_wage": max_wage,
                    "calculation_method": calculation_method,
                    "employee_amount": employee_amount,
                    "employer_amount": employer_amount,
                    "employee_percentage": employee_percentage,
                    "employer_percentage": employer_percentage,
                }
            )
        )
        errors = wage_range.validation_errors()
        if errors:
            raise ValidationError(errors)
        self._check_range_set([*entry.wage_ranges, wage_range])

        entry.wage_ranges.append(wage_range)
        try:
            async with self.session.begin_nested():
                await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                f"Deduction {entry.code} already has a range starting at {wage_range.min_wage}"
            ) from exc
        return wage_range

    def _prepare_entry(
        self,
        code: str,
        name: str,
        calculation_kind: CalculationKind | str,
        effective_from: date,
        employee_rate: Decimal | None = None,
        employer_rate: Decimal | None = None,
        applies_to: Applicability | str = Applicability.ALL,
        effective_until: date | None = None,
        description: str | None = None,
        is_active: bool = True,
        rounding_precision: int = 2,
        rounding_method: str = "round",
        wage_ranges: Iterable[Mapping[str, Any]] | None = None,
    ) -> DeductionRegistryEntry:
        """Build and validate an unsaved entry with its ranges attached."""
        entry = DeductionRegistryEntry(
            code=code,
            name=name,
            description=description,
            calculation_kind=enum_value(calculation_kind),
            employee_rate=_decimal(employee_rate),
            employer_rate=_decimal(employer_rate),
            applies_to=enum_value(applies_to),
            is_active=is_active,
            effective_from=_date(effective_from),
            effective_until=_date(effective_until),
            rounding_precision=rounding_precision,
            rounding_method=enum_value(rounding_method),
            wage_ranges=[],
        )
        errors = entry.validation_errors()

        ranges = [WageRange(**_range_values(data)) for data in wage_ranges or ()]
        for index, wage_range in enumerate(ranges, start=1):
            errors.extend(f"wage range {index}: {msg}" for msg in wage_range.validation_errors())
        if ranges and entry.calculation_kind != CalculationKind.WAGE_RANGE.value:
            errors.append("wage ranges are only allowed on wage_range entries")
        if errors:
            raise ValidationError(errors)

        self._check_range_set(ranges)
        entry.wage_ranges.extend(ranges)
        return entry

    def _check_range_set(self, ranges: Sequence[WageRange]) -> None:
        ordered = sorted(ranges, key=lambda r: r.min_wage)
        for index, wage_range in enumerate(ordered):
            for other in ordered[index + 1 :]:
                if wage_range.overlaps(other):
                    raise ConflictError(
                        f"Wage range {wage_range.display()} overlaps {other.display()}"
                    )
        if self.strict_ranges:
            gaps = self.find_range_gaps(ordered)
            if gaps:
                raise ValidationError(
                    [f"no wage range covers {low} to {high}" for low, high in gaps]
                )

    @staticmethod
    def find_range_gaps(ranges: Iterable[WageRange]) -> list[tuple[Decimal, Decimal]]:
        """Uncovered salary spans from zero up through the brackets, at cent granularity."""
        gaps: list[tuple[Decimal, Decimal]] = []
        ordered = sorted(ranges, key=lambda r: r.min_wage)
        if ordered and ordered[0].min_wage > ZERO:
            gaps.append((ZERO, ordered[0].min_wage - CENTS))
        for lower, upper in zip(ordered, ordered[1:]):
            if lower.max_wage is None:
                break
            expected = lower.max_wage + CENTS
            if upper.min_wage > expected:
                gaps.append((expected, upper.min_wage - CENTS))
        return gaps

    async def delete_code_family(self, code: str) -> int:
        """Delete every version of a code; wage ranges go with them."""
        entries = await self.history(code)
        for entry in entries:
            await self.session.delete(entry)
        await self.session.flush()
        if entries:
            logger.info("Deleted %d entries for deduction %s", len(entries), code)
        return len(entries)

    async def import_entries(
        self,
        rows: Iterable[Mapping[str, Any]],
        on_conflict: str = ON_CONFLICT_REJECT,
    ) -> ImportSummary:
        """Load registry rows from tabular data.

        A row that would open a second entry for a code is rejected with
        ConflictError, or with on_conflict="version" supersedes the open
        entry instead.
        """
        if on_conflict not in (ON_CONFLICT_REJECT, ON_CONFLICT_VERSION):
            raise ValueError(f"on_conflict must be 'reject' or 'version', got {on_conflict!r}")

        created = superseded = 0
        for row in rows:
            values = dict(row)
            code = values.pop("code")
            effective_from = _date(values.pop("effective_from"))
            opens = _date(values.get("effective_until")) is None

            if opens and await self.current(code) is not None:
                if on_conflict == ON_CONFLICT_REJECT:
                    raise ConflictError(f"Deduction {code} already has an open entry")
                await self.supersede(code, effective_from, **values)
                superseded += 1
                continue

            await self.create_entry(code=code, effective_from=effective_from, **values)
            created += 1

        logger.info("Imported deductions: %d created, %d superseded", created, superseded)
        return ImportSummary(created=created, superseded=superseded)
