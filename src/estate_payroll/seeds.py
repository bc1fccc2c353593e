"""Default statutory deduction rates.

Illustrative Malaysian schemes (EPF, SOCSO, SIP); confirm current
gazetted rates before using them for a real payroll.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from estate_payroll.registry import ImportSummary, RateRegistry

logger = logging.getLogger(__name__)

DEFAULT_EFFECTIVE_FROM = date(2025, 1, 1)

SOCSO_RANGES: list[dict[str, Any]] = [
    {"min_wage": "0.00", "max_wage": "3300.00", "employee_amount": "16.25", "employer_amount": "56.85"},
    {"min_wage": "3300.01", "max_wage": "3400.00", "employee_amount": "16.75", "employer_amount": "58.65"},
    {"min_wage": "3400.01", "max_wage": "3500.00", "employee_amount": "17.25", "employer_amount": "60.35"},
    {"min_wage": "3500.01", "max_wage": "3600.00", "employee_amount": "17.75", "employer_amount": "62.15"},
    {"min_wage": "3600.01", "max_wage": None, "employee_amount": "29.75", "employer_amount": "104.15"},
]


def default_rate_rows(effective_from: date = DEFAULT_EFFECTIVE_FROM) -> list[dict[str, Any]]:
    """Registry rows for the standard schemes, opening on effective_from."""
    return [
        {
            "code": "EPF",
            "name": "EPF",
            "description": "Employees Provident Fund - retirement savings",
            "calculation_kind": "percentage",
            "employee_rate": "11",
            "employer_rate": "13",
            "applies_to": "local",
            "effective_from": effective_from,
            "rounding_precision": 0,
            "rounding_method": "ceil",
        },
        {
            "code": "SOCSO",
            "name": "SOCSO",
            "description": "Social Security Organization - social protection",
            "calculation_kind": "wage_range",
            "applies_to": "all",
            "effective_from": effective_from,
            "wage_ranges": SOCSO_RANGES,
        },
        {
            "code": "SIP",
            "name": "SIP",
            "description": "Employment Insurance System",
            "calculation_kind": "percentage",
            "employee_rate": "0.2",
            "employer_rate": "0.2",
            "applies_to": "local",
            "effective_from": effective_from,
        },
    ]


async def seed_rates(
    session: AsyncSession, effective_from: date = DEFAULT_EFFECTIVE_FROM
) -> ImportSummary:
    """Create the default schemes, skipping codes that already exist."""
    registry = RateRegistry(session)
    rows = []
    for row in default_rate_rows(effective_from):
        if await registry.history(row["code"]):
            logger.info("Deduction %s already seeded, skipping", row["code"])
            continue
        rows.append(row)
    return await registry.import_entries(rows)
