"""Deduction registry endpoints."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from estate_payroll.api.dependencies import DbSession
from estate_payroll.api.schemas import (
    DeductionClose,
    DeductionEntryCreate,
    DeductionEntryResponse,
    DeductionSupersede,
    ErrorResponse,
)
from estate_payroll.calculators.types import NationalityClass
from estate_payroll.registry import RateRegistry

router = APIRouter(prefix="/deductions", tags=["deductions"])

Code = Annotated[str, Path(min_length=1, max_length=32)]


@router.get("", response_model=list[DeductionEntryResponse])
async def list_active_deductions(
    db: DbSession,
    as_of: Annotated[date | None, Query()] = None,
    nationality: Annotated[NationalityClass | None, Query()] = None,
) -> list[DeductionEntryResponse]:
    """Entries in force on a date, optionally for one nationality class."""
    registry = RateRegistry(db)
    as_of = as_of or date.today()
    if nationality is None:
        entries = await registry.active_on(as_of)
    else:
        entries = await registry.applicable_on(as_of, nationality)
    return [DeductionEntryResponse.model_validate(entry) for entry in entries]


@router.get("/{code}/history", response_model=list[DeductionEntryResponse])
async def deduction_history(db: DbSession, code: Code) -> list[DeductionEntryResponse]:
    """Every version of a code, oldest first."""
    entries = await RateRegistry(db).history(code)
    return [DeductionEntryResponse.model_validate(entry) for entry in entries]


@router.post(
    "",
    response_model=DeductionEntryResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_deduction(
    db: DbSession, payload: DeductionEntryCreate
) -> DeductionEntryResponse:
    """Create a registry entry."""
    values = payload.model_dump(exclude={"wage_ranges"})
    entry = await RateRegistry(db).create_entry(
        **values,
        wage_ranges=[wage_range.model_dump() for wage_range in payload.wage_ranges],
    )
    await db.commit()
    return DeductionEntryResponse.model_validate(entry)


@router.post(
    "/{code}/supersede",
    response_model=DeductionEntryResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def supersede_deduction(
    db: DbSession, code: Code, payload: DeductionSupersede
) -> DeductionEntryResponse:
    """Close the open entry and open a new version from effective_from."""
    changes = payload.model_dump(exclude_unset=True, exclude={"effective_from", "wage_ranges"})
    wage_ranges = None
    if payload.wage_ranges is not None:
        wage_ranges = [wage_range.model_dump() for wage_range in payload.wage_ranges]
    entry = await RateRegistry(db).supersede(
        code, payload.effective_from, wage_ranges=wage_ranges, **changes
    )
    await db.commit()
    return DeductionEntryResponse.model_validate(entry)


@router.post(
    "/{code}/close",
    response_model=DeductionEntryResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def close_deduction(
    db: DbSession, code: Code, payload: DeductionClose
) -> DeductionEntryResponse:
    """Close the open entry of a code."""
    entry = await RateRegistry(db).close_entry(code, payload.effective_until)
    await db.commit()
    return DeductionEntryResponse.model_validate(entry)
