"""Monthly pay aggregate endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path

from estate_payroll.api.dependencies import DbSession
from estate_payroll.api.schemas import (
    BreakdownEntryResponse,
    ErrorResponse,
    PayAggregateResponse,
    PayDetailResponse,
    RecalculationResponse,
)
from estate_payroll.errors import NotFoundError
from estate_payroll.models import PayDetail
from estate_payroll.services.pay_aggregate_service import PayAggregateService
from estate_payroll.services.recalculation_service import RecalculationService

router = APIRouter(prefix="/pay-aggregates", tags=["pay-aggregates"])

MonthKey = Annotated[str, Path(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")]


def _detail_response(detail: PayDetail) -> PayDetailResponse:
    return PayDetailResponse(
        id=detail.id,
        worker_id=detail.worker_id,
        gross_salary=detail.gross_salary,
        employee_deductions=detail.employee_deductions,
        employer_deductions=detail.employer_deductions,
        net_salary=detail.net_salary,
        currency=detail.currency,
        breakdown=[
            BreakdownEntryResponse(
                code=entry.code,
                name=entry.name,
                calculation_kind=entry.calculation_kind.value,
                employee_rate=entry.employee_rate,
                employer_rate=entry.employer_rate,
                employee_amount=entry.employee_amount,
                employer_amount=entry.employer_amount,
                wage_range=entry.wage_range,
            )
            for entry in detail.breakdown
        ],
    )


@router.get(
    "/{month}",
    response_model=PayAggregateResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_pay_aggregate(db: DbSession, month: MonthKey) -> PayAggregateResponse:
    """Totals and per-worker details for a month."""
    service = PayAggregateService(db)
    aggregate = await service.get_for_month(month)
    if aggregate is None:
        raise NotFoundError(f"No pay aggregate for {month}")

    details = await service.details_for(aggregate)
    return PayAggregateResponse(
        month_year=aggregate.month_year,
        total_gross=aggregate.total_gross,
        total_employee_deductions=aggregate.total_employee_deductions,
        total_employer_deductions=aggregate.total_employer_deductions,
        total_net=aggregate.total_net,
        details=[_detail_response(detail) for detail in details],
    )


@router.post("/{month}/recalculate", response_model=RecalculationResponse)
async def recalculate_month(
    db: DbSession, month: MonthKey, refresh_gross: bool = True
) -> RecalculationResponse:
    """Recalculate a month's details against the rates of that month."""
    summary = await RecalculationService(db).recalculate_month(month, refresh_gross=refresh_gross)
    await db.commit()
    return RecalculationResponse(
        months=summary.months,
        details_updated=summary.details_updated,
        details_removed=summary.details_removed,
    )
