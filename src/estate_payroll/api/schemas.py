"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from estate_payroll.calculators.types import (
    Applicability,
    CalculationKind,
    RangeMethod,
    RoundingMethod,
)


# ============================================================================
# Deduction registry schemas
# ============================================================================


class WageRangeCreate(BaseModel):
    """Salary bracket supplied with a wage_range entry."""

    min_wage: Decimal = Field(ge=0)
    max_wage: Decimal | None = Field(default=None, ge=0)
    calculation_method: RangeMethod = RangeMethod.FIXED
    employee_amount: Decimal = Field(default=Decimal("0"), ge=0)
    employer_amount: Decimal = Field(default=Decimal("0"), ge=0)
    employee_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    employer_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class WageRangeResponse(BaseModel):
    """Schema for wage range response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    min_wage: Decimal
    max_wage: Decimal | None = None
    calculation_method: str
    employee_amount: Decimal
    employer_amount: Decimal
    employee_percentage: Decimal
    employer_percentage: Decimal


class DeductionEntryCreate(BaseModel):
    """Schema for creating a registry entry."""

    code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1)
    description: str | None = None
    calculation_kind: CalculationKind = CalculationKind.PERCENTAGE
    employee_rate: Decimal | None = None
    employer_rate: Decimal | None = None
    applies_to: Applicability = Applicability.ALL
    is_active: bool = True
    effective_from: date
    effective_until: date | None = None
    rounding_precision: int = Field(default=2, ge=0, le=4)
    rounding_method: RoundingMethod = RoundingMethod.ROUND
    wage_ranges: list[WageRangeCreate] = Field(default_factory=list)


class DeductionSupersede(BaseModel):
    """New version of a code; omitted fields carry over from the open entry."""

    effective_from: date
    name: str | None = None
    description: str | None = None
    calculation_kind: CalculationKind | None = None
    employee_rate: Decimal | None = None
    employer_rate: Decimal | None = None
    applies_to: Applicability | None = None
    rounding_precision: int | None = Field(default=None, ge=0, le=4)
    rounding_method: RoundingMethod | None = None
    wage_ranges: list[WageRangeCreate] | None = None


class DeductionClose(BaseModel):
    """Schema for closing the open entry of a code."""

    effective_until: date


class DeductionEntryResponse(BaseModel):
    """Schema for registry entry response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    description: str | None = None
    calculation_kind: str
    employee_rate: Decimal | None = None
    employer_rate: Decimal | None = None
    applies_to: str
    is_active: bool
    effective_from: date
    effective_until: date | None = None
    rounding_precision: int
    rounding_method: str
    wage_ranges: list[WageRangeResponse] = Field(default_factory=list)


# ============================================================================
# Work order schemas
# ============================================================================


class TransitionRequest(BaseModel):
    """Optional remark recorded with a transition."""

    remarks: str | None = None


class WorkOrderResponse(BaseModel):
    """Schema for work order response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    rate_type: str
    completion_date: date | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None


class TransitionResponse(BaseModel):
    """Work order state after a transition."""

    work_order: WorkOrderResponse
    message: str | None = None


class WorkOrderHistoryResponse(BaseModel):
    """Schema for one audit history row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    from_state: str
    to_state: str
    actor: str | None = None
    remarks: str | None = None
    created_at: datetime


# ============================================================================
# Pay aggregate schemas
# ============================================================================


class BreakdownEntryResponse(BaseModel):
    """One deduction line of a frozen breakdown."""

    code: str
    name: str
    calculation_kind: str
    employee_rate: Decimal | None = None
    employer_rate: Decimal | None = None
    employee_amount: Decimal
    employer_amount: Decimal
    wage_range: str | None = None


class PayDetailResponse(BaseModel):
    """Schema for a worker's monthly pay detail."""

    id: int
    worker_id: int
    gross_salary: Decimal
    employee_deductions: Decimal
    employer_deductions: Decimal
    net_salary: Decimal
    currency: str
    breakdown: list[BreakdownEntryResponse]


class PayAggregateResponse(BaseModel):
    """Schema for a month's totals and details."""

    month_year: str
    total_gross: Decimal
    total_employee_deductions: Decimal
    total_employer_deductions: Decimal
    total_net: Decimal
    details: list[PayDetailResponse]


class RecalculationResponse(BaseModel):
    """Schema for recalculation counts."""

    months: list[str]
    details_updated: int
    details_removed: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    code: str | None = None
    errors: list[str] | None = None
