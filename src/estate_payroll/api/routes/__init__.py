"""API routes."""

from estate_payroll.api.routes.deductions import router as deductions_router
from estate_payroll.api.routes.health import router as health_router
from estate_payroll.api.routes.pay_aggregates import router as pay_aggregates_router
from estate_payroll.api.routes.work_orders import router as work_orders_router

__all__ = [
    "deductions_router",
    "health_router",
    "pay_aggregates_router",
    "work_orders_router",
]
