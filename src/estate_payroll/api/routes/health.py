"""Health check endpoints."""

import logging
from datetime import date, datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from estate_payroll import __version__
from estate_payroll.api.dependencies import DbSession
from estate_payroll.registry import RateRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: datetime
    database: str


class ReadinessResponse(BaseModel):
    """Readiness: the database answers and rates are loaded for today."""

    status: str
    active_deductions: int


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DbSession) -> HealthResponse:
    """Report API version and database reachability."""
    database = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)
        database = "unhealthy"

    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        database=database,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"model": ReadinessResponse}},
)
async def readiness_check(db: DbSession):
    """Ready once the rate registry has entries in force today; 503 otherwise."""
    try:
        active = len(await RateRegistry(db).active_on(date.today()))
    except SQLAlchemyError:
        logger.warning("Readiness check failed", exc_info=True)
        active = 0

    if not active:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "active_deductions": 0},
        )
    return ReadinessResponse(status="ready", active_deductions=active)


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Process is up; no dependencies checked."""
    return {"status": "alive"}
