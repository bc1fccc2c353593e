"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from estate_payroll import __version__
from estate_payroll.api.routes import (
    deductions_router,
    health_router,
    pay_aggregates_router,
    work_orders_router,
)
from estate_payroll.config import configure_logging
from estate_payroll.database import init_db
from estate_payroll.errors import (
    ConflictError,
    ImmutableRecordError,
    NotFoundError,
    ValidationError,
)
from estate_payroll.services.state_machine import InvalidTransitionError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    configure_logging()
    engine, _ = init_db()
    yield
    await engine.dispose()


def _error(status_code: int, exc: Exception, code: str) -> JSONResponse:
    content: dict[str, object] = {"detail": str(exc), "code": code}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=status_code, content=content)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Estate Payroll Engine API",
        description="Plantation payroll deductions and work order approval",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, "CONFLICT")

    @app.exception_handler(ImmutableRecordError)
    async def immutable_handler(request: Request, exc: ImmutableRecordError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, "IMMUTABLE_RECORD")

    @app.exception_handler(InvalidTransitionError)
    async def transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, "INVALID_TRANSITION")

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc, "VALIDATION_ERROR")

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, exc, "NOT_FOUND")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(deductions_router, prefix="/api/v1")
    app.include_router(work_orders_router, prefix="/api/v1")
    app.include_router(pay_aggregates_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
