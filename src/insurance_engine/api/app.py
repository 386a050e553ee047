"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from insurance_engine import __version__
from insurance_engine.api.routes import applications_router, health_router, rate_tables_router
from insurance_engine.calculators import (
    ConflictDecisionRequired,
    RateNotFoundError,
    RateTableValidationError,
)
from insurance_engine.database import dispose_db, init_db
from insurance_engine.services import (
    GuardViolation,
    InvalidRequestError,
    PayloadError,
    ReflectionError,
)
from insurance_engine.stores import PersistenceError, RecordNotFoundError, StaleStateError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    init_db()
    yield
    await dispose_db()


def _error(status_code: int, exc: Exception, code: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": code, **extra},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors to HTTP responses."""

    @app.exception_handler(GuardViolation)
    async def guard_violation_handler(request: Request, exc: GuardViolation) -> JSONResponse:
        return _error(
            status.HTTP_409_CONFLICT,
            exc,
            "GUARD_VIOLATION",
            from_status=exc.from_status,
            action=exc.action,
        )

    @app.exception_handler(StaleStateError)
    async def stale_state_handler(request: Request, exc: StaleStateError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, "STALE_STATE")

    @app.exception_handler(ConflictDecisionRequired)
    async def conflict_handler(request: Request, exc: ConflictDecisionRequired) -> JSONResponse:
        return _error(
            status.HTTP_409_CONFLICT,
            exc,
            "CONFLICT_DECISION_REQUIRED",
            conflict=exc.to_dict(),
        )

    @app.exception_handler(RecordNotFoundError)
    async def not_found_handler(request: Request, exc: RecordNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, exc, "NOT_FOUND")

    @app.exception_handler(RateNotFoundError)
    async def rate_not_found_handler(request: Request, exc: RateNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, exc, "RATE_NOT_FOUND")

    @app.exception_handler(PayloadError)
    @app.exception_handler(InvalidRequestError)
    @app.exception_handler(RateTableValidationError)
    @app.exception_handler(ReflectionError)
    async def validation_handler(request: Request, exc: Exception) -> JSONResponse:
        return _error(422, exc, "VALIDATION_ERROR")

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc, "PERSISTENCE_ERROR")

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


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Insurance Engine API",
        description="Employee insurance application lifecycle and rate tables",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(health_router)
    app.include_router(applications_router, prefix="/api/v1")
    app.include_router(rate_tables_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
