"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from benefit_ledger import __version__
from benefit_ledger.api.routes import balances_router, health_router
from benefit_ledger.config import configure_logging
from benefit_ledger.database import dispose_db, init_db
from benefit_ledger.services.errors import (
    ConcurrencyConflict,
    NoBudgetsError,
    NoEmployeesError,
    NotFoundError,
    OverdraftExceededError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging()
    init_db()
    yield
    # Shutdown
    await dispose_db()


def _error(status_code: int, detail: str, code: str, context: dict | None = None) -> JSONResponse:
    content = {"detail": detail, "code": code}
    if context is not None:
        content["context"] = context
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """Map ledger errors onto HTTP responses."""

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(
            status.HTTP_404_NOT_FOUND,
            str(exc),
            "NOT_FOUND",
            {"entity": exc.entity},
        )

    @app.exception_handler(NoBudgetsError)
    async def no_budgets_handler(request: Request, exc: NoBudgetsError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc), "NO_BUDGETS", {"year": exc.year})

    @app.exception_handler(NoEmployeesError)
    async def no_employees_handler(request: Request, exc: NoEmployeesError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc), "NO_EMPLOYEES")

    @app.exception_handler(OverdraftExceededError)
    async def overdraft_handler(request: Request, exc: OverdraftExceededError) -> JSONResponse:
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            str(exc),
            "OVERDRAFT_EXCEEDED",
            {
                "balance_before": str(exc.balance_before),
                "balance_after": str(exc.balance_after),
                "overdraft_limit": str(exc.overdraft_limit),
                "shortage": str(exc.shortage),
            },
        )

    @app.exception_handler(ConcurrencyConflict)
    async def conflict_handler(request: Request, exc: ConcurrencyConflict) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc), "CONCURRENCY_CONFLICT")

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), "INVALID_REQUEST")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred",
            "INTERNAL_ERROR",
        )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Benefit Ledger API",
        description="Employee benefit balance ledger - admin API",
        version=__version__,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(health_router)
    app.include_router(balances_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
