"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bookkeeping_engine import __version__
from bookkeeping_engine.api.routes import (
    accounts_router,
    health_router,
    ledger_router,
    outbox_router,
    payruns_router,
    posting_rules_router,
)
from bookkeeping_engine.database import dispose_db, init_db
from bookkeeping_engine.errors import (
    ApprovalGateError,
    BookkeepingError,
    ConcurrentModificationError,
    ConfigurationError,
    ConflictError,
    InvalidTransitionError,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from bookkeeping_engine.outbox.service import json_safe

logger = logging.getLogger(__name__)

# Most specific first: NotFoundError is also a ValidationError
ERROR_STATUS: list[tuple[type[BookkeepingError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InvariantViolation, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConfigurationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ApprovalGateError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
]


def status_for(exc: BookkeepingError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    init_db()
    yield
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Bookkeeping Engine API",
        description="Swiss bookkeeping and payroll core: ledger, posting rules, outbox, payruns",
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

    @app.exception_handler(BookkeepingError)
    async def bookkeeping_exception_handler(
        request: Request, exc: BookkeepingError
    ) -> JSONResponse:
        """Map engine errors to HTTP responses with a machine-readable code."""
        code = status_for(exc)
        if code >= 500:
            logger.error("Unmapped engine error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=code,
            content={
                "detail": str(exc),
                "code": type(exc).__name__,
                "context": json_safe(vars(exc)) or None,
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(accounts_router, prefix="/api/v1")
    app.include_router(ledger_router, prefix="/api/v1")
    app.include_router(posting_rules_router, prefix="/api/v1")
    app.include_router(outbox_router, prefix="/api/v1")
    app.include_router(payruns_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
