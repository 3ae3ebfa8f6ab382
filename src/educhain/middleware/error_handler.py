"""Global error handlers: domain errors and HTTP errors as consistent JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from educhain.errors import (
    InsufficientStakeError,
    InvalidInputError,
    MarketplaceError,
    MintingFailure,
    NotAuthorizedError,
    NotFoundError,
    SettlementFailure,
)

logger = structlog.get_logger()

# Anything not listed is a conflict with current state.
STATUS_BY_ERROR: dict[type[MarketplaceError], int] = {
    NotFoundError: 404,
    NotAuthorizedError: 403,
    InvalidInputError: 422,
    InsufficientStakeError: 402,
    SettlementFailure: 503,
    MintingFailure: 503,
}
CONFLICT_STATUS = 409


def status_for(exc: MarketplaceError) -> int:
    for error_type, status in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status
    return CONFLICT_STATUS


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
        status = status_for(exc)
        log = logger.warning if status >= 500 else logger.info
        log("marketplace_error", path=request.url.path, error=exc.kind, detail=exc.message)
        return JSONResponse(
            status_code=status,
            content={"detail": exc.message, "error": exc.kind},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation error",
                "error": InvalidInputError.kind,
                "errors": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: always return JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
