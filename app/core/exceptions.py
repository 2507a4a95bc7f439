"""Custom exceptions and centralized exception handlers."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class AppException(Exception):
    """Base application exception with structured error response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.status_code = status_code or self.status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to RFC 7807 problem+json style response."""
        return {
            "error": self.error_code,
            "message": self.message,
            "status": self.status_code,
            **({"details": self.details} if self.details else {}),
        }


class NotFoundError(AppException):
    """Resource not found."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    message = "Resource not found"


class BadRequestError(AppException):
    """Bad request."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "BAD_REQUEST"
    message = "Bad request"


class AuthorizationError(AppException):
    """Authorization failed."""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = "FORBIDDEN"
    message = "You don't have permission to access this resource"


# =============================================================================
# Market data taxonomy
# =============================================================================


class ProviderError(AppException):
    """An upstream data provider could not satisfy a request."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "PROVIDER_ERROR"
    message = "Market data provider error"

    def __init__(self, provider: str, message: str | None = None, **kwargs: Any):
        self.provider = provider
        super().__init__(message, **kwargs)


class ProviderUnavailable(ProviderError):
    """Network, auth or HTTP failure talking to a provider."""

    error_code = "PROVIDER_UNAVAILABLE"
    message = "Market data provider unavailable"


class ProviderRestricted(ProviderError):
    """Provider answered with an entitlement-limited (zero valued) payload."""

    error_code = "PROVIDER_RESTRICTED"
    message = "Market data provider restricted for this symbol"


class SymbolNotFound(NotFoundError):
    """No provider and no cached row has ever resolved the symbol."""

    error_code = "SYMBOL_NOT_FOUND"
    message = "Symbol not found"

    def __init__(self, symbol: str, message: str | None = None):
        self.symbol = symbol
        super().__init__(
            message or f"Symbol '{symbol}' could not be resolved",
            details={"symbol": symbol},
        )


class PersistenceFailure(AppException):
    """Store write failed after a successful fetch."""

    error_code = "PERSISTENCE_FAILURE"
    message = "Failed to persist market data"


class InsufficientHistoryCoverage(AppException):
    """Stored history does not cover the requested range. Never surfaced."""

    error_code = "INSUFFICIENT_HISTORY"
    message = "Insufficient history coverage"

    def __init__(self, symbol: str, coverage: float):
        self.symbol = symbol
        self.coverage = coverage
        super().__init__(
            f"History coverage for {symbol} is {coverage:.0%}",
            details={"symbol": symbol, "coverage": coverage},
        )


def register_exception_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers={"X-Request-ID": getattr(request.state, "request_id", "unknown")},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger = logging.getLogger("marketlens.error")
        logger.exception(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

        from .config import settings

        if settings.debug:
            message = str(exc)
        else:
            message = "An unexpected error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_ERROR",
                "message": message,
                "status": 500,
            },
            headers={"X-Request-ID": getattr(request.state, "request_id", "unknown")},
        )
