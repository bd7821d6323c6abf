from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InsufficientBalanceError(AppError):
    def __init__(self, message: str = "Insufficient balance", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="INSUFFICIENT_BALANCE",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class WalletUnavailableError(AppError):
    """Wallet is frozen or closed."""

    def __init__(self, message: str = "Wallet is not active", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="WALLET_UNAVAILABLE",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


def _body(request: Request, message: str, code: str, details: dict[str, Any]) -> dict[str, Any]:
    body = {"error": message, "code": code, "details": details}
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return body


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=exc.status_code,
        content=_body(request, exc.message, exc.code, exc.details),
    )


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    errors = jsonable_encoder(exc.errors(), custom_encoder={Exception: str})
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_body(request, "Validation error", "VALIDATION_ERROR", {"errors": errors}),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from marketplace.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_body(request, "Internal server error", "INTERNAL_ERROR", {}),
    )
