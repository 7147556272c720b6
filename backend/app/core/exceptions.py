"""Application error hierarchy and problem-body rendering.

Every user-facing failure is an AppError subclass carrying an HTTP status
and a problem type slug. Handlers registered on the FastAPI app render them
as problem bodies:

    {"type": ".../problems/not-found", "title": "...", "status": 404,
     "detail": "...", "instance": "/api/v1/..."}
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.logging import log_error

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors rendered as problem bodies."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    problem_type: str = "internal-error"
    title: str = "Internal Server Error"

    def __init__(self, detail: str, title: Optional[str] = None, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        if title is not None:
            self.title = title
        self.extra = extra


class ValidationError(AppError):
    """Malformed or missing input."""

    status_code = status.HTTP_400_BAD_REQUEST
    problem_type = "validation-error"
    title = "Validation Error"


class AuthenticationError(AppError):
    """Missing or invalid credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    problem_type = "unauthorized"
    title = "Unauthorized"


class AuthorizationError(AppError):
    """Authenticated caller is not allowed to perform the action."""

    status_code = status.HTTP_403_FORBIDDEN
    problem_type = "forbidden"
    title = "Forbidden"


class NotFoundError(AppError):
    """Unknown gateway, payment, or order."""

    status_code = status.HTTP_404_NOT_FOUND
    problem_type = "not-found"
    title = "Not Found"


class ConflictError(AppError):
    """Duplicate resource or resource still in use."""

    status_code = status.HTTP_409_CONFLICT
    problem_type = "conflict"
    title = "Conflict"


class PaymentError(AppError):
    """Payment operation rejected because of the payment's state."""

    status_code = status.HTTP_400_BAD_REQUEST
    problem_type = "payment-error"
    title = "Payment Error"


class UnsupportedOperationError(PaymentError):
    """Capability absent on the resolved gateway adapter."""

    title = "Unsupported Operation"


class GatewayError(PaymentError):
    """Upstream provider rejected the call."""

    title = "Gateway Error"

    def __init__(
        self,
        detail: str,
        error_code: Optional[str] = None,
        title: Optional[str] = None,
    ):
        super().__init__(detail, title=title, error_code=error_code)
        self.error_code = error_code


class ConfigurationError(AppError):
    """Invalid provider configuration, raised at adapter construction."""

    problem_type = "configuration-error"
    title = "Configuration Error"


class DecryptionError(AppError):
    """Corrupt or tampered secret envelope."""

    title = "Decryption Error"


def problem_body(
    request: Request,
    status_code: int,
    problem_type: str,
    title: str,
    detail: str,
    **extra: Any,
) -> dict[str, Any]:
    """Build a problem body for a failed request."""
    body = {
        "type": f"{settings.PROBLEM_TYPE_BASE_URL}/{problem_type}",
        "title": title,
        "status": status_code,
        "detail": detail,
        "instance": request.url.path,
    }
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        log_error(logger, exc.detail, exc, path=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=problem_body(
            request,
            exc.status_code,
            exc.problem_type,
            exc.title,
            exc.detail,
            **exc.extra,
        ),
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    detail = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in errors
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=problem_body(
            request,
            status.HTTP_400_BAD_REQUEST,
            ValidationError.problem_type,
            ValidationError.title,
            detail or "Invalid request",
        ),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_error(logger, "Unhandled error", exc, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=problem_body(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "internal-error",
            "Internal Server Error",
            "An unexpected error occurred",
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install problem-body handlers on the application."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
