"""Centralized error types and JSON error responses."""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.logging import get_logger, log_with_context

logger = get_logger(__name__)

GENERIC_SERVER_ERROR = "Internal server error"


class ViotraixError(Exception):
    """
    Base class for errors that map onto an HTTP response.

    ``message`` is what the client sees. Anything sensitive belongs in the
    log record, not here.
    """

    status_code: int = 500
    default_message: str = GENERIC_SERVER_ERROR

    def __init__(self, message: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        self.headers = headers
        super().__init__(self.message)


class InvalidRequestError(ViotraixError):
    """Rejected request input: bad file type or size, missing fields."""

    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(ViotraixError):
    status_code = 401
    default_message = "Unauthorized"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class PermissionDeniedError(ViotraixError):
    """Authenticated but not entitled, e.g. plan limits or Pro-only features."""

    status_code = 403
    default_message = "Forbidden"


class AuditNotFoundError(ViotraixError):
    # Same answer for "absent" and "owned by someone else"
    status_code = 404
    default_message = "Audit not found"


class AuditConflictError(ViotraixError):
    status_code = 409
    default_message = "Audit is still being processed"


class AnalysisError(ViotraixError):
    """The vision call failed or returned something that is not an AuditResult."""

    status_code = 500
    default_message = "Analysis failed"


class PaymentProviderError(ViotraixError):
    status_code = 500
    default_message = "Failed to create checkout"


class PaymentConfigurationError(ViotraixError):
    status_code = 500
    default_message = "Payment configuration missing"


class WebhookSignatureError(ViotraixError):
    status_code = 401
    default_message = "Invalid signature"


def error_response(message: str, status_code: int, headers: Optional[Dict[str, str]] = None,
                   **extra: Any) -> JSONResponse:
    """Create the standard ``{"error": ...}`` body used by every endpoint."""
    content: Dict[str, Any] = {"error": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def viotraix_error_handler(request: Request, exc: ViotraixError) -> JSONResponse:
    level = "error" if exc.status_code >= 500 else "info"
    log_with_context(
        logger, level, f"{type(exc).__name__}: {exc.message}",
        request=request, status=exc.status_code,
    )
    return error_response(exc.message, exc.status_code, headers=exc.headers)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(detail, exc.status_code, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    return error_response("Invalid request", 400, fields=fields)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled error: {exc!r}",
        extra={"path": request.url.path, "request_id": getattr(request.state, "request_id", None)},
        exc_info=exc,
    )
    return error_response(GENERIC_SERVER_ERROR, 500)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ViotraixError, viotraix_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
