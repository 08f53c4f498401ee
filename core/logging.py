"""
Structured JSON logging for the Viotraix API.

Every record is emitted as a single JSON object on stdout so the hosting
platform's log drain can index fields such as ``request_id``, ``audit_id``
and ``user_id`` without parsing free text.

Example usage:
    >>> from core.logging import get_logger, setup_logging
    >>> setup_logging()
    >>> logger = get_logger(__name__)
    >>> logger.info("Audit queued", extra={"audit_id": "3f2c..."})
"""

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "exc_info", "exc_text",
    "stack_info", "taskName", "message",
})


class JSONFormatter(logging.Formatter):
    """
    Render log records as one-line JSON documents.

    The fixed keys are ``time``, ``level``, ``logger`` and ``msg``. Values
    passed through ``extra=`` are merged in at the top level; values that
    json cannot encode are stringified.

    Example:
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(JSONFormatter())
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log each HTTP request with its outcome and latency.

    A short request id is generated per request, stored on
    ``request.state.request_id`` for handlers and echoed back in the
    ``X-Request-ID`` response header.
    """

    def __init__(self, app, logger_name: str = "viotraix.requests"):
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        client_ip = self._get_client_ip(request)
        started = time.perf_counter()

        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": client_ip,
        }
        self.logger.info(f"Request started: {request.method} {request.url.path}", extra=context)

        try:
            response = await call_next(request)
        except Exception as exc:
            self.logger.error(
                f"Request failed: {request.method} {request.url.path}",
                extra={
                    **context,
                    "status": 500,
                    "duration_ms": int((time.perf_counter() - started) * 1000),
                    "error": str(exc),
                },
                exc_info=True,
            )
            raise

        self.logger.info(
            f"Request completed: {request.method} {request.url.path}",
            extra={
                **context,
                "status": response.status_code,
                "duration_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        response.headers["X-Request-ID"] = request_id
        return response

    def _get_client_ip(self, request: Request) -> str:
        """Best-effort client address, honouring proxy headers."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

        if request.client:
            return request.client.host
        return "unknown"


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    logger_name: Optional[str] = None,
) -> None:
    """
    Install a stdout handler on the root logger (or ``logger_name``).

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: ``"json"`` for structured output, anything else for
            a human-readable line format
        logger_name: Logger to configure; ``None`` configures the root logger

    Example:
        >>> setup_logging(level="DEBUG", format_type="text")
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if format_type.lower() == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(numeric_level)

    logger = logging.getLogger(logger_name) if logger_name else logging.getLogger()
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(numeric_level)
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name`` (normally the calling module's ``__name__``)."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    request: Optional[Request] = None,
    **kwargs,
) -> None:
    """
    Log ``message`` with the request id, path and method of ``request`` attached.

    Example:
        >>> log_with_context(logger, "info", "Upload accepted", request=request, audit_id=str(audit.id))
    """
    extra_fields = dict(kwargs)

    if request is not None:
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            extra_fields["request_id"] = request_id
        extra_fields["path"] = request.url.path
        extra_fields["method"] = request.method
        user = getattr(request.state, "user", None)
        if user is not None:
            extra_fields["user_id"] = str(user.id)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(message, extra=extra_fields)
