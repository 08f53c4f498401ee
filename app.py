"""
Viotraix FastAPI Application

Entry point for Viotraix, an AI workplace safety audit service: users upload
photos of a workplace, a vision model reports OSHA-style violations, and Pro
users export the findings as a PDF report.

Example usage:
    # Start the server
    uvicorn app:app --host 0.0.0.0 --port 8000 --reload

    # Health check
    curl http://localhost:8000/health
"""

import os
from contextlib import asynccontextmanager
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from api.routes.audits import router as audits_router
from api.routes.auth import router as auth_router
from api.routes.cron import router as cron_router
from api.routes.dashboard import router as dashboard_router
from api.routes.pay import router as payment_router
from auth import AuthMiddleware
from core.db import close_db, init_db
from core.errors import register_exception_handlers
from core.logging import RequestLoggingMiddleware, get_logger, setup_logging
from core.ratelimit import limiter

APP_VERSION = "0.1.0"

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
DEFAULT_CORS_ORIGINS = "https://viotraix.com,https://www.viotraix.com,http://localhost:3000"
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",") if o.strip()]

logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to every response.

    The API serves JSON and PDFs only, so the content security policy
    forbids everything.

    Example:
        app.add_middleware(SecurityHeadersMiddleware)
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if os.environ.get("ENVIRONMENT", "development").lower() == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), camera=(), microphone=()"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(level=LOG_LEVEL, format_type=LOG_FORMAT)
    logger.info("Starting Viotraix application")

    if os.environ.get("AUTO_CREATE_TABLES", "").lower() in ("1", "true", "yes"):
        await init_db()
        logger.info("Database tables ensured")

    yield

    logger.info("Shutting down Viotraix application")
    await close_db()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    Returns:
        FastAPI: Configured application instance

    Example:
        >>> app = create_app()
        >>> # App is ready to use with uvicorn
    """
    tags_metadata = [
        {"name": "audits", "description": "Photo upload, analysis and audit management"},
        {"name": "dashboard", "description": "Usage and statistics for the dashboard"},
        {"name": "billing", "description": "Checkout creation and Lemon Squeezy webhooks"},
        {"name": "auth", "description": "Session cookies and profile bootstrap"},
        {"name": "cron", "description": "Scheduled jobs"},
        {"name": "health", "description": "System health and status endpoints"},
    ]

    app = FastAPI(
        title="Viotraix",
        description="AI workplace safety audits from photos",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )

    # Middleware added last runs first: auth must see the request id
    app.add_middleware(SecurityHeadersMiddleware)

    # With credentials, browsers require explicit origins (not *)
    allow_origins = CORS_ORIGINS if CORS_ORIGINS != ["*"] else ["https://viotraix.com"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        max_age=3600,
    )

    app.add_middleware(AuthMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_exception_handlers(app)

    app.include_router(audits_router)
    app.include_router(dashboard_router)
    app.include_router(payment_router)
    app.include_router(auth_router)
    app.include_router(cron_router)

    @app.get("/health", tags=["health"])
    async def health_check() -> JSONResponse:
        """
        Health check endpoint for monitoring and load balancer readiness.

        Example:
            >>> # GET /health
            >>> {"status": "healthy", "service": "viotraix", "version": "0.1.0"}
        """
        health_data: Dict[str, Any] = {
            "status": "healthy",
            "service": "viotraix",
            "version": APP_VERSION,
        }
        return JSONResponse(content=health_data, status_code=200)

    return app


app = create_app()


if __name__ == "__main__":
    """
    Development server entry point.
    Run with: python app.py
    """
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=True,
        log_level="info",
    )
