# This project was developed with assistance from AI tools.
"""FastAPI application entry point."""

import logging
import uuid
from contextlib import asynccontextmanager

from db import db_service
from db.config import db_settings
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .core.config import settings
from .middleware.pii import FinancialMaskingMiddleware
from .routes import admin, audit, health, loan_applications, notifications
from .schemas.error import ErrorResponse
from .services.application import (
    ApplicationNotFoundError,
    ApplicationValidationError,
    InvalidTransitionError,
)
from .services.audit import AuditWriteError
from .services.authorization import AuthorizationError
from .services.rate_limit import RateLimitExceededError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application startup/shutdown lifecycle."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.AUTH_DISABLED:
        logger.warning("AUTH_DISABLED is set; every request runs as a super admin")
    if db_settings.is_sqlite:
        await db_service.create_all()
    yield
    await db_service.engine.dispose()


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Commercial loan portal: applications, review workflow, audit and notifications",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)

# Account/routing number masking on every JSON response unless the route opted out
app.add_middleware(FinancialMaskingMiddleware)

_HTTP_STATUS_TITLES: dict[int, str] = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id", str(uuid.uuid4()))


def _build_error(status_code: int, detail: str, request_id: str, **extra) -> ErrorResponse:
    return ErrorResponse(
        type="about:blank",
        title=_HTTP_STATUS_TITLES.get(status_code, "Error"),
        status=status_code,
        detail=detail,
        request_id=request_id,
        **extra,
    )


def _problem(body: ErrorResponse, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=body.status,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Convert HTTPException to RFC 7807 Problem Details."""
    body = _build_error(exc.status_code, str(exc.detail), _request_id(request))
    return _problem(body, getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert Pydantic validation errors to RFC 7807 Problem Details."""
    body = _build_error(422, str(exc.errors()), _request_id(request))
    return _problem(body)


@app.exception_handler(ApplicationValidationError)
async def application_validation_handler(request: Request, exc: ApplicationValidationError):
    """Business-rule failures: 400 with every message, not logged as a security event."""
    body = _build_error(400, "Application validation failed", _request_id(request), errors=exc.errors)
    return _problem(body)


@app.exception_handler(AuthorizationError)
async def authorization_handler(request: Request, exc: AuthorizationError):
    """The denial is already on the security log; the caller gets a generic 403."""
    body = _build_error(403, "Insufficient permissions", _request_id(request))
    return _problem(body)


@app.exception_handler(ApplicationNotFoundError)
async def not_found_handler(request: Request, exc: ApplicationNotFoundError):
    body = _build_error(404, "Application not found", _request_id(request))
    return _problem(body)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    body = _build_error(409, str(exc), _request_id(request))
    return _problem(body)


@app.exception_handler(RateLimitExceededError)
async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
    """429 with Retry-After and the window's X-RateLimit-* headers."""
    retry_after = exc.result.retry_after()
    headers = {**exc.result.headers(), "Retry-After": str(retry_after)}
    body = _build_error(429, "Rate limit exceeded", _request_id(request), retry_after=retry_after)
    return _problem(body, headers)


@app.exception_handler(AuditWriteError)
async def audit_write_handler(request: Request, exc: AuditWriteError):
    request_id = _request_id(request)
    logger.error("Audit write failed (request_id=%s): %s", request_id, exc.__cause__ or exc)
    body = _build_error(500, "An unexpected error occurred.", request_id)
    return _problem(body)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all for unhandled exceptions -- log and return 500."""
    request_id = _request_id(request)
    logger.exception("Unhandled exception (request_id=%s)", request_id)
    body = _build_error(500, "An unexpected error occurred.", request_id)
    return _problem(body)


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(loan_applications.router, prefix="/api/loan-applications", tags=["applications"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])
app.include_router(audit.router, prefix="/api/audit", tags=["audit"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": f"Welcome to the {settings.APP_NAME} API"}
