"""
TRUSTGATE REST API - Main Application.

Usage:
    uvicorn trustgate.api.main:app --host 0.0.0.0 --port 8000
"""
import os
import time
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from .routes import auth_router, two_factor_router, devices_router, account_router, health_router
from ..auth.errors import TwoFactorError, TooManyAttempts
from ..auth.gate import DEVICE_HEADERS

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
)


class RequestIdFilter(logging.Filter):
    """Add request_id to log records that were not logged from a request."""
    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = '-'
        return True


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format=LOG_FORMAT,
)
# On the handlers, so records from every logger get a request_id
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

API_TITLE = "TRUSTGATE API"
API_DESCRIPTION = """
**Two-Factor Authentication and Device Trust**

1. Register or log in: `POST /auth/register`, `POST /auth/login`
2. Send `Authorization: Bearer <token>` on every other call
3. If the login reports `requires_2fa`, verify with `POST /2fa/verify`

Send `X-Device-Fingerprint` (and optionally `X-Device-Name`, `X-Device-Type`,
`X-Device-OS`, `X-Device-Browser`) so trusted devices can be recognised.
"""
API_VERSION = os.getenv("APP_VERSION", "0.1.0")

# Responses carry codes, secrets and tokens: never cache them
SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

CORS_HEADERS = ["Authorization", "Content-Type", "X-Request-ID", *DEVICE_HEADERS]


def _denial_headers(exc: TwoFactorError) -> Optional[Dict[str, str]]:
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        return {"WWW-Authenticate": "Bearer"}
    if isinstance(exc, TooManyAttempts):
        return {"Retry-After": str(exc.retry_after)}
    return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the schema on startup."""
    logger.info(f"Starting TRUSTGATE API v{API_VERSION}")

    try:
        from ..database.auth_db import get_auth_db
        get_auth_db().init_schema()
    except Exception as e:
        logger.warning(f"Database initialization skipped: {e}")

    yield

    logger.info("Shutting down TRUSTGATE API")


def create_app() -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=CORS_HEADERS,
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    @app.middleware("http")
    async def track_request(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        start_time = time.time()

        response = await call_next(request)

        process_time = (time.time() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = f"{process_time:.2f}"
        response.headers.update(SECURITY_HEADERS)

        if not request.url.path.startswith("/health"):
            logger.info(
                f"{request.method} {request.url.path} "
                f"-> {response.status_code} ({process_time:.1f}ms)",
                extra={"request_id": request_id},
            )
        return response

    @app.exception_handler(TwoFactorError)
    async def two_factor_exception_handler(request: Request, exc: TwoFactorError):
        if exc.status_code >= 500:
            # Cause already logged at the stage boundary
            logger.error(f"{exc.code} on {request.url.path}")
        else:
            logger.info(f"Denied {request.url.path}: {exc.code}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=_denial_headers(exc),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            f"{' -> '.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "Validation Error",
                "detail": "; ".join(errors),
                "code": "VALIDATION_ERROR",
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"request_id": request_id})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "code": "INTERNAL_ERROR",
                "request_id": request_id,
            },
        )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(two_factor_router)
    app.include_router(devices_router)
    app.include_router(account_router)

    return app


app = create_app()
