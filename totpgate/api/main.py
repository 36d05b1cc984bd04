"""
TOTPGATE REST API - Main Application.

Usage:
    # Development
    uvicorn totpgate.api.main:app --reload --port 8000

    # Production (PostgreSQL required for more than one worker)
    uvicorn totpgate.api.main:app --host 0.0.0.0 --port 8000 --workers 4
"""
import os
import time
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError

from .routes import mfa_router, health_router
from .models import ErrorResponse
from ..auth.base32 import Base32DecodeError
from ..auth.validator import ChallengeLedgerError

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
)


class RequestIdFilter(logging.Filter):
    """Default request_id for records logged outside a request."""
    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = '-'
        return True


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format=LOG_FORMAT,
)
# Logger filters do not run for records propagated from child loggers.
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

API_TITLE = "TOTPGATE API"
API_DESCRIPTION = """
**TOTP multi-factor authentication**

- **Enrollment** - server-issued secrets with provenance checking
- **Challenges** - one live challenge per factor, bound to session and workflow
- **Verification** - RFC 6238 codes with a one-step skew window and anti-replay

## Session context

Every MFA endpoint expects `X-User-ID` and `X-Session-ID` headers from the
session layer, and optionally `X-Workflow-Key` (defaults to `login`).

## Wait responses

`429` means the code may be right but can not be accepted yet. `Retry-After`
says when the current challenge expires.
"""
API_VERSION = os.getenv("APP_VERSION", "0.1.0")

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    # Enrollment responses carry secrets and QR codes
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the MFA schema on startup and report the ledger lock mode."""
    logger.info(f"Starting TOTPGATE API v{API_VERSION}")

    try:
        from ..database.mfa_db import get_mfa_db
        db = get_mfa_db()
        db.init_schema()
        if db.uses_advisory_locks:
            logger.info("Challenge ledger uses PostgreSQL advisory locks")
        else:
            logger.warning(
                f"Challenge ledger uses process-local locks ({db.engine.dialect.name}); "
                f"run a single worker"
            )
    except SQLAlchemyError as e:
        logger.warning(f"Database initialization skipped: {e}")

    yield

    logger.info("Shutting down TOTPGATE API")


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    code: str,
    detail: Optional[str] = None,
) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, code=code).model_dump()
    body["request_id"] = getattr(request.state, 'request_id', 'unknown')
    return JSONResponse(status_code=status_code, content=body)


def _debug_detail(exc: Exception) -> Optional[str]:
    return str(exc) if os.getenv("APP_ENV") == "development" else None


def install_exception_handlers(app: FastAPI) -> None:
    """Map validation, ledger and configuration failures onto error bodies."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            f"{' -> '.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        return _error_response(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation Error",
            "VALIDATION_ERROR",
            "; ".join(errors),
        )

    @app.exception_handler(ChallengeLedgerError)
    async def ledger_exception_handler(request: Request, exc: ChallengeLedgerError):
        # Already logged with the config id by the validator.
        logger.error(f"[{getattr(request.state, 'request_id', '-')}] Ledger invariant violated")
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
            "LEDGER_ERROR",
            _debug_detail(exc),
        )

    @app.exception_handler(Base32DecodeError)
    async def secret_exception_handler(request: Request, exc: Base32DecodeError):
        logger.error(f"[{getattr(request.state, 'request_id', '-')}] Stored factor secret is not valid base32")
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
            "SECRET_DECODE_ERROR",
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True)
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
            "INTERNAL_ERROR",
            _debug_detail(exc),
        )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID", "X-User-ID", "X-Session-ID", "X-Workflow-Key"],
        expose_headers=["Retry-After", "X-Request-ID"],
    )

    @app.middleware("http")
    async def track_request(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request.state.request_id = request_id

        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = f"{process_time:.2f}"
        response.headers.update(SECURITY_HEADERS)

        # 4xx, waits included, is routine traffic.
        if not request.url.path.startswith("/health"):
            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            logger.log(
                level,
                f"[{request_id}] {request.method} {request.url.path} "
                f"-> {response.status_code} ({process_time:.1f}ms)"
            )
        return response

    install_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(mfa_router)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "totpgate.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
