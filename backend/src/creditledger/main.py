"""FastAPI application entry point."""
import traceback
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Optional

import stripe
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from creditledger import __version__
from creditledger.config import settings
from creditledger.exceptions import CreditLedgerError, PersistenceError
from creditledger.middleware.logging import LoggingMiddleware, setup_logging
from creditledger.middleware.metrics import MetricsMiddleware
from creditledger.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("application_starting", env=settings.app_env)
    yield
    logger.info("application_shutting_down")


# Create FastAPI application
app = FastAPI(
    title="Credit Ledger",
    description="Append-only credit ledger with Stripe payment reconciliation",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)

# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


def _request_id(request: Request) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or f"req_{uuid.uuid4().hex[:12]}"
    )


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: list[dict[str, Any]],
    remediation: Optional[str],
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    request_id = _request_id(request)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details,
            "remediation": remediation,
            "request_id": request_id,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        },
        headers={"X-Request-ID": request_id, **(headers or {})},
    )


# Exception handlers with structured error responses
@app.exception_handler(CreditLedgerError)
async def credit_ledger_exception_handler(request: Request, exc: CreditLedgerError) -> JSONResponse:
    """
    Render a domain error with its own status and code.

    Server-side classes (502, 503) are logged as errors; client outcomes such
    as 402 and 409 are expected and logged at info.
    """
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_rejected",
        path=request.url.path,
        error_code=exc.code,
        status_code=exc.status_code,
        error_message=exc.message,
        **exc.context,
    )

    headers = {"Retry-After": "5"} if isinstance(exc, PersistenceError) else None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    detail = {"code": exc.code, "message": exc.message}
    if exc.context:
        detail["value"] = exc.context

    return _error_response(
        request,
        status_code=exc.status_code,
        error=type(exc).__name__,
        message=exc.message,
        details=[detail],
        remediation=REMEDIATION_HINTS.get(exc.code),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle Pydantic validation errors with structured response.

    Returns 400 with detailed field-level validation errors.
    """
    code_mapping = {
        "value_error": ErrorCode.INVALID_EMAIL,
        "missing": ErrorCode.MISSING_REQUIRED_FIELD,
        "int_parsing": ErrorCode.INVALID_INTEGER,
        "int_from_float": ErrorCode.INVALID_INTEGER,
        "int_type": ErrorCode.INVALID_INTEGER,
    }

    details = []
    for error in exc.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        code = code_mapping.get(error["type"], ErrorCode.VALIDATION_ERROR)
        if code == ErrorCode.INVALID_EMAIL and not field_path.endswith("email"):
            code = ErrorCode.VALIDATION_ERROR

        details.append(
            ErrorDetail(
                code=code,
                message=error["msg"],
                field=field_path,
                value=error.get("input") if code != ErrorCode.MISSING_REQUIRED_FIELD else None,
            ).model_dump(mode="json")
        )

    logger.warning("validation_error", path=request.url.path, method=request.method, error_count=len(details))

    return _error_response(
        request,
        status_code=status.HTTP_400_BAD_REQUEST,
        error="ValidationError",
        message="Request validation failed",
        details=details,
        remediation=REMEDIATION_HINTS.get(details[0]["code"]) if details else None,
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Handle database errors.

    Returns 503 Service Unavailable; every write is keyed by a reference, so
    the client may retry.
    """
    logger.error(
        "database_error",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error_message=str(exc),
    )

    error_message = "Database temporarily unavailable" if settings.app_env == "production" else str(exc)

    return _error_response(
        request,
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        error="DatabaseError",
        message="A database error occurred",
        details=[{"code": ErrorCode.DATABASE_ERROR, "message": error_message}],
        remediation=REMEDIATION_HINTS.get(ErrorCode.DATABASE_ERROR),
        headers={"Retry-After": "30"},
    )


@app.exception_handler(stripe.StripeError)
async def stripe_exception_handler(request: Request, exc: stripe.StripeError) -> JSONResponse:
    """
    Handle Stripe API errors that escaped the adapter.

    Returns 502 Bad Gateway for payment gateway errors.
    """
    stripe_code = getattr(exc, "code", None)

    logger.error(
        "stripe_error",
        path=request.url.path,
        method=request.method,
        stripe_code=stripe_code,
        stripe_message=str(exc),
    )

    user_message = {
        "rate_limit": "Too many payment requests. Please try again later.",
        "resource_missing": "The requested Stripe object does not exist.",
    }.get(stripe_code, "Payment gateway error occurred")

    return _error_response(
        request,
        status_code=status.HTTP_502_BAD_GATEWAY,
        error="PaymentGatewayError",
        message=user_message,
        details=[
            {
                "code": ErrorCode.STRIPE_API_ERROR,
                "message": str(exc) if settings.app_env != "production" else user_message,
            }
        ],
        remediation=REMEDIATION_HINTS.get(ErrorCode.STRIPE_API_ERROR),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other uncaught exceptions.

    Logs full stack trace for debugging but returns safe error message to client.
    """
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        stack_trace=traceback.format_exc(),
    )

    return _error_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error="InternalServerError",
        message="An unexpected error occurred",
        details=[
            {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": str(exc) if settings.debug else "Internal server error",
            }
        ],
        remediation="Please contact support with the request ID",
    )


# Root endpoint
@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "Credit Ledger",
        "version": __version__,
        "status": "operational",
        "docs": "/docs",
    }


# Include routers
from creditledger.api.v1 import admin, checkout, credits, health, scans  # noqa: E402
from creditledger.api.webhooks import stripe as stripe_webhooks  # noqa: E402

app.include_router(health.router, tags=["Health"])
app.include_router(credits.router, prefix="/v1", tags=["Credits"])
app.include_router(scans.router, prefix="/v1", tags=["Scans"])
app.include_router(checkout.router, prefix="/v1", tags=["Checkout"])
app.include_router(admin.router, prefix="/v1", tags=["Admin"])
app.include_router(stripe_webhooks.router, tags=["Webhooks"])
