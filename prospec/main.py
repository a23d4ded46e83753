import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from prospec import __version__
from prospec.api.routes import estimates, health, pricing
from prospec.config import settings
from prospec.errors import ErrorCode, ProspecError, RateLimitExceededError
from prospec.logging import configure_logging
from prospec.models.contracts import ErrorResponse, RateLimitErrorResponse
from prospec.utils.kv_store import MemoryKeyValueStore
from prospec.utils.rate_limiter import RateLimiter

configure_logging()

logger = structlog.get_logger()

app = FastAPI(
    title="Prospec API",
    version=__version__,
    docs_url="/docs",
    redoc_url=None,
)

app.state.rate_limiter = RateLimiter(
    MemoryKeyValueStore(),
    max_calls_per_session=settings.max_calls_per_session,
    session_timeout_ms=settings.session_timeout_seconds * 1000,
)

_STATUS_BY_CODE = {
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.NO_PRODUCTS_FOUND: 404,
    ErrorCode.RUN_NOT_FOUND: 404,
    ErrorCode.SEARCH_PROVIDER_ERROR: 502,
    ErrorCode.AI_PROVIDER_ERROR: 502,
    ErrorCode.UNAUTHORIZED: 401,
}


def _with_request_id(request: Request, response: JSONResponse) -> JSONResponse:
    response.headers["X-Request-ID"] = getattr(
        request.state, "request_id", request.headers.get("X-Request-ID", "")
    )
    return response


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a unique request ID to every request for log correlation.

    Sets the ID in structlog context vars (appears in all log entries for the
    request) and returns it in the X-Request-ID response header.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return ErrorResponse JSON for Pydantic validation errors.

    FastAPI's default 422 returns {"detail": [...]}; clients expect the
    single ErrorResponse shape.
    """
    messages = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    response = JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorCode.VALIDATION_ERROR,
            message="; ".join(messages),
            retryable=False,
        ).model_dump(exclude_none=True),
    )
    return _with_request_id(request, response)


@app.exception_handler(ProspecError)
async def prospec_exception_handler(request: Request, exc: ProspecError) -> JSONResponse:
    status = _STATUS_BY_CODE.get(exc.code, 500)
    logger.warning(
        "request_failed",
        path=request.url.path,
        status=status,
        error=exc.code,
        message=exc.message,
    )
    if isinstance(exc, RateLimitExceededError):
        body = RateLimitErrorResponse(
            error=exc.code,
            message=exc.message,
            retryable=False,
            remaining_calls=exc.remaining_calls,
        )
    else:
        body = ErrorResponse(
            error=exc.code,
            message=exc.message,
            retryable=exc.retryable,
            api_usage_stats=exc.details.get("api_usage_stats"),
        )
    response = JSONResponse(
        status_code=status,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )
    return _with_request_id(request, response)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return consistent ErrorResponse JSON for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "error": ErrorCode.INTERNAL_ERROR,
            "message": "An unexpected error occurred",
            "retryable": True,
        },
    )
    return _with_request_id(request, response)


app.include_router(health.router)
app.include_router(estimates.router, prefix="/api/v1")
app.include_router(pricing.router, prefix="/api/v1")
